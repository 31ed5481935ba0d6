"""FastAPI application factory and HTTP schemas for the message queue.

This module exposes the queue to callers outside the process (ticketing
backend, support UI, operators):

- Pydantic response schemas for every endpoint
- A factory function to create and configure the FastAPI application
- Authentication via API token in the X-API-Token header
- Endpoints for enqueueing, inspecting, cancelling and retrying messages
- Health checks and Prometheus metrics exposure
- Manual control of the dispatcher (suspend/activate/run-now)

Example:
    Creating and running the API application::

        from async_whatsapp_queue.core import AsyncMessageQueue
        from async_whatsapp_queue.api import create_app

        queue = AsyncMessageQueue(transport)
        app = create_app(queue, api_token="secret-token")

        uvicorn.run(app, host="0.0.0.0", port=8000)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from .core import AsyncMessageQueue
from .models import EnqueueRequest, MessageStatus, QueuedMessage, QueueStats

logger = logging.getLogger(__name__)

API_TOKEN_HEADER_NAME = "X-API-Token"
api_key_scheme = APIKeyHeader(name=API_TOKEN_HEADER_NAME, auto_error=False)


async def require_token(request: Request, api_token: str | None = Depends(api_key_scheme)) -> None:
    """Validate the API token carried in the ``X-API-Token`` header.

    When no token was configured through :func:`create_app` the check is
    bypassed; otherwise a missing or different value yields ``401``.
    """
    expected = getattr(request.app.state, "api_token", None)
    if expected is None:
        return
    if not api_token or api_token != expected:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid or missing API token")


auth_dependency = Depends(require_token)


def get_queue(request: Request) -> AsyncMessageQueue:
    queue = getattr(request.app.state, "queue", None)
    if queue is None:
        raise HTTPException(500, "Queue not initialized")
    return queue


class CommandStatus(BaseModel):
    """Base schema shared by most responses produced by the service."""
    ok: bool
    error: str | None = None


class BasicOkResponse(CommandStatus):
    pass


class EnqueueResponse(CommandStatus):
    id: str


class MessagesResponse(CommandStatus):
    messages: list[QueuedMessage] = Field(default_factory=list)


class SweepResponse(CommandStatus):
    removed: int


class RetryResponse(CommandStatus):
    retried: int


def create_app(
    queue: AsyncMessageQueue,
    api_token: str | None = None,
    lifespan: Callable[[FastAPI], AbstractAsyncContextManager[Any]] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    queue:
        The :class:`AsyncMessageQueue` instance served by this application.
    api_token:
        Optional secret used to protect every endpoint except ``/health``.
        When provided, the ``X-API-Token`` header must match this value.
    lifespan:
        Optional lifespan context manager for startup/shutdown events.

    Returns
    -------
    FastAPI
        A configured application ready to be served by Uvicorn or any ASGI
        server.
    """
    api = FastAPI(title="Async WhatsApp Queue", lifespan=lifespan)
    api.state.queue = queue
    api.state.api_token = api_token
    router = APIRouter(prefix="/commands", tags=["commands"], dependencies=[auth_dependency])

    @api.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Log validation errors with full details."""
        logger.error("Validation error on %s %s: %s", request.method, request.url.path, exc.errors())
        return JSONResponse(status_code=422, content={"detail": jsonable_errors(exc)})

    @api.get("/health")
    async def health():
        """Health check endpoint for container monitoring (no authentication required)."""
        return {"status": "ok"}

    @api.get("/stats", response_model=QueueStats, dependencies=[auth_dependency])
    async def stats(svc: AsyncMessageQueue = Depends(get_queue)):
        return svc.stats()

    @api.post("/messages", response_model=EnqueueResponse, response_model_exclude_none=True,
              dependencies=[auth_dependency])
    async def enqueue(payload: EnqueueRequest, svc: AsyncMessageQueue = Depends(get_queue)):
        """Push a message into the queue. Delivery happens asynchronously."""
        message_id = svc.enqueue(payload)
        return EnqueueResponse(ok=True, id=message_id)

    @api.get("/messages", response_model=MessagesResponse, response_model_exclude_none=True,
             dependencies=[auth_dependency])
    async def list_messages(
        status: MessageStatus | None = None,
        customer_id: str | None = None,
        ticket_id: str | None = None,
        svc: AsyncMessageQueue = Depends(get_queue),
    ):
        """List queued messages, optionally filtered by status or correlation id."""
        if customer_id is not None or ticket_id is not None:
            messages = svc.list_by_correlation(customer_id=customer_id, ticket_id=ticket_id)
        else:
            messages = svc.list()
        if status is not None:
            messages = [msg for msg in messages if msg.status is status]
        return MessagesResponse(ok=True, messages=messages)

    @api.get("/messages/{message_id}", response_model=QueuedMessage, dependencies=[auth_dependency])
    async def get_message(message_id: str, svc: AsyncMessageQueue = Depends(get_queue)):
        message = svc.get(message_id)
        if message is None:
            raise HTTPException(404, f"Message '{message_id}' not found")
        return message

    @api.post("/messages/{message_id}/cancel", response_model=BasicOkResponse, response_model_exclude_none=True,
              dependencies=[auth_dependency])
    async def cancel_message(message_id: str, svc: AsyncMessageQueue = Depends(get_queue)):
        """Cancel a pending message. ``ok`` is false when it is not pending."""
        return BasicOkResponse(ok=svc.cancel(message_id))

    @api.post("/messages/{message_id}/retry", response_model=BasicOkResponse, response_model_exclude_none=True,
              dependencies=[auth_dependency])
    async def retry_message(message_id: str, svc: AsyncMessageQueue = Depends(get_queue)):
        """Reset a failed message to pending with a full retry budget."""
        return BasicOkResponse(ok=svc.retry_failed(message_id))

    @api.delete("/messages/{message_id}", response_model=BasicOkResponse, response_model_exclude_none=True,
                dependencies=[auth_dependency])
    async def delete_message(message_id: str, svc: AsyncMessageQueue = Depends(get_queue)):
        """Remove a message that is not currently being sent."""
        return BasicOkResponse(ok=svc.remove(message_id))

    @router.post("/sweep", response_model=SweepResponse, response_model_exclude_none=True)
    async def sweep(svc: AsyncMessageQueue = Depends(get_queue)):
        """Remove sent, failed and cancelled messages."""
        return SweepResponse(ok=True, removed=svc.sweep_terminal())

    @router.post("/retry-failed", response_model=RetryResponse, response_model_exclude_none=True)
    async def retry_failed(svc: AsyncMessageQueue = Depends(get_queue)):
        return RetryResponse(ok=True, retried=svc.retry_all_failed())

    @router.post("/run-now", response_model=BasicOkResponse, response_model_exclude_none=True)
    async def run_now(svc: AsyncMessageQueue = Depends(get_queue)):
        svc.run_now()
        return BasicOkResponse(ok=True)

    @router.post("/suspend", response_model=BasicOkResponse, response_model_exclude_none=True)
    async def suspend(svc: AsyncMessageQueue = Depends(get_queue)):
        """Stop picking up messages; in-flight sends complete normally."""
        svc.suspend()
        return BasicOkResponse(ok=True)

    @router.post("/activate", response_model=BasicOkResponse, response_model_exclude_none=True)
    async def activate(svc: AsyncMessageQueue = Depends(get_queue)):
        svc.activate()
        return BasicOkResponse(ok=True)

    @api.get("/metrics", dependencies=[auth_dependency])
    async def metrics(svc: AsyncMessageQueue = Depends(get_queue)):
        """Expose Prometheus metrics collected by the queue."""
        return Response(content=svc.metrics.generate_latest(), media_type="text/plain; version=0.0.4")

    api.include_router(router)
    return api


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Validation errors with the non-serialisable ``ctx``/``input`` entries stringified."""
    errors = []
    for err in exc.errors():
        item = dict(err)
        if "ctx" in item:
            item["ctx"] = {key: str(value) for key, value in item["ctx"].items()}
        if "input" in item and not isinstance(item["input"], (str, int, float, bool, type(None), dict, list)):
            item["input"] = str(item["input"])
        errors.append(item)
    return errors
