# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ASGI application entry point for uvicorn.

Builds one queue wired to the HTTP gateway from :func:`load_config` and
manages both lifecycles from the FastAPI lifespan.

Usage:
    uvicorn async_whatsapp_queue.server:app --host 0.0.0.0 --port 8000

Environment variables:
    See :mod:`async_whatsapp_queue.config`; ``WAQ_GATEWAY_URL`` is required.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import create_app
from .config import QueueConfig, load_config
from .core import AsyncMessageQueue
from .gateway import GatewayTransport


def build_application(config: QueueConfig) -> tuple[FastAPI, AsyncMessageQueue]:
    """Create the transport, queue and FastAPI app described by ``config``.

    Raises:
        ValueError: If no gateway URL is configured.
    """
    if not config.gateway.url:
        raise ValueError("WhatsApp gateway URL is not configured (WAQ_GATEWAY_URL or [gateway] url)")
    transport = GatewayTransport(
        config.gateway.url,
        config.gateway.instance,
        api_key=config.gateway.api_key,
        timeout=config.gateway.timeout,
    )
    queue = AsyncMessageQueue(transport, config=config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Open the gateway and run the dispatcher for the app's lifetime."""
        await transport.open()
        await queue.start()
        try:
            yield
        finally:
            await queue.stop()
            await transport.close()

    app = create_app(queue, api_token=config.server.api_token, lifespan=lifespan)
    return app, queue


def __getattr__(name: str):
    # ``app`` is built on first access so importing this module has no side effects.
    if name == "app":
        application, _ = build_application(load_config())
        globals()["app"] = application
        return application
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
