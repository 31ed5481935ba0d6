# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Core orchestration logic for the outbound WhatsApp message queue.

This module provides the AsyncMessageQueue class, the single owner of the
queued messages. It coordinates:

- Message queue management with priority- and schedule-aware ordering
- A periodic dispatch loop that sends at most one batch at a time
- The per-message delivery state machine
  (pending -> sending -> sent | pending (backoff) | failed; pending -> cancelled)
- Automatic retry with capped exponential backoff, and manual retry
- Subscriber notification and Prometheus metrics on every change

The queue runs on a single asyncio event loop. Queue operations
(enqueue, cancel, list, ...) are synchronous and act immediately on
in-memory state; only transport calls are awaited, concurrently within a
batch.

Example:
    Running the queue::

        from async_whatsapp_queue.core import AsyncMessageQueue

        queue = AsyncMessageQueue(transport)
        queue.on_failed(lambda message, error: print(message.id, error))
        await queue.start()

        message_id = queue.enqueue(
            to="5511999999999@c.us",
            payload={"kind": "text", "body": "Your ticket was updated"},
            priority="high",
            ticket_id=42,
        )

        # To stop gracefully
        await queue.stop()

Known limitations:
    - The queue is unbounded; callers must ``sweep_terminal()`` periodically.
    - A message already ``sending`` cannot be cancelled; the outcome of its
      transport call is applied when it resolves.
    - Unless ``send_timeout`` is configured, a hung transport call holds
      its batch slot (and therefore the next cycle) indefinitely.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import math
import secrets
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from .config import QueueConfig
from .events import EventHub, FailedCallback, SentCallback, StatsCallback
from .logger import get_logger
from .models import (
    EnqueueRequest,
    MessageStatus,
    QueuedMessage,
    QueueStats,
    TextPayload,
    as_utc,
)
from .prometheus import QueueMetrics
from .retry import RetryStrategy
from .store import QueueStore
from .transport import Transport, TransportUnavailableError


class QueueError(RuntimeError):
    """Raised when the queue API is used incorrectly."""

    def __init__(self, message: str, code: str = "queue_error"):
        super().__init__(message)
        self.code = code


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_message_id(now: datetime) -> str:
    """Return an id of the form ``msg_<epoch-ms>_<random>``."""
    return f"msg_{int(now.timestamp() * 1000)}_{secrets.token_hex(5)[:9]}"


class AsyncMessageQueue:
    """Priority queue and dispatcher for outbound messages.

    Attributes:
        config: The :class:`QueueConfig` in use.
        transport: Object implementing :class:`Transport`.
        store: Ordered in-memory message store.
        events: Subscriber registry for sent/failed/stats events.
        metrics: Prometheus metrics collector.
        retry: Backoff policy applied to failed attempts.
        logger: Logger instance for diagnostic output.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        config: QueueConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
        metrics: QueueMetrics | None = None,
        events: EventHub | None = None,
        retry: RetryStrategy | None = None,
    ):
        """Initialize the queue.

        Args:
            transport: Messaging transport used for every send.
            config: Queue configuration. Defaults to ``QueueConfig()``.
            clock: Callable returning the current time. Tests inject a
                controllable clock; naive values are read as UTC.
            logger: Custom logger. Defaults to the package logger.
            metrics: Metrics collector. A private registry is used if omitted.
            events: Subscriber registry. A fresh one is created if omitted.
            retry: Backoff policy. Built from ``config.retry`` if omitted.
        """
        self.config = config or QueueConfig()
        self.transport = transport
        self.logger = logger or get_logger()
        self.metrics = metrics or QueueMetrics()
        self.events = events or EventHub(self.logger)
        self.retry = retry or RetryStrategy(self.config.retry.base_delay, self.config.retry.max_delay)
        self.store = QueueStore()
        self._clock = clock or _utc_now

        self._batch_size = max(1, int(self.config.dispatch.batch_size))
        self._default_max_attempts = max(1, int(self.config.retry.max_attempts))
        send_timeout = self.config.timing.send_timeout
        self._send_timeout = float(send_timeout) if send_timeout and send_timeout > 0 else None
        self._test_mode = bool(self.config.dispatch.test_mode)
        self._dispatch_interval = (
            math.inf if self._test_mode else max(0.05, float(self.config.timing.dispatch_interval))
        )
        self._log_delivery_activity = bool(self.config.log_delivery_activity)

        self._active = bool(self.config.dispatch.start_active)
        self._processing = False
        self._stop = asyncio.Event()
        self._wake_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    # --------------------------------------------------------------------- utils
    def now(self) -> datetime:
        """Current time from the injected clock, always timezone-aware."""
        return as_utc(self._clock())

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # -------------------------------------------------------------- subscribers
    def on_sent(self, callback: SentCallback) -> Callable[[], None]:
        return self.events.on_sent(callback)

    def on_failed(self, callback: FailedCallback) -> Callable[[], None]:
        return self.events.on_failed(callback)

    def on_stats_changed(self, callback: StatsCallback) -> Callable[[], None]:
        return self.events.on_stats_changed(callback)

    # ----------------------------------------------------------------- commands
    def enqueue(self, request: EnqueueRequest | dict[str, Any] | None = None, /, **fields: Any) -> str:
        """Add a message to the queue and return its id immediately.

        Accepts an :class:`EnqueueRequest`, a mapping with the same fields,
        or the fields as keyword arguments.

        Raises:
            pydantic.ValidationError: If the destination or payload is
                missing or malformed, or ``max_attempts`` is below 1.
            QueueError: If both a request and keyword fields are given.
        """
        if request is not None and fields:
            raise QueueError("Pass either a request or keyword fields, not both", code="invalid_enqueue")
        if request is None:
            request = EnqueueRequest.model_validate(fields)
        elif not isinstance(request, EnqueueRequest):
            request = EnqueueRequest.model_validate(request)

        now = self.now()
        message = QueuedMessage(
            id=self._new_id(now),
            to=request.to,
            payload=request.payload.model_copy(deep=True),
            priority=request.priority,
            max_attempts=request.max_attempts or self._default_max_attempts,
            created_at=now,
            scheduled_for=request.scheduled_for,
            customer_id=request.customer_id,
            ticket_id=request.ticket_id,
            metadata=copy.deepcopy(request.metadata),
        )
        position = self.store.insert(message)
        self.logger.debug(
            "Enqueued message %s to %s (priority=%s, position=%d, scheduled_for=%s)",
            message.id,
            message.to,
            message.priority.value,
            position,
            message.scheduled_for.isoformat() if message.scheduled_for else "-",
        )
        self._notify_stats()
        return message.id

    def _new_id(self, now: datetime) -> str:
        message_id = generate_message_id(now)
        while message_id in self.store:
            message_id = generate_message_id(now)
        return message_id

    def cancel(self, message_id: str) -> bool:
        """Cancel a pending message. Any other status (or unknown id) returns False."""
        message = self.store.lookup(message_id)
        if message is None or message.status is not MessageStatus.PENDING:
            return False
        message.status = MessageStatus.CANCELLED
        message.next_attempt_at = None
        self.metrics.inc_cancelled()
        self.logger.debug("Cancelled message %s", message_id)
        self._notify_stats()
        return True

    def remove(self, message_id: str) -> bool:
        """Drop a message from the queue whatever its status, unless it is in flight."""
        message = self.store.lookup(message_id)
        if message is None or message.status is MessageStatus.SENDING:
            return False
        self.store.remove(message_id)
        self._notify_stats()
        return True

    def get(self, message_id: str) -> QueuedMessage | None:
        return self.store.get(message_id)

    def list(self) -> list[QueuedMessage]:
        """Copies of all messages in dispatch order."""
        return self.store.snapshot()

    def list_by_status(self, status: MessageStatus | str) -> list[QueuedMessage]:
        return self.store.by_status(status)

    def list_by_correlation(self, *, customer_id: Any = None, ticket_id: Any = None) -> list[QueuedMessage]:
        return self.store.by_correlation(customer_id=customer_id, ticket_id=ticket_id)

    def list_by_customer(self, customer_id: Any) -> list[QueuedMessage]:
        return self.store.by_correlation(customer_id=customer_id)

    def list_by_ticket(self, ticket_id: Any) -> list[QueuedMessage]:
        return self.store.by_correlation(ticket_id=ticket_id)

    def stats(self) -> QueueStats:
        return self.store.stats()

    def sweep_terminal(self) -> int:
        """Remove sent, failed and cancelled messages. Returns how many were removed."""
        removed = self.store.sweep_terminal()
        if removed:
            self.logger.info("Swept %d terminal message(s)", removed)
            self._notify_stats()
        return removed

    def retry_failed(self, message_id: str) -> bool:
        """Put one failed message back to pending with a full retry budget."""
        message = self.store.lookup(message_id)
        if message is None or message.status is not MessageStatus.FAILED:
            return False
        self._reset_for_retry(message)
        self._notify_stats()
        return True

    def retry_all_failed(self) -> int:
        """Put every failed message back to pending with a full retry budget.

        Returns:
            Number of messages reset.
        """
        retried = 0
        for message in self.store:
            # No remaining-budget check: failed messages have none left.
            if message.status is MessageStatus.FAILED:
                self._reset_for_retry(message)
                retried += 1
        if retried:
            self.logger.info("Reset %d failed message(s) for retry", retried)
            self._notify_stats()
        return retried

    @staticmethod
    def _reset_for_retry(message: QueuedMessage) -> None:
        message.status = MessageStatus.PENDING
        message.attempts = 0
        message.next_attempt_at = None
        message.last_error = None

    def suspend(self) -> None:
        """Keep the loop running but stop picking up messages."""
        self._active = False

    def activate(self) -> None:
        self._active = True
        self._wake_event.set()

    def run_now(self) -> None:
        """Wake the dispatch loop for an immediate cycle."""
        self._wake_event.set()

    # ----------------------------------------------------------------- lifecycle
    async def start(self) -> None:
        """Spawn the background dispatch loop."""
        if self.is_running:
            self.logger.warning("Dispatch loop already running")
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._dispatch_loop(), name="whatsapp-dispatch-loop")
        self.logger.debug("Dispatch loop task created (interval=%s)", self._dispatch_interval)

    async def stop(self) -> None:
        """Signal the dispatch loop to terminate and wait for it.

        A batch already in flight is allowed to finish.
        """
        self._stop.set()
        self._wake_event.set()
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def _dispatch_loop(self) -> None:
        self.logger.debug("Dispatch loop started")
        first_iteration = True
        while not self._stop.is_set():
            if first_iteration and self._test_mode:
                await self._wait_for_wakeup(self._dispatch_interval)
            first_iteration = False
            if self._stop.is_set():
                break
            try:
                if self._active:
                    await self.process_queue()
            except Exception as exc:  # pragma: no cover
                self.logger.exception("Unhandled error in dispatch loop: %s", exc)
            await self._wait_for_wakeup(self._dispatch_interval)
        self.logger.debug("Dispatch loop stopped")

    async def _wait_for_wakeup(self, timeout: float | None) -> None:
        """Pause the dispatch loop until timeout or wake event."""
        if self._stop.is_set():
            return
        if timeout is None or math.isinf(timeout):
            await self._wake_event.wait()
            self._wake_event.clear()
            return
        try:
            await asyncio.wait_for(self._wake_event.wait(), timeout=max(0.0, float(timeout)))
        except asyncio.TimeoutError:
            return
        self._wake_event.clear()

    # ---------------------------------------------------------------- dispatch
    async def process_queue(self) -> int:
        """Run one dispatch cycle.

        Picks up to ``batch_size`` eligible messages in queue order, moves
        each to ``sending`` and delivers them concurrently. A cycle started
        while another is still running does nothing.

        Returns:
            Number of messages dispatched in this cycle.
        """
        if self._processing:
            return 0
        batch = self.store.eligible(self.now(), limit=self._batch_size)
        if not batch:
            return 0

        self._processing = True
        try:
            for message in batch:
                self._mark_sending(message)
            # One notification for the whole batch: nothing in it is pending any more.
            self._notify_stats()
            await asyncio.gather(*(self._deliver(message) for message in batch))
        finally:
            self._processing = False
        return len(batch)

    def _mark_sending(self, message: QueuedMessage) -> None:
        message.status = MessageStatus.SENDING
        message.attempts += 1
        message.next_attempt_at = None
        if self._log_delivery_activity:
            self.logger.info(
                "Attempting delivery for message %s to %s (attempt %d/%d)",
                message.id,
                message.to,
                message.attempts,
                message.max_attempts,
            )

    async def _deliver(self, message: QueuedMessage) -> None:
        """Perform one transport attempt and apply its outcome."""
        error: str | None = None
        try:
            if not await self._send(message):
                error = "Transport reported failure"
        except TransportUnavailableError as exc:
            error = str(exc)
        except asyncio.TimeoutError as exc:
            if self._send_timeout is not None:
                error = f"Transport call timed out after {self._send_timeout}s"
            else:
                error = str(exc) or "Transport call timed out"
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            self.logger.debug("Transport raised for message %s", message.id, exc_info=True)

        if self.store.lookup(message.id) is not message:
            self.logger.warning("Message %s left the queue while sending; outcome dropped", message.id)
            return
        if error is None:
            self._record_sent(message)
        else:
            self._record_failure(message, error)

    async def _send(self, message: QueuedMessage) -> bool:
        if not self.transport.is_connected():
            raise TransportUnavailableError()
        payload = message.payload
        if isinstance(payload, TextPayload):
            call = self.transport.send_text(message.to, payload.body)
        else:
            call = self.transport.send_media(message.to, payload.media(), payload.caption)
        if self._send_timeout is None:
            return bool(await call)
        return bool(await asyncio.wait_for(call, timeout=self._send_timeout))

    def _record_sent(self, message: QueuedMessage) -> None:
        message.status = MessageStatus.SENT
        message.sent_at = self.now()
        message.last_error = None
        self.metrics.inc_sent(message.payload.kind)
        self._log_delivery("Delivery succeeded for message %s (attempt %d)", message.id, message.attempts)
        self.events.emit_sent(message.model_copy(deep=True))
        self._notify_stats()

    def _record_failure(self, message: QueuedMessage, error: str) -> None:
        if self.retry.should_retry(message.attempts, message.max_attempts):
            delay = self.retry.backoff(message.attempts)
            message.status = MessageStatus.PENDING
            message.next_attempt_at = self.now() + delay
            message.last_error = error
            self.metrics.inc_retried(message.payload.kind)
            self.logger.warning(
                "Attempt %d/%d for message %s failed: %s - retrying in %.1fs",
                message.attempts,
                message.max_attempts,
                message.id,
                error,
                delay.total_seconds(),
            )
        else:
            error = f"Max attempts ({message.max_attempts}) exceeded: {error}"
            message.status = MessageStatus.FAILED
            message.last_error = error
            self.metrics.inc_failed(message.payload.kind)
            self.logger.error("Message %s failed permanently: %s", message.id, error)
            self.events.emit_failed(message.model_copy(deep=True), error)
        self._notify_stats()

    def _log_delivery(self, msg: str, *args: Any) -> None:
        if self._log_delivery_activity:
            self.logger.info(msg, *args)
        else:
            self.logger.debug(msg, *args)

    def _notify_stats(self) -> None:
        stats = self.store.stats()
        self.metrics.set_stats(stats)
        self.events.emit_stats(stats)
