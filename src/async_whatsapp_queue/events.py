# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Subscriber registry for queue events.

Three subscription points are exposed to consumers such as the UI or a
ticketing hook:

- ``on_sent(callback(message))``
- ``on_failed(callback(message, error))``
- ``on_stats_changed(callback(stats))``

Every callback runs in isolation: an exception raised by one subscriber
is logged and the remaining subscribers are still notified. The notifying
operation never sees the error.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .logger import get_logger
from .models import QueuedMessage, QueueStats

SentCallback = Callable[[QueuedMessage], Any]
FailedCallback = Callable[[QueuedMessage, str], Any]
StatsCallback = Callable[[QueueStats], Any]


class EventHub:
    """Per-queue observer lists with isolated invocation."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or get_logger("AsyncWhatsAppQueue.events")
        self._sent: list[SentCallback] = []
        self._failed: list[FailedCallback] = []
        self._stats: list[StatsCallback] = []

    # ------------------------------------------------------------ subscribing
    def on_sent(self, callback: SentCallback) -> Callable[[], None]:
        """Register ``callback`` for delivered messages. Returns an unsubscribe function."""
        return self._subscribe(self._sent, callback)

    def on_failed(self, callback: FailedCallback) -> Callable[[], None]:
        """Register ``callback`` for messages that exhausted their retries."""
        return self._subscribe(self._failed, callback)

    def on_stats_changed(self, callback: StatsCallback) -> Callable[[], None]:
        """Register ``callback`` for aggregate count updates."""
        return self._subscribe(self._stats, callback)

    @staticmethod
    def _subscribe(registry: list, callback: Callable[..., Any]) -> Callable[[], None]:
        if not callable(callback):
            raise TypeError("callback must be callable")
        registry.append(callback)

        def unsubscribe() -> None:
            if callback in registry:
                registry.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------- notifying
    def emit_sent(self, message: QueuedMessage) -> None:
        self._notify(self._sent, "sent", message)

    def emit_failed(self, message: QueuedMessage, error: str) -> None:
        self._notify(self._failed, "failed", message, error)

    def emit_stats(self, stats: QueueStats) -> None:
        self._notify(self._stats, "stats", stats)

    def _notify(self, registry: list, event: str, *args: Any) -> None:
        for callback in list(registry):
            try:
                callback(*args)
            except Exception:
                self.logger.exception("Subscriber %r raised while handling %s event", callback, event)
