# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Transport capability consumed by the queue.

The queue does not know how messages reach WhatsApp. It only needs an
object satisfying :class:`Transport`: a connectivity predicate and two
all-or-nothing send coroutines. A send that returns False and a send that
raises are accounted for identically.

:class:`GatewayTransport` in :mod:`async_whatsapp_queue.gateway` is the
HTTP implementation shipped with the package; tests use small in-memory
doubles.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from .models import MediaRef


@runtime_checkable
class Transport(Protocol):
    """Minimal interface of a messaging transport."""

    def is_connected(self) -> bool:
        """Return True when the transport can currently deliver messages."""
        ...

    async def send_text(self, to: str, body: str) -> bool:
        """Send a text message. Returns True on success; may raise."""
        ...

    async def send_media(self, to: str, media: MediaRef, caption: str | None = None) -> bool:
        """Send a media message. Returns True on success; may raise."""
        ...


class TransportUnavailableError(ConnectionError):
    """Raised when a send is attempted while the transport is not connected."""

    def __init__(self, message: str = "WhatsApp transport is not connected"):
        super().__init__(message)
