# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""HTTP transport for a WhatsApp gateway (Evolution API style).

The gateway owns the WhatsApp Web session; this adapter only posts send
requests and polls the instance connection state:

- ``POST {base_url}/message/sendText/{instance}``
- ``POST {base_url}/message/sendMedia/{instance}``
- ``GET  {base_url}/instance/connectionState/{instance}`` (``state == "open"``)

Every request carries the ``apikey`` header. A 2xx response is a
successful send; any other status returns False. Network errors propagate
to the caller, which the queue counts as a failed attempt.

``is_connected()`` must be synchronous for the queue, so the connection
state is cached and refreshed by a background monitor started with
:meth:`GatewayTransport.open`.

Example:
    Wiring the gateway into the queue::

        transport = GatewayTransport("https://wa-gateway.local", "support", api_key="secret")
        await transport.open()
        queue = AsyncMessageQueue(transport)
        ...
        await transport.close()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from .logger import get_logger
from .models import MediaRef

DEFAULT_MONITOR_INTERVAL = 30.0


def to_jid(number: str) -> str:
    """Normalise a phone number to a WhatsApp JID.

    ``+55 11 99999-9999`` becomes ``5511999999999@s.whatsapp.net``; values
    that already carry a JID suffix (``@c.us``, ``@g.us``, ``@lid``, ...) are
    returned unchanged.
    """
    if "@" in number:
        return number
    clean = number.replace("+", "").replace(" ", "").replace("-", "")
    return f"{clean}@s.whatsapp.net"


def media_type_for(mime_type: str) -> str:
    """Map a MIME type to the gateway's ``mediatype`` field."""
    main = (mime_type or "").split("/", 1)[0].lower()
    if main in {"image", "video", "audio"}:
        return main
    return "document"


class GatewayTransport:
    """aiohttp client implementing the queue's transport protocol.

    Attributes:
        base_url: Gateway root URL without trailing slash.
        instance: Gateway instance (WhatsApp session) name.
        timeout: Total timeout applied to every HTTP request, in seconds.
        monitor_interval: Seconds between connection state refreshes.
    """

    def __init__(
        self,
        base_url: str,
        instance: str,
        *,
        api_key: str | None = None,
        timeout: float = 15.0,
        monitor_interval: float = DEFAULT_MONITOR_INTERVAL,
        session: aiohttp.ClientSession | None = None,
        logger: logging.Logger | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.instance = instance
        self.timeout = float(timeout)
        self.monitor_interval = float(monitor_interval)
        self.logger = logger or get_logger("AsyncWhatsAppQueue.gateway")
        self._api_key = api_key
        self._session = session
        self._owns_session = session is None
        self._connected = False
        self._monitor_task: asyncio.Task | None = None

    # ---------------------------------------------------------------- lifecycle
    async def open(self, *, monitor: bool = True) -> None:
        """Create the HTTP session, read the connection state and start monitoring."""
        self._ensure_session()
        await self.refresh_connection()
        if monitor and self._monitor_task is None:
            self._monitor_task = asyncio.create_task(self._monitor_loop(), name="gateway-connection-monitor")

    async def close(self) -> None:
        if self._monitor_task is not None:
            self._monitor_task.cancel()
            await asyncio.gather(self._monitor_task, return_exceptions=True)
            self._monitor_task = None
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None
        self._connected = False

    async def _monitor_loop(self) -> None:
        while True:
            await asyncio.sleep(self.monitor_interval)
            try:
                await self.refresh_connection()
            except Exception as exc:
                self._connected = False
                self.logger.exception("Unhandled error in gateway connection monitor: %s", exc)

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True
        return self._session

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["apikey"] = self._api_key
        return headers

    # --------------------------------------------------------------- transport
    def is_connected(self) -> bool:
        return self._connected

    async def refresh_connection(self) -> bool:
        """Query the gateway for the instance state and cache the result."""
        url = f"{self.base_url}/instance/connectionState/{self.instance}"
        try:
            async with self._ensure_session().get(url, headers=self._headers()) as resp:
                if resp.status != 200:
                    self.logger.warning("Gateway connection check failed: HTTP %s", resp.status)
                    self._connected = False
                    return False
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            self.logger.warning("Gateway connection check failed: %s", exc)
            self._connected = False
            return False

        state = None
        if isinstance(data, dict):
            instance_data = data.get("instance")
            if isinstance(instance_data, dict):
                state = instance_data.get("state")
            state = state or data.get("state")
        connected = state == "open"
        if connected != self._connected:
            self.logger.info("Gateway instance %s state: %s (connected=%s)", self.instance, state, connected)
        self._connected = connected
        return connected

    async def send_text(self, to: str, body: str) -> bool:
        return await self._post("sendText", {"number": to_jid(to), "text": body})

    async def send_media(self, to: str, media: MediaRef, caption: str | None = None) -> bool:
        payload: dict[str, Any] = {
            "number": to_jid(to),
            "media": media.url,
            "mimetype": media.mime_type,
            "mediatype": media_type_for(media.mime_type),
        }
        if caption:
            payload["caption"] = caption
        return await self._post("sendMedia", payload)

    async def _post(self, action: str, payload: dict[str, Any]) -> bool:
        url = f"{self.base_url}/message/{action}/{self.instance}"
        try:
            async with self._ensure_session().post(url, json=payload, headers=self._headers()) as resp:
                if resp.status < 300:
                    self.logger.debug("Gateway %s to %s accepted (HTTP %s)", action, payload["number"], resp.status)
                    return True
                text = await resp.text()
                self.logger.warning(
                    "Gateway %s to %s rejected: HTTP %s %s", action, payload["number"], resp.status, text[:500]
                )
                return False
        except aiohttp.ClientConnectionError:
            self._connected = False
            raise
