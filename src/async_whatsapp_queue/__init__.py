"""Asynchronous outbound WhatsApp message queue with priority and retry.

This package decouples send requests coming from the support desk (UI,
ticketing code, HTTP callers) from an unreliable, rate-limited messaging
transport. Features include:

- Priority- and schedule-aware in-memory queue
- Batch-capped periodic dispatcher with at most one attempt in flight per message
- Automatic retry with exponential backoff and manual retry of failed messages
- Subscriber callbacks for sent/failed/stats events
- Prometheus metrics for monitoring
- FastAPI REST API for control and message submission

Example:
    Basic usage with an HTTP gateway transport::

        from async_whatsapp_queue.core import AsyncMessageQueue
        from async_whatsapp_queue.gateway import GatewayTransport

        transport = GatewayTransport("https://wa-gateway.local", "support", api_key="secret")
        queue = AsyncMessageQueue(transport)
        await queue.start()
        queue.enqueue(to="5511999999999@c.us", payload={"kind": "text", "body": "Hello"})
"""
