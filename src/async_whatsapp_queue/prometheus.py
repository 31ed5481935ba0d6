# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for monitoring the message queue.

This module defines the Prometheus counters and gauges used to track
delivery operations. All metrics use the ``waq_`` prefix.

Metrics exposed:
    - ``waq_sent_total``: Counter of delivered messages per payload kind.
    - ``waq_failed_total``: Counter of messages that exhausted their retries.
    - ``waq_retried_total``: Counter of failed attempts scheduled for retry.
    - ``waq_cancelled_total``: Counter of messages cancelled by callers.
    - ``waq_messages``: Gauge of messages currently held, by status.

Example:
    Accessing metrics via the REST API::

        GET /metrics
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

from .models import QueueStats


class QueueMetrics:
    """Prometheus metrics collector for the message queue.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
        sent: Counter tracking delivered messages.
        failed: Counter tracking terminal failures.
        retried: Counter tracking attempts rescheduled with backoff.
        cancelled: Counter tracking caller cancellations.
        messages: Gauge of current queue contents by status.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """Initialize metrics with an optional custom registry.

        Args:
            registry: Optional Prometheus CollectorRegistry. A new one is
                created when omitted so that several queues (or tests) never
                collide on metric names.
        """
        self.registry = registry or CollectorRegistry()
        self.sent = Counter(
            "waq_sent_total",
            "Total delivered messages",
            ["kind"],
            registry=self.registry,
        )
        self.failed = Counter(
            "waq_failed_total",
            "Total messages failed after exhausting retries",
            ["kind"],
            registry=self.registry,
        )
        self.retried = Counter(
            "waq_retried_total",
            "Total failed attempts rescheduled with backoff",
            ["kind"],
            registry=self.registry,
        )
        self.cancelled = Counter(
            "waq_cancelled_total",
            "Total messages cancelled while pending",
            registry=self.registry,
        )
        self.messages = Gauge(
            "waq_messages",
            "Messages currently held by the queue",
            ["status"],
            registry=self.registry,
        )

    def inc_sent(self, kind: str) -> None:
        self.sent.labels(kind=kind or "text").inc()

    def inc_failed(self, kind: str) -> None:
        self.failed.labels(kind=kind or "text").inc()

    def inc_retried(self, kind: str) -> None:
        self.retried.labels(kind=kind or "text").inc()

    def inc_cancelled(self) -> None:
        self.cancelled.inc()

    def set_stats(self, stats: QueueStats) -> None:
        """Mirror aggregate queue counts into the ``waq_messages`` gauge."""
        for status in ("pending", "sending", "sent", "failed"):
            self.messages.labels(status=status).set(getattr(stats, status))
        self.messages.labels(status="total").set(stats.total)

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
