# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""In-memory ordered store of queued messages.

The store keeps every message that has not been swept, in dispatch order.
Placement happens once, at insertion time:

- when both the new message and the resident being compared carry a
  ``scheduled_for``, the new message goes before the first resident
  scheduled strictly later;
- otherwise priorities are compared and the new message goes before the
  first resident with a strictly lower priority;
- if no resident qualifies the message is appended.

Without schedules this is a stable priority queue; between scheduled
messages the schedule decides. The store has no capacity bound; callers
are responsible for sweeping terminal messages.

All methods are synchronous and must be called from the single task that
owns the queue.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime
from typing import Any

from .models import TERMINAL_STATUSES, MessageStatus, QueuedMessage, QueueStats


class QueueStore:
    """Ordered collection of :class:`QueuedMessage` records."""

    def __init__(self) -> None:
        self._items: list[QueuedMessage] = []
        self._index: dict[str, QueuedMessage] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[QueuedMessage]:
        # Live records, for the owning queue only.
        return iter(list(self._items))

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._index

    # ----------------------------------------------------------------- writes
    def insert(self, message: QueuedMessage) -> int:
        """Insert ``message`` according to the placement rule.

        Returns:
            The position the message was inserted at.
        """
        if message.id in self._index:
            raise KeyError(f"duplicate message id {message.id}")
        position = self._insert_position(message)
        self._items.insert(position, message)
        self._index[message.id] = message
        return position

    def _insert_position(self, message: QueuedMessage) -> int:
        rank = message.priority.rank
        for position, resident in enumerate(self._items):
            if message.scheduled_for is not None and resident.scheduled_for is not None:
                if message.scheduled_for < resident.scheduled_for:
                    return position
            elif rank < resident.priority.rank:
                return position
        return len(self._items)

    def remove(self, message_id: str) -> QueuedMessage | None:
        message = self._index.pop(message_id, None)
        if message is not None:
            self._items.remove(message)
        return message

    def sweep_terminal(self) -> int:
        """Drop every sent, failed or cancelled message.

        Returns:
            Number of messages removed.
        """
        kept = [msg for msg in self._items if msg.status not in TERMINAL_STATUSES]
        removed = len(self._items) - len(kept)
        if removed:
            self._items = kept
            self._index = {msg.id: msg for msg in kept}
        return removed

    # ------------------------------------------------------------------ reads
    def lookup(self, message_id: str) -> QueuedMessage | None:
        """Return the live record (not a copy) or None."""
        return self._index.get(message_id)

    def get(self, message_id: str) -> QueuedMessage | None:
        message = self._index.get(message_id)
        return message.model_copy(deep=True) if message is not None else None

    def snapshot(self) -> list[QueuedMessage]:
        """Deep copies of every message, in dispatch order."""
        return [msg.model_copy(deep=True) for msg in self._items]

    def by_status(self, status: MessageStatus | str) -> list[QueuedMessage]:
        status = MessageStatus(status)
        return [msg.model_copy(deep=True) for msg in self._items if msg.status is status]

    def by_correlation(
        self,
        *,
        customer_id: Any = None,
        ticket_id: Any = None,
    ) -> list[QueuedMessage]:
        """Messages matching every correlation id given (None means "any").

        Ids are compared as strings, so ``7`` and ``"7"`` match.
        """
        if customer_id is None and ticket_id is None:
            return []
        result = []
        for msg in self._items:
            if customer_id is not None and not _same_id(msg.customer_id, customer_id):
                continue
            if ticket_id is not None and not _same_id(msg.ticket_id, ticket_id):
                continue
            result.append(msg.model_copy(deep=True))
        return result

    def eligible(self, now: datetime, limit: int | None = None) -> list[QueuedMessage]:
        """Live pending records that are due at ``now``, in dispatch order."""
        due: list[QueuedMessage] = []
        for msg in self._items:
            if msg.is_eligible(now):
                due.append(msg)
                if limit is not None and len(due) >= limit:
                    break
        return due

    def stats(self) -> QueueStats:
        stats = QueueStats(total=len(self._items))
        for msg in self._items:
            match msg.status:
                case MessageStatus.PENDING:
                    stats.pending += 1
                case MessageStatus.SENDING:
                    stats.sending += 1
                case MessageStatus.SENT:
                    stats.sent += 1
                case MessageStatus.FAILED:
                    stats.failed += 1
        return stats


def _same_id(value: Any, query: Any) -> bool:
    return value is not None and str(value) == str(query)
