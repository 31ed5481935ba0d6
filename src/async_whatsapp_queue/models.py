# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic models for the outbound message queue.

This module defines the data models used throughout the application for
validation, serialization, and type safety.

Models:
    - Priority / MessageStatus: enumerations with their ordering helpers
    - TextPayload / MediaPayload: the two payload kinds, discriminated by ``kind``
    - MediaRef: what the transport receives for a media send
    - EnqueueRequest: caller-supplied description of a message to send
    - QueuedMessage: the unit of work tracked by the queue
    - QueueStats: aggregate counters published to subscribers
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Priority(str, Enum):
    """Delivery priority. URGENT is served first, LOW last."""

    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Numeric rank used for ordering (0 = most urgent)."""
        return PRIORITY_RANK[self]


PRIORITY_RANK = {
    Priority.URGENT: 0,
    Priority.HIGH: 1,
    Priority.NORMAL: 2,
    Priority.LOW: 3,
}
DEFAULT_PRIORITY = Priority.NORMAL


class MessageStatus(str, Enum):
    """Lifecycle states of a queued message.

    Attributes:
        PENDING: Waiting for the dispatcher (possibly behind a backoff deadline).
        SENDING: A transport call is in flight.
        SENT: Delivered. Terminal.
        FAILED: Retry budget exhausted. Terminal until manually retried.
        CANCELLED: Cancelled by a caller while pending. Terminal.
    """

    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({MessageStatus.SENT, MessageStatus.FAILED, MessageStatus.CANCELLED})


def as_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` as an aware datetime, reading naive values as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class MediaRef(BaseModel):
    """Reference to a media object handed to the transport.

    Attributes:
        url: Where the transport can fetch the media from.
        mime_type: MIME type of the media (e.g. ``image/png``).
    """

    model_config = ConfigDict(frozen=True)

    url: str
    mime_type: str


class TextPayload(BaseModel):
    """Plain text message body."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["text"] = "text"
    body: str


class MediaPayload(BaseModel):
    """Media message: a media reference plus an optional caption."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["media"] = "media"
    media_ref: Annotated[
        str,
        Field(min_length=1, description="URL or storage reference of the media")
    ]
    mime_type: Annotated[
        str,
        Field(min_length=1, description="MIME type of the media")
    ]
    caption: Annotated[
        str | None,
        Field(default=None, description="Optional caption shown with the media")
    ]

    def media(self) -> MediaRef:
        return MediaRef(url=self.media_ref, mime_type=self.mime_type)


Payload = Annotated[Union[TextPayload, MediaPayload], Field(discriminator="kind")]


def _normalise_priority(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


class EnqueueRequest(BaseModel):
    """Description of a message to enqueue.

    Only the destination and payload are required. ``max_attempts`` left
    as None is filled in by the queue from its retry configuration.
    """

    model_config = ConfigDict(extra="forbid")

    to: Annotated[
        str,
        Field(min_length=1, description="Transport-level recipient address")
    ]
    payload: Payload
    priority: Annotated[
        Priority,
        Field(default=DEFAULT_PRIORITY, description="urgent, high, normal or low")
    ]
    max_attempts: Annotated[
        int | None,
        Field(default=None, ge=1, description="Total attempts allowed (>= 1)")
    ]
    scheduled_for: Annotated[
        datetime | None,
        Field(default=None, description="Do not send before this time")
    ]
    customer_id: Annotated[
        int | str | None,
        Field(default=None, description="Correlation id of the customer")
    ]
    ticket_id: Annotated[
        int | str | None,
        Field(default=None, description="Correlation id of the support ticket")
    ]
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("to")
    @classmethod
    def to_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("destination must not be blank")
        return v

    @field_validator("priority", mode="before")
    @classmethod
    def lower_priority(cls, v: Any) -> Any:
        return _normalise_priority(v)

    @field_validator("scheduled_for")
    @classmethod
    def scheduled_for_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)


class QueuedMessage(BaseModel):
    """A message owned by the queue.

    Attributes:
        id: Opaque identifier assigned at enqueue time.
        to: Recipient address.
        payload: Text or media payload.
        priority: Delivery priority.
        status: Current lifecycle state.
        attempts: Transport attempts made so far.
        max_attempts: Attempts allowed before the message fails.
        created_at: Enqueue time.
        scheduled_for: Optional "not before" time.
        customer_id: Optional customer correlation id.
        ticket_id: Optional ticket correlation id.
        metadata: Caller data carried through untouched.
        next_attempt_at: Backoff deadline set after a failed attempt.
        last_error: Description of the most recent failure.
        sent_at: Time the transport accepted the message.
    """

    id: str
    to: str
    payload: Payload
    priority: Priority = DEFAULT_PRIORITY
    status: MessageStatus = MessageStatus.PENDING
    attempts: Annotated[int, Field(default=0, ge=0)]
    max_attempts: Annotated[int, Field(ge=1)]
    created_at: datetime
    scheduled_for: datetime | None = None
    customer_id: int | str | None = None
    ticket_id: int | str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    next_attempt_at: datetime | None = None
    last_error: str | None = None
    sent_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_eligible(self, now: datetime) -> bool:
        """True when the dispatcher may pick this message up at ``now``."""
        if self.status is not MessageStatus.PENDING:
            return False
        if self.scheduled_for is not None and self.scheduled_for > now:
            return False
        if self.next_attempt_at is not None and self.next_attempt_at > now:
            return False
        return True


class QueueStats(BaseModel):
    """Aggregate message counts. Cancelled messages only count towards ``total``."""

    pending: int = 0
    sending: int = 0
    sent: int = 0
    failed: int = 0
    total: int = 0
