"""Webhook domain primitives."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from dashboard_webhooks.domain.events import WILDCARD, EventType

# value shown for custom headers in API views
REDACTED = "********"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LastError(BaseModel):
    message: str
    timestamp: datetime


class DeliveryStats(BaseModel):
    """Per-webhook delivery counters.

    Each ``record_*`` call updates every field synchronously, so counters stay
    consistent (``sent == succeeded + failed``) even when several deliveries to
    the same webhook are in flight on the event loop.
    """

    sent: int = 0
    succeeded: int = 0
    failed: int = 0
    last_delivery: datetime | None = None
    last_error: LastError | None = None

    def record_success(self, at: datetime | None = None) -> None:
        self.sent += 1
        self.succeeded += 1
        self.last_delivery = at or utcnow()

    def record_failure(self, message: str, at: datetime | None = None) -> None:
        self.sent += 1
        self.failed += 1
        self.last_error = LastError(message=message, timestamp=at or utcnow())


class WebhookRegistration(BaseModel):
    """Stored webhook. The registry replaces instances instead of mutating them;
    only ``delivery_stats`` is shared and updated in place."""

    id: str
    owner_id: str
    url: str
    secret: str
    events: list[str] = Field(default_factory=lambda: [WILDCARD])
    active: bool = True
    headers: dict[str, str] = Field(default_factory=dict)
    retry_on_failure: bool = True
    delivery_stats: DeliveryStats = Field(default_factory=DeliveryStats)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def matches(self, event_type: EventType | str) -> bool:
        name = event_type.value if isinstance(event_type, EventType) else event_type
        return WILDCARD in self.events or name in self.events

    def to_view(self) -> "WebhookView":
        data = self.model_dump(exclude={"secret"})
        data["headers"] = {name: REDACTED for name in self.headers}
        return WebhookView.model_validate(data)


class WebhookView(BaseModel):
    """Registration as returned to API callers: no secret, header values masked."""

    model_config = ConfigDict(extra="ignore")

    id: str
    owner_id: str
    url: str
    events: list[str]
    active: bool
    headers: dict[str, str]
    retry_on_failure: bool
    delivery_stats: DeliveryStats
    created_at: datetime
    updated_at: datetime


class RegistrationResult(BaseModel):
    """The one response that contains the secret."""

    id: str
    secret: str
    url: str
    events: list[str]


class DeliveryOutcome(BaseModel):
    success: bool
    retryable: bool = False
    status_code: int | None = None
    error: str | None = None
    attempt: int = 1
    duration_ms: float = 0.0


DeliveryStatus = Literal["success", "failed"]


class DeliveryLogEntry(BaseModel):
    id: str
    webhook_id: str
    owner_id: str
    event_id: str
    event_type: str
    attempt: int
    status: DeliveryStatus
    status_code: int | None = None
    error: str | None = None
    duration_ms: float = 0.0
    created_at: datetime = Field(default_factory=utcnow)
