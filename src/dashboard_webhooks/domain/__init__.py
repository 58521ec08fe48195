"""Domain models exports."""

from dashboard_webhooks.domain.events import (
    EVENT_DESCRIPTIONS,
    WILDCARD,
    Event,
    EventType,
    event_catalog,
    parse_event_type,
)
from dashboard_webhooks.domain.webhooks import (
    DeliveryLogEntry,
    DeliveryOutcome,
    DeliveryStats,
    LastError,
    RegistrationResult,
    WebhookRegistration,
    WebhookView,
)

__all__ = [
    "EVENT_DESCRIPTIONS",
    "WILDCARD",
    "Event",
    "EventType",
    "event_catalog",
    "parse_event_type",
    "DeliveryLogEntry",
    "DeliveryOutcome",
    "DeliveryStats",
    "LastError",
    "RegistrationResult",
    "WebhookRegistration",
    "WebhookView",
]
