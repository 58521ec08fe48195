"""Repository exports."""

from dashboard_webhooks.repositories.delivery_logs import (
    DeliveryLogStore,
    InMemoryDeliveryLogStore,
    PostgresDeliveryLogStore,
)
from dashboard_webhooks.repositories.webhooks import (
    InMemoryWebhookStore,
    PostgresWebhookStore,
    WebhookStore,
)

__all__ = [
    "DeliveryLogStore",
    "InMemoryDeliveryLogStore",
    "PostgresDeliveryLogStore",
    "InMemoryWebhookStore",
    "PostgresWebhookStore",
    "WebhookStore",
]
