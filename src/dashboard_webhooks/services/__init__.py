"""Domain services exports."""

from dashboard_webhooks.services.delivery import DeliveryWorker
from dashboard_webhooks.services.dispatcher import EventDispatcher
from dashboard_webhooks.services.registry import SubscriptionRegistry
from dashboard_webhooks.services.retry import RetryPolicy, RetryScheduler
from dashboard_webhooks.services.webhooks import WebhookService

__all__ = [
    "DeliveryWorker",
    "EventDispatcher",
    "SubscriptionRegistry",
    "RetryPolicy",
    "RetryScheduler",
    "WebhookService",
]
