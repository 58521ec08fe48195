"""Webhook service: the surface used by route handlers and event producers."""
from __future__ import annotations

from typing import Any, List

import structlog
from aiohttp import ClientSession

from dashboard_webhooks.core.exceptions import UnknownEventTypeError
from dashboard_webhooks.domain.dto import DeliveryLogQuery, WebhookCreateDTO, WebhookUpdateDTO
from dashboard_webhooks.domain.events import Event, EventType, event_catalog, parse_event_type
from dashboard_webhooks.domain.webhooks import DeliveryOutcome, RegistrationResult, WebhookView
from dashboard_webhooks.repositories.delivery_logs import DeliveryLogStore, InMemoryDeliveryLogStore
from dashboard_webhooks.repositories.webhooks import InMemoryWebhookStore, WebhookStore
from dashboard_webhooks.services.delivery import DeliveryWorker
from dashboard_webhooks.services.dispatcher import EventDispatcher
from dashboard_webhooks.services.registry import SubscriptionRegistry
from dashboard_webhooks.services.retry import RetryPolicy, RetryScheduler
from dashboard_webhooks.settings import Settings

logger = structlog.get_logger(__name__)


class WebhookService:
    """Owns the registry, delivery worker, retry scheduler and dispatcher.

    Construct one per application and pass it around; there is no module
    level instance.
    """

    def __init__(
        self,
        *,
        webhook_store: WebhookStore | None = None,
        log_store: DeliveryLogStore | None = None,
        policy: RetryPolicy | None = None,
        session: ClientSession | None = None,
        request_timeout: float = 10.0,
        probe_timeout: float = 5.0,
        max_pending_retries: int = 10_000,
        max_retry_concurrency: int = 20,
    ):
        self._webhook_store = webhook_store or InMemoryWebhookStore()
        self._log_store = log_store or InMemoryDeliveryLogStore()
        self.worker = DeliveryWorker(
            session=session,
            request_timeout=request_timeout,
            probe_timeout=probe_timeout,
            webhook_store=self._webhook_store,
            log_store=self._log_store,
        )
        self.registry = SubscriptionRegistry(self._webhook_store, prober=self.worker.probe)
        self.scheduler = RetryScheduler(
            self.worker,
            self.registry,
            policy,
            max_pending=max_pending_retries,
            max_concurrency=max_retry_concurrency,
        )
        self.dispatcher = EventDispatcher(self.registry, self.worker, self.scheduler)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        webhook_store: WebhookStore | None = None,
        log_store: DeliveryLogStore | None = None,
    ) -> "WebhookService":
        return cls(
            webhook_store=webhook_store,
            log_store=log_store
            or InMemoryDeliveryLogStore(settings.webhook_log_max_entries_per_webhook),
            policy=RetryPolicy(
                max_retries=settings.webhook_max_retries,
                base_delay=settings.webhook_retry_base_delay_seconds,
                multiplier=settings.webhook_retry_multiplier,
                max_delay=settings.webhook_retry_max_delay_seconds,
            ),
            request_timeout=settings.webhook_request_timeout_seconds,
            probe_timeout=settings.webhook_probe_timeout_seconds,
            max_pending_retries=settings.webhook_retry_max_pending,
            max_retry_concurrency=settings.webhook_retry_max_concurrency,
        )

    @property
    def log_store(self) -> DeliveryLogStore:
        return self._log_store

    async def start(self) -> None:
        await self.registry.load()
        self.scheduler.start()
        logger.info("webhook service started")

    async def stop(self) -> None:
        await self.dispatcher.join()
        await self.scheduler.stop()
        await self.worker.close()
        logger.info("webhook service stopped")

    async def register(self, owner_id: str, dto: WebhookCreateDTO) -> RegistrationResult:
        return await self.registry.register(
            owner_id,
            dto.url,
            events=dto.events,
            headers=dto.headers,
            retry_on_failure=dto.retry_on_failure,
            test_on_register=dto.test_on_register,
        )

    def list_webhooks(self, owner_id: str) -> List[WebhookView]:
        return self.registry.list(owner_id)

    def get_webhook(self, owner_id: str, webhook_id: str) -> WebhookView:
        return self.registry.get(owner_id, webhook_id)

    async def update_webhook(
        self, owner_id: str, webhook_id: str, dto: WebhookUpdateDTO
    ) -> WebhookView:
        updated = await self.registry.update(owner_id, webhook_id, dto)
        return updated.to_view()

    async def delete_webhook(self, owner_id: str, webhook_id: str) -> None:
        await self.registry.delete(owner_id, webhook_id)
        self.scheduler.discard(webhook_id)

    async def test_webhook(self, owner_id: str, webhook_id: str) -> DeliveryOutcome:
        webhook = self.registry.lookup(owner_id, webhook_id)
        return await self.worker.probe(webhook.url, webhook.secret, webhook.headers)

    async def emit(self, event_type: EventType | str, owner_id: str, data: Any = None) -> Event | None:
        """Entry point for event producers; unknown types are ignored."""
        return await self.dispatcher.trigger(event_type, owner_id, data)

    async def trigger(self, owner_id: str, event_type: str, data: Any = None) -> Event:
        """Manual firing from the API; unknown types are a caller error."""
        parsed = parse_event_type(event_type)
        if parsed is None:
            raise UnknownEventTypeError(f"Invalid event type: {event_type}")
        return await self.dispatcher.publish(parsed, owner_id, data)

    def event_catalog(self) -> dict[str, str]:
        return event_catalog()

    async def logs(
        self, owner_id: str, webhook_id: str, query: DeliveryLogQuery
    ) -> dict[str, Any]:
        self.registry.lookup(owner_id, webhook_id)
        items, total = await self._log_store.query(
            owner_id,
            webhook_id,
            limit=query.limit,
            offset=query.offset,
            event_type=query.event_type,
            status=query.status,
        )
        return {
            "logs": [item.model_dump(mode="json") for item in items],
            "total": total,
            "limit": query.limit,
            "offset": query.offset,
        }
