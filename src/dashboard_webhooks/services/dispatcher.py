"""Fan events out to every matching webhook."""
from __future__ import annotations

import asyncio
from typing import Any

import structlog

from dashboard_webhooks.domain.events import Event, EventType, parse_event_type
from dashboard_webhooks.domain.webhooks import DeliveryOutcome, WebhookRegistration
from dashboard_webhooks.services.delivery import DeliveryWorker
from dashboard_webhooks.services.registry import SubscriptionRegistry
from dashboard_webhooks.services.retry import RetryScheduler

logger = structlog.get_logger(__name__)


class EventDispatcher:
    def __init__(
        self,
        registry: SubscriptionRegistry,
        worker: DeliveryWorker,
        scheduler: RetryScheduler,
    ):
        self._registry = registry
        self._worker = worker
        self._scheduler = scheduler
        self._fanouts: set[asyncio.Task[list[DeliveryOutcome | None | BaseException]]] = set()

    @property
    def inflight_count(self) -> int:
        return len(self._fanouts)

    async def trigger(
        self, event_type: EventType | str, owner_id: str, data: Any = None
    ) -> Event | None:
        """Start delivering an event; returns once the fan-out task exists.

        Unknown event types are logged and ignored: producers may fire events
        speculatively. Returns None in that case.
        """
        parsed = parse_event_type(event_type)
        if parsed is None:
            logger.warning("unknown webhook event type", event_type=str(event_type), owner_id=owner_id)
            return None
        return await self.publish(parsed, owner_id, data)

    async def publish(self, event_type: EventType, owner_id: str, data: Any = None) -> Event:
        """Like :meth:`trigger` for an already validated catalog type."""
        event = Event(type=event_type, owner_id=owner_id, data={} if data is None else data)
        matches = self._registry.find_matching(owner_id, event_type)
        if not matches:
            logger.debug("no webhooks for event", event_type=event_type.value, owner_id=owner_id)
            return event

        logger.info(
            "webhook event triggered",
            event_id=event.id,
            event_type=event_type.value,
            owner_id=owner_id,
            webhooks=len(matches),
        )
        task = asyncio.create_task(self._fan_out(event, matches))
        self._fanouts.add(task)
        task.add_done_callback(self._fanouts.discard)
        return event

    async def _fan_out(
        self, event: Event, webhooks: list[WebhookRegistration]
    ) -> list[DeliveryOutcome | None | BaseException]:
        # settle all: one webhook's failure never stops the others
        results = await asyncio.gather(
            *(self._deliver_first(webhook, event) for webhook in webhooks),
            return_exceptions=True,
        )
        for webhook, result in zip(webhooks, results):
            if isinstance(result, BaseException):
                logger.error(
                    "webhook fan-out failed",
                    webhook_id=webhook.id,
                    event_id=event.id,
                    event_type=event.type.value,
                    exc_info=result,
                )
        return results

    async def _deliver_first(
        self, webhook: WebhookRegistration, event: Event
    ) -> DeliveryOutcome | None:
        # the webhook may have been deleted between trigger() and this task running
        current = self._registry.eligible(webhook.owner_id, webhook.id)
        if current is None:
            return None
        outcome = await self._worker.deliver(current, event, attempt=1)
        self._scheduler.after_attempt(current, event, outcome)
        return outcome

    async def join(self) -> None:
        """Wait for in-flight first attempts. Retries are the scheduler's business."""
        while self._fanouts:
            await asyncio.gather(*list(self._fanouts), return_exceptions=True)
