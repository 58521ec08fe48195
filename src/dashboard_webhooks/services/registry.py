"""Subscription registry: owner -> webhook id -> registration."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Awaitable, Callable, List, Mapping
from urllib.parse import urlsplit

import structlog

from dashboard_webhooks.core.exceptions import (
    InvalidURLError,
    NotFoundError,
    RegistrationTestFailedError,
    ValidationError,
)
from dashboard_webhooks.core.ids import generate_webhook_id
from dashboard_webhooks.domain.dto import WebhookUpdateDTO
from dashboard_webhooks.domain.events import WILDCARD, EventType, parse_event_type
from dashboard_webhooks.domain.webhooks import (
    DeliveryOutcome,
    RegistrationResult,
    WebhookRegistration,
    WebhookView,
)
from dashboard_webhooks.repositories.webhooks import WebhookStore
from dashboard_webhooks.services.delivery import is_reserved_header
from dashboard_webhooks.services.signing import generate_secret

logger = structlog.get_logger(__name__)

Prober = Callable[[str, str, Mapping[str, str]], Awaitable[DeliveryOutcome]]

_EMPTY: Mapping[str, WebhookRegistration] = MappingProxyType({})


def validate_url(url: str) -> str:
    try:
        parts = urlsplit(url.strip())
    except (AttributeError, ValueError) as exc:
        raise InvalidURLError("Invalid webhook URL") from exc
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise InvalidURLError("Invalid webhook URL")
    return url.strip()


def normalize_events(events: list[str] | None) -> list[str]:
    """``None`` or any list containing ``*`` subscribes to everything."""
    if events is None:
        return [WILDCARD]
    cleaned = list(dict.fromkeys(e.strip() for e in events if e and e.strip()))
    if not cleaned:
        raise ValidationError("events must be a non-empty list")
    if WILDCARD in cleaned:
        return [WILDCARD]
    invalid = [e for e in cleaned if parse_event_type(e) is None]
    if invalid:
        raise ValidationError(f"Invalid event types: {', '.join(invalid)}")
    return cleaned


def validate_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    if not headers:
        return {}
    reserved = [name for name in headers if is_reserved_header(name)]
    if reserved:
        raise ValidationError(f"Reserved headers cannot be overridden: {', '.join(reserved)}")
    return {str(k): str(v) for k, v in headers.items()}


class SubscriptionRegistry:
    """In-memory index of registrations, persisted through a :class:`WebhookStore`.

    Each owner's webhooks live in a read-only mapping that writers replace
    wholesale (copy-on-write) while holding ``_lock``. Readers never take the
    lock: they grab the current mapping and see a consistent snapshot.
    Registrations themselves are replaced on update, never mutated, except for
    the shared ``delivery_stats`` object.
    """

    def __init__(self, store: WebhookStore, prober: Prober | None = None):
        self._store = store
        self._prober = prober
        self._by_owner: dict[str, Mapping[str, WebhookRegistration]] = {}
        self._deleting: set[str] = set()
        self._lock = asyncio.Lock()

    def _snapshot(self, owner_id: str) -> Mapping[str, WebhookRegistration]:
        return self._by_owner.get(owner_id, _EMPTY)

    def _publish(self, owner_id: str, webhooks: dict[str, WebhookRegistration]) -> None:
        if webhooks:
            self._by_owner[owner_id] = MappingProxyType(webhooks)
        else:
            self._by_owner.pop(owner_id, None)

    async def load(self) -> int:
        """Populate the index from the store. Returns the number loaded."""
        webhooks = await self._store.load_all()
        grouped: dict[str, dict[str, WebhookRegistration]] = {}
        for webhook in webhooks:
            grouped.setdefault(webhook.owner_id, {})[webhook.id] = webhook
        async with self._lock:
            for owner_id, items in grouped.items():
                self._publish(owner_id, items)
        logger.info("webhooks loaded", count=len(webhooks), owners=len(grouped))
        return len(webhooks)

    async def register(
        self,
        owner_id: str,
        url: str,
        events: list[str] | None = None,
        headers: Mapping[str, str] | None = None,
        retry_on_failure: bool = True,
        test_on_register: bool = True,
    ) -> RegistrationResult:
        webhook = WebhookRegistration(
            id=generate_webhook_id(),
            owner_id=owner_id,
            url=validate_url(url),
            secret=generate_secret(),
            events=normalize_events(events),
            headers=validate_headers(headers),
            retry_on_failure=retry_on_failure,
        )

        if test_on_register:
            if self._prober is None:
                raise RegistrationTestFailedError("Webhook test failed: no prober configured")
            outcome = await self._prober(webhook.url, webhook.secret, webhook.headers)
            if not outcome.success:
                logger.info("webhook registration test failed", url=webhook.url, error=outcome.error)
                raise RegistrationTestFailedError(f"Webhook test failed: {outcome.error}")

        async with self._lock:
            await self._store.save(webhook)
            webhooks = dict(self._snapshot(owner_id))
            webhooks[webhook.id] = webhook
            self._publish(owner_id, webhooks)

        logger.info("webhook registered", webhook_id=webhook.id, owner_id=owner_id, events=webhook.events)
        return RegistrationResult(id=webhook.id, secret=webhook.secret, url=webhook.url, events=webhook.events)

    async def update(
        self, owner_id: str, webhook_id: str, changes: WebhookUpdateDTO
    ) -> WebhookRegistration:
        fields = changes.model_dump(exclude_unset=True, exclude_none=True)
        if "url" in fields:
            fields["url"] = validate_url(fields["url"])
        if "events" in fields:
            fields["events"] = normalize_events(fields["events"])
        if "headers" in fields:
            fields["headers"] = validate_headers(fields["headers"])

        async with self._lock:
            current = self._snapshot(owner_id).get(webhook_id)
            if current is None or webhook_id in self._deleting:
                raise NotFoundError("Webhook not found")
            fields["updated_at"] = datetime.now(timezone.utc)
            # shallow copy keeps the same delivery_stats object
            updated = current.model_copy(update=fields)
            await self._store.update(updated)
            webhooks = dict(self._snapshot(owner_id))
            webhooks[webhook_id] = updated
            self._publish(owner_id, webhooks)

        logger.info("webhook updated", webhook_id=webhook_id, fields=sorted(fields))
        return updated

    async def delete(self, owner_id: str, webhook_id: str) -> None:
        """Remove a webhook. Once this returns no new attempt will start for it."""
        async with self._lock:
            if webhook_id not in self._snapshot(owner_id) or webhook_id in self._deleting:
                raise NotFoundError("Webhook not found")
            # eligible() refuses the id from here on, before any await
            self._deleting.add(webhook_id)
            try:
                await self._store.delete(webhook_id)
            except NotFoundError:
                logger.warning("webhook missing from store on delete", webhook_id=webhook_id)
            except Exception:
                self._deleting.discard(webhook_id)
                raise
            webhooks = dict(self._snapshot(owner_id))
            webhooks.pop(webhook_id, None)
            self._publish(owner_id, webhooks)
            self._deleting.discard(webhook_id)

        logger.info("webhook deleted", webhook_id=webhook_id, owner_id=owner_id)

    def lookup(self, owner_id: str, webhook_id: str) -> WebhookRegistration:
        webhook = self._snapshot(owner_id).get(webhook_id)
        if webhook is None or webhook_id in self._deleting:
            raise NotFoundError("Webhook not found")
        return webhook

    def get(self, owner_id: str, webhook_id: str) -> WebhookView:
        return self.lookup(owner_id, webhook_id).to_view()

    def list(self, owner_id: str) -> List[WebhookView]:
        webhooks = sorted(self._snapshot(owner_id).values(), key=lambda w: w.created_at)
        return [w.to_view() for w in webhooks if w.id not in self._deleting]

    def find_matching(self, owner_id: str, event_type: EventType | str) -> List[WebhookRegistration]:
        return [
            webhook
            for webhook in self._snapshot(owner_id).values()
            if webhook.active and webhook.id not in self._deleting and webhook.matches(event_type)
        ]

    def eligible(self, owner_id: str, webhook_id: str) -> WebhookRegistration | None:
        """Current registration if it may still receive attempts."""
        if webhook_id in self._deleting:
            return None
        webhook = self._snapshot(owner_id).get(webhook_id)
        if webhook is None or not webhook.active:
            return None
        return webhook
