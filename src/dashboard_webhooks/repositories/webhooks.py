"""Webhook registration stores (in-memory and PostgreSQL)."""
from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from typing import Any, List, Protocol

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from dashboard_webhooks.core.exceptions import NotFoundError
from dashboard_webhooks.domain.webhooks import DeliveryStats, WebhookRegistration
from dashboard_webhooks.repositories.base import BaseRepository


class WebhookStore(Protocol):
    """Persistence contract used by the registry and the delivery worker."""

    async def save(self, webhook: WebhookRegistration) -> None: ...

    async def update(self, webhook: WebhookRegistration) -> None: ...

    async def save_stats(self, webhook_id: str, stats: DeliveryStats) -> None: ...

    async def delete(self, webhook_id: str) -> None: ...

    async def load_all(self) -> List[WebhookRegistration]: ...


class InMemoryWebhookStore:
    """Process-local store; the default backend and the one used in tests."""

    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Any]] = {}

    async def save(self, webhook: WebhookRegistration) -> None:
        self._rows[webhook.id] = webhook.model_dump(mode="json")

    async def update(self, webhook: WebhookRegistration) -> None:
        if webhook.id not in self._rows:
            raise NotFoundError("Webhook not found")
        self._rows[webhook.id] = webhook.model_dump(mode="json")

    async def save_stats(self, webhook_id: str, stats: DeliveryStats) -> None:
        row = self._rows.get(webhook_id)
        if row is not None:
            row["delivery_stats"] = stats.model_dump(mode="json")

    async def delete(self, webhook_id: str) -> None:
        if self._rows.pop(webhook_id, None) is None:
            raise NotFoundError("Webhook not found")

    async def load_all(self) -> List[WebhookRegistration]:
        return [WebhookRegistration.model_validate(row) for row in self._rows.values()]


class PostgresWebhookStore(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)
        self._stats_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @staticmethod
    def _to_model(record: Record) -> WebhookRegistration:
        payload = dict(record)
        for key in ("headers", "delivery_stats"):
            value = payload.get(key)
            if isinstance(value, str):
                payload[key] = json.loads(value)
        return WebhookRegistration.model_validate(payload)

    async def save(self, webhook: WebhookRegistration) -> None:
        await self._execute(
            """
            INSERT INTO webhooks (
                id,
                owner_id,
                url,
                secret,
                events,
                active,
                headers,
                retry_on_failure,
                delivery_stats,
                created_at,
                updated_at
            )
            VALUES ($1, $2, $3, $4, $5::text[], $6, $7::jsonb, $8, $9::jsonb, $10, $11)
            """,
            webhook.id,
            webhook.owner_id,
            webhook.url,
            webhook.secret,
            webhook.events,
            webhook.active,
            json.dumps(webhook.headers),
            webhook.retry_on_failure,
            webhook.delivery_stats.model_dump_json(),
            webhook.created_at,
            webhook.updated_at,
        )

    async def update(self, webhook: WebhookRegistration) -> None:
        # secret and created_at are never rewritten
        record = await self._fetchrow(
            """
            UPDATE webhooks
            SET url = $2,
                events = $3::text[],
                active = $4,
                headers = $5::jsonb,
                retry_on_failure = $6,
                updated_at = $7
            WHERE id = $1
            RETURNING id
            """,
            webhook.id,
            webhook.url,
            webhook.events,
            webhook.active,
            json.dumps(webhook.headers),
            webhook.retry_on_failure,
            webhook.updated_at,
        )
        if record is None:
            raise NotFoundError("Webhook not found")

    async def save_stats(self, webhook_id: str, stats: DeliveryStats) -> None:
        """Persist the current counters; an older snapshot never replaces a newer one."""
        async with self._stats_locks[webhook_id]:
            # snapshot taken under the lock, so writes for one webhook land in order
            await self._execute(
                """
                UPDATE webhooks
                SET delivery_stats = $2::jsonb
                WHERE id = $1
                  AND COALESCE((delivery_stats->>'sent')::int, 0) <= $3
                """,
                webhook_id,
                stats.model_dump_json(),
                stats.sent,
            )

    async def delete(self, webhook_id: str) -> None:
        self._stats_locks.pop(webhook_id, None)
        record = await self._fetchrow(
            "DELETE FROM webhooks WHERE id = $1 RETURNING id",
            webhook_id,
        )
        if record is None:
            raise NotFoundError("Webhook not found")

    async def load_all(self) -> List[WebhookRegistration]:
        records = await self._fetch("SELECT * FROM webhooks ORDER BY created_at ASC")
        return [self._to_model(r) for r in records]
