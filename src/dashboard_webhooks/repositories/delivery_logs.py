"""Delivery log stores (in-memory and PostgreSQL)."""
from __future__ import annotations

from collections import defaultdict, deque
from datetime import datetime
from typing import Any, List, Protocol, Tuple

from asyncpg import Pool  # type: ignore[import-untyped]

from dashboard_webhooks.domain.webhooks import DeliveryLogEntry
from dashboard_webhooks.repositories.base import BaseRepository


class DeliveryLogStore(Protocol):
    async def append(self, entry: DeliveryLogEntry) -> None: ...

    async def query(
        self,
        owner_id: str,
        webhook_id: str,
        *,
        limit: int = 100,
        offset: int = 0,
        event_type: str | None = None,
        status: str | None = None,
    ) -> Tuple[List[DeliveryLogEntry], int]: ...

    async def purge_before(self, cutoff: datetime) -> int: ...


class InMemoryDeliveryLogStore:
    """Keeps the newest ``max_entries_per_webhook`` entries for each webhook."""

    def __init__(self, max_entries_per_webhook: int = 1000) -> None:
        self._max = max_entries_per_webhook
        self._entries: defaultdict[str, deque[DeliveryLogEntry]] = defaultdict(
            lambda: deque(maxlen=self._max)
        )

    async def append(self, entry: DeliveryLogEntry) -> None:
        self._entries[entry.webhook_id].append(entry)

    async def query(
        self,
        owner_id: str,
        webhook_id: str,
        *,
        limit: int = 100,
        offset: int = 0,
        event_type: str | None = None,
        status: str | None = None,
    ) -> Tuple[List[DeliveryLogEntry], int]:
        matching = [
            entry
            for entry in reversed(self._entries.get(webhook_id, ()))
            if entry.owner_id == owner_id
            and (event_type is None or entry.event_type == event_type)
            and (status is None or entry.status == status)
        ]
        return matching[offset : offset + limit], len(matching)

    async def purge_before(self, cutoff: datetime) -> int:
        purged = 0
        for webhook_id in list(self._entries):
            entries = self._entries[webhook_id]
            kept = [e for e in entries if e.created_at >= cutoff]
            purged += len(entries) - len(kept)
            if kept:
                self._entries[webhook_id] = deque(kept, maxlen=self._max)
            else:
                del self._entries[webhook_id]
        return purged


class PostgresDeliveryLogStore(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    async def append(self, entry: DeliveryLogEntry) -> None:
        await self._execute(
            """
            INSERT INTO webhook_delivery_logs (
                id,
                webhook_id,
                owner_id,
                event_id,
                event_type,
                attempt,
                status,
                status_code,
                error,
                duration_ms,
                created_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            """,
            entry.id,
            entry.webhook_id,
            entry.owner_id,
            entry.event_id,
            entry.event_type,
            entry.attempt,
            entry.status,
            entry.status_code,
            entry.error,
            entry.duration_ms,
            entry.created_at,
        )

    async def query(
        self,
        owner_id: str,
        webhook_id: str,
        *,
        limit: int = 100,
        offset: int = 0,
        event_type: str | None = None,
        status: str | None = None,
    ) -> Tuple[List[DeliveryLogEntry], int]:
        where = ["owner_id = $1", "webhook_id = $2"]
        values: list[Any] = [owner_id, webhook_id]
        idx = 3
        if event_type is not None:
            where.append(f"event_type = ${idx}")
            values.append(event_type)
            idx += 1
        if status is not None:
            where.append(f"status = ${idx}")
            values.append(status)
            idx += 1
        where_sql = " AND ".join(where)
        query = f"""
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhook_delivery_logs
            WHERE {where_sql}
            ORDER BY created_at DESC
            LIMIT ${idx} OFFSET ${idx + 1}
        """
        values.extend([limit, offset])
        records = await self._fetch(query, *values)
        items: List[DeliveryLogEntry] = []
        total: int | None = None
        for rec in records:
            rec_dict = dict(rec)
            total_value = rec_dict.pop("total_count", None)
            if total_value is not None:
                total = int(total_value)
            items.append(DeliveryLogEntry.model_validate(rec_dict))
        if total is None:
            # page past the end: the window function had no rows to report on
            record = await self._fetchrow(
                f"SELECT COUNT(*) AS total FROM webhook_delivery_logs WHERE {where_sql}",
                *values[:-2],
            )
            total = int(record["total"]) if record else 0
        return items, total

    async def purge_before(self, cutoff: datetime) -> int:
        result = await self._execute(
            "DELETE FROM webhook_delivery_logs WHERE created_at < $1",
            cutoff,
        )
        return self._affected(result)
