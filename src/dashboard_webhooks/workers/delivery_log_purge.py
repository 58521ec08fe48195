"""Worker: purge delivery log entries past the retention window."""
from __future__ import annotations

from datetime import datetime, timedelta

from dashboard_webhooks.repositories.delivery_logs import DeliveryLogStore
from dashboard_webhooks.worker import TaskFn


def make_delivery_log_purge(log_store: DeliveryLogStore, retention_days: int) -> TaskFn:
    async def delivery_log_purge(now: datetime) -> str | None:
        cutoff = now - timedelta(days=retention_days)
        purged = await log_store.purge_before(cutoff)
        return f"purged={purged}" if purged else None

    return delivery_log_purge
