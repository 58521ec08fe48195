"""Background tasks for the webhook service.

Each worker module exports a factory returning a task function compatible
with :class:`dashboard_webhooks.worker.WorkerTask`.
"""
from __future__ import annotations

from dashboard_webhooks.repositories.delivery_logs import DeliveryLogStore
from dashboard_webhooks.settings import Settings
from dashboard_webhooks.worker import BackgroundWorker, WorkerTask
from dashboard_webhooks.workers.delivery_log_purge import make_delivery_log_purge


def build_worker(settings: Settings, log_store: DeliveryLogStore) -> BackgroundWorker:
    return BackgroundWorker(
        interval_seconds=settings.worker_interval_seconds,
        tasks=[
            WorkerTask(
                name="delivery_log_purge",
                fn=make_delivery_log_purge(log_store, settings.webhook_log_retention_days),
            ),
        ],
    )


__all__ = ["build_worker"]
