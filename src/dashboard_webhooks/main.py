"""aiohttp application entrypoint."""
from __future__ import annotations

import asyncpg  # type: ignore[import-untyped]
import structlog
from aiohttp import web
from aiohttp_cors import ResourceOptions, setup as cors_setup

from dashboard_webhooks.api.router import setup_routes
from dashboard_webhooks.db.migrations import apply_migrations
from dashboard_webhooks.db.pool import close_pool, create_pool
from dashboard_webhooks.logging_config import configure_logging
from dashboard_webhooks.middleware.trace import create_trace_middleware
from dashboard_webhooks.repositories import PostgresDeliveryLogStore, PostgresWebhookStore
from dashboard_webhooks.services.dependencies import WEBHOOK_SERVICE_KEY
from dashboard_webhooks.services.webhooks import WebhookService
from dashboard_webhooks.settings import Settings, get_settings
from dashboard_webhooks.worker import BackgroundWorker
from dashboard_webhooks.workers import build_worker

logger = structlog.get_logger(__name__)

_DB_POOL_KEY = web.AppKey("db_pool", asyncpg.Pool)
_WORKER_KEY = web.AppKey("background_worker", BackgroundWorker)
SETTINGS_KEY = web.AppKey("settings", Settings)

_ALLOWED_HEADERS = (
    "Accept",
    "Content-Type",
    "Authorization",
    "X-Trace-Id",
    "X-Request-Id",
    "X-User-Id",
)
_EXPOSED_HEADERS = ("X-Trace-Id", "X-Request-Id")


async def healthcheck(request: web.Request) -> web.Response:
    settings = request.app[SETTINGS_KEY]
    return web.json_response({"status": "ok", "service": settings.app_name, "env": settings.env})


def _startup(settings: Settings):
    async def start_webhook_service(app: web.Application) -> None:
        if WEBHOOK_SERVICE_KEY not in app:
            if settings.store_backend == "postgres":
                pool = await create_pool(settings)
                app[_DB_POOL_KEY] = pool
                applied = await apply_migrations(pool)
                logger.info("database ready", migrations_applied=applied)
                service = WebhookService.from_settings(
                    settings,
                    webhook_store=PostgresWebhookStore(pool),
                    log_store=PostgresDeliveryLogStore(pool),
                )
            else:
                service = WebhookService.from_settings(settings)
            app[WEBHOOK_SERVICE_KEY] = service

        service = app[WEBHOOK_SERVICE_KEY]
        await service.start()
        worker = build_worker(settings, service.log_store)
        app[_WORKER_KEY] = worker
        await worker.start(app)

    return start_webhook_service


async def stop_webhook_service(app: web.Application) -> None:
    worker = app.get(_WORKER_KEY)
    if worker is not None:
        await worker.stop(app)
    service = app.get(WEBHOOK_SERVICE_KEY)
    if service is not None:
        await service.stop()
    await close_pool(app.get(_DB_POOL_KEY))


def create_app(
    settings: Settings | None = None, *, service: WebhookService | None = None
) -> web.Application:
    settings = settings or get_settings()
    app = web.Application(middlewares=[create_trace_middleware(settings.app_name)])
    app[SETTINGS_KEY] = settings
    if service is not None:
        app[WEBHOOK_SERVICE_KEY] = service

    cors = cors_setup(
        app,
        defaults={
            origin: ResourceOptions(
                allow_credentials=True,
                expose_headers=_EXPOSED_HEADERS,
                allow_headers=_ALLOWED_HEADERS,
                allow_methods=("GET", "POST", "PUT", "DELETE", "OPTIONS"),
            )
            for origin in settings.cors_allowed_origins
        },
    )

    app.router.add_get("/health", healthcheck)
    setup_routes(app)
    app.on_startup.append(_startup(settings))
    app.on_cleanup.append(stop_webhook_service)

    for route in list(app.router.routes()):
        cors.add(route)

    return app


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    web.run_app(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
