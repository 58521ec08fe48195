"""Shared dependency providers for aiohttp handlers."""
from __future__ import annotations

from aiohttp import web

from dashboard_webhooks.services.webhooks import WebhookService

WEBHOOK_SERVICE_KEY = web.AppKey("webhook_service", WebhookService)

USER_ID_HEADER = "X-User-Id"


def require_owner_id(request: web.Request) -> str:
    """Owner of the request. Authentication happens upstream; the gateway
    forwards the authenticated user id in ``X-User-Id``."""
    owner_id = (request.headers.get(USER_ID_HEADER) or "").strip()
    if not owner_id:
        raise web.HTTPUnauthorized(reason=f"Header {USER_ID_HEADER} is required")
    return owner_id


def get_webhook_service(request: web.Request) -> WebhookService:
    return request.app[WEBHOOK_SERVICE_KEY]
