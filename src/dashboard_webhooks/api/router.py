"""API router composition for aiohttp."""
from __future__ import annotations

from aiohttp import web

from dashboard_webhooks.api.routes import webhooks

ROUTE_MODULES = [
    webhooks,
]


def setup_routes(app: web.Application) -> None:
    """Attach domain routes to the aiohttp application."""
    for module in ROUTE_MODULES:
        app.add_routes(module.routes)
