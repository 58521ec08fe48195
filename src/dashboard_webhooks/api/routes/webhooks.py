"""Webhook endpoints."""
from __future__ import annotations

from aiohttp import web

from dashboard_webhooks.api.utils import json_error, parse_model, read_json
from dashboard_webhooks.core.exceptions import (
    NotFoundError,
    RegistrationTestFailedError,
    ValidationError,
)
from dashboard_webhooks.domain.dto import (
    DeliveryLogQuery,
    TriggerDTO,
    WebhookCreateDTO,
    WebhookUpdateDTO,
)
from dashboard_webhooks.services.dependencies import get_webhook_service, require_owner_id

routes = web.RouteTableDef()

# static paths are registered before /{webhook_id} so they are matched first


@routes.get("/api/v1/webhooks")
async def list_webhooks(request: web.Request):
    owner_id = require_owner_id(request)
    service = get_webhook_service(request)
    items = service.list_webhooks(owner_id)
    return web.json_response(
        {"webhooks": [item.model_dump(mode="json") for item in items], "total": len(items)}
    )


@routes.post("/api/v1/webhooks")
async def register_webhook(request: web.Request):
    owner_id = require_owner_id(request)
    dto = parse_model(WebhookCreateDTO, await read_json(request))
    service = get_webhook_service(request)
    try:
        result = await service.register(owner_id, dto)
    except (ValidationError, RegistrationTestFailedError) as exc:
        raise json_error(web.HTTPBadRequest, str(exc)) from exc
    return web.json_response(result.model_dump(mode="json"), status=201)


@routes.get("/api/v1/webhooks/events")
async def list_event_types(request: web.Request):
    require_owner_id(request)
    service = get_webhook_service(request)
    return web.json_response({"events": service.event_catalog()})


@routes.post("/api/v1/webhooks/trigger")
async def trigger_event(request: web.Request):
    owner_id = require_owner_id(request)
    dto = parse_model(TriggerDTO, await read_json(request))
    service = get_webhook_service(request)
    try:
        event = await service.trigger(owner_id, dto.event_type, dto.data)
    except ValidationError as exc:
        raise json_error(web.HTTPBadRequest, str(exc)) from exc
    return web.json_response({"event_id": event.id, "event_type": event.type.value}, status=202)


@routes.get("/api/v1/webhooks/{webhook_id}")
async def get_webhook(request: web.Request):
    owner_id = require_owner_id(request)
    service = get_webhook_service(request)
    try:
        webhook = service.get_webhook(owner_id, request.match_info["webhook_id"])
    except NotFoundError as exc:
        raise json_error(web.HTTPNotFound, str(exc)) from exc
    return web.json_response(webhook.model_dump(mode="json"))


@routes.put("/api/v1/webhooks/{webhook_id}")
async def update_webhook(request: web.Request):
    owner_id = require_owner_id(request)
    dto = parse_model(WebhookUpdateDTO, await read_json(request))
    service = get_webhook_service(request)
    try:
        webhook = await service.update_webhook(owner_id, request.match_info["webhook_id"], dto)
    except NotFoundError as exc:
        raise json_error(web.HTTPNotFound, str(exc)) from exc
    except ValidationError as exc:
        raise json_error(web.HTTPBadRequest, str(exc)) from exc
    return web.json_response(webhook.model_dump(mode="json"))


@routes.delete("/api/v1/webhooks/{webhook_id}")
async def delete_webhook(request: web.Request):
    owner_id = require_owner_id(request)
    service = get_webhook_service(request)
    try:
        await service.delete_webhook(owner_id, request.match_info["webhook_id"])
    except NotFoundError as exc:
        raise json_error(web.HTTPNotFound, str(exc)) from exc
    return web.Response(status=204)


@routes.post("/api/v1/webhooks/{webhook_id}/test")
async def test_webhook(request: web.Request):
    owner_id = require_owner_id(request)
    service = get_webhook_service(request)
    try:
        outcome = await service.test_webhook(owner_id, request.match_info["webhook_id"])
    except NotFoundError as exc:
        raise json_error(web.HTTPNotFound, str(exc)) from exc
    return web.json_response(outcome.model_dump(mode="json"))


@routes.get("/api/v1/webhooks/{webhook_id}/logs")
async def webhook_logs(request: web.Request):
    owner_id = require_owner_id(request)
    query = parse_model(DeliveryLogQuery, dict(request.rel_url.query))
    service = get_webhook_service(request)
    try:
        payload = await service.logs(owner_id, request.match_info["webhook_id"], query)
    except NotFoundError as exc:
        raise json_error(web.HTTPNotFound, str(exc)) from exc
    return web.json_response(payload)
