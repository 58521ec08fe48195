"""Helper utilities for API handlers."""
from __future__ import annotations

import json
from typing import Any, TypeVar

from aiohttp import web
from pydantic import BaseModel, ValidationError

TModel = TypeVar("TModel", bound=BaseModel)


async def read_json(request: web.Request) -> dict[str, Any]:
    """Parse JSON body from request, raising HTTPBadRequest on invalid input."""
    try:
        data = await request.json()
    except Exception as exc:
        raise web.HTTPBadRequest(text="Invalid JSON payload") from exc
    if not isinstance(data, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return data


def parse_model(model: type[TModel], payload: Any) -> TModel:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json(), content_type="application/json") from exc


def json_error(exc_type: type[web.HTTPException], message: str) -> web.HTTPException:
    """Build an HTTP error whose body is ``{"error": message}``."""
    return exc_type(text=json.dumps({"error": message}), content_type="application/json")
