"""Request DTOs accepted by the webhook service."""
from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class WebhookCreateDTO(BaseModel):
    url: str = Field(min_length=1)
    events: list[str] | None = None
    headers: dict[str, str] | None = None
    retry_on_failure: bool = Field(
        default=True, validation_alias=AliasChoices("retry_on_failure", "retryOnFailure")
    )
    test_on_register: bool = Field(
        default=True, validation_alias=AliasChoices("test_on_register", "testOnRegister")
    )


class WebhookUpdateDTO(BaseModel):
    """Partial update. ``secret`` and ``id`` are deliberately absent."""

    model_config = ConfigDict(extra="forbid")

    url: str | None = None
    events: list[str] | None = None
    headers: dict[str, str] | None = None
    active: bool | None = None
    retry_on_failure: bool | None = Field(
        default=None, validation_alias=AliasChoices("retry_on_failure", "retryOnFailure")
    )


class TriggerDTO(BaseModel):
    event_type: str = Field(min_length=1, validation_alias=AliasChoices("event_type", "eventType"))
    data: dict[str, Any] = Field(default_factory=dict)


class DeliveryLogQuery(BaseModel):
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)
    event_type: str | None = Field(default=None, validation_alias=AliasChoices("event_type", "eventType"))
    status: Literal["success", "failed"] | None = None
