"""Event catalog and the transient event model."""
from __future__ import annotations

import copy
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dashboard_webhooks.core.ids import generate_event_id

WILDCARD = "*"


class EventType(str, Enum):
    DASHBOARD_CREATED = "dashboard.created"
    DASHBOARD_UPDATED = "dashboard.updated"
    DASHBOARD_DELETED = "dashboard.deleted"

    WIDGET_CREATED = "widget.created"
    WIDGET_UPDATED = "widget.updated"
    WIDGET_DELETED = "widget.deleted"
    WIDGET_DATA_UPDATED = "widget.data_updated"

    PRODUCT_CREATED = "product.created"
    PRODUCT_UPDATED = "product.updated"
    PRODUCT_DELETED = "product.deleted"
    PRODUCT_CALCULATED = "product.calculated"

    USER_LOGIN = "user.login"
    USER_LOGOUT = "user.logout"
    USER_PROFILE_UPDATED = "user.profile_updated"
    USER_PASSWORD_CHANGED = "user.password_changed"

    MEDIA_UPLOADED = "media.uploaded"
    MEDIA_DELETED = "media.deleted"

    PRICE_UPDATED = "price.updated"
    PRICE_ALERT = "price.alert"

    SYSTEM_ERROR = "system.error"
    SYSTEM_MAINTENANCE = "system.maintenance"


EVENT_DESCRIPTIONS: dict[EventType, str] = {
    EventType.DASHBOARD_CREATED: "Triggered when a new dashboard is created",
    EventType.DASHBOARD_UPDATED: "Triggered when a dashboard is updated",
    EventType.DASHBOARD_DELETED: "Triggered when a dashboard is deleted",
    EventType.WIDGET_CREATED: "Triggered when a new widget is created",
    EventType.WIDGET_UPDATED: "Triggered when a widget is updated",
    EventType.WIDGET_DELETED: "Triggered when a widget is deleted",
    EventType.WIDGET_DATA_UPDATED: "Triggered when widget data is refreshed",
    EventType.PRODUCT_CREATED: "Triggered when a new product is created",
    EventType.PRODUCT_UPDATED: "Triggered when a product is updated",
    EventType.PRODUCT_DELETED: "Triggered when a product is deleted",
    EventType.PRODUCT_CALCULATED: "Triggered when product value is calculated",
    EventType.USER_LOGIN: "Triggered when a user logs in",
    EventType.USER_LOGOUT: "Triggered when a user logs out",
    EventType.USER_PROFILE_UPDATED: "Triggered when user profile is updated",
    EventType.USER_PASSWORD_CHANGED: "Triggered when user password is changed",
    EventType.MEDIA_UPLOADED: "Triggered when a file is uploaded",
    EventType.MEDIA_DELETED: "Triggered when a file is deleted",
    EventType.PRICE_UPDATED: "Triggered when price data is updated",
    EventType.PRICE_ALERT: "Triggered when price reaches alert threshold",
    EventType.SYSTEM_ERROR: "Triggered on system errors",
    EventType.SYSTEM_MAINTENANCE: "Triggered for maintenance notifications",
}


def parse_event_type(value: str | EventType) -> EventType | None:
    """Return the catalog member for ``value`` or None when it is unknown."""
    if isinstance(value, EventType):
        return value
    try:
        return EventType(value)
    except ValueError:
        return None


def event_catalog() -> dict[str, str]:
    return {event_type.value: description for event_type, description in EVENT_DESCRIPTIONS.items()}


class Event(BaseModel):
    """Something that happened for one owner. Built at trigger time, never stored."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_event_id)
    type: EventType
    owner_id: str
    data: Any = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("data", mode="before")
    @classmethod
    def snapshot_data(cls, value: Any) -> Any:
        # producers keep their object; every attempt sends what was passed at trigger time
        return copy.deepcopy(value)

    def wire_payload(self) -> dict[str, Any]:
        """JSON body posted to receivers."""
        return {
            "id": self.id,
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
            "userId": self.owner_id,
        }
