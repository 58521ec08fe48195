"""Opaque identifiers for webhooks, events and delivery log entries."""
from __future__ import annotations

import secrets


def _token(prefix: str) -> str:
    return f"{prefix}_{secrets.token_hex(16)}"


def generate_webhook_id() -> str:
    return _token("whk")


def generate_event_id() -> str:
    return _token("evt")


def generate_delivery_id() -> str:
    return _token("dlv")
