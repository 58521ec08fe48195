"""HMAC-SHA256 payload signing.

Receivers verify a delivery by recomputing the signature over the raw body
with their secret::

    expected = "sha256=" + hmac.new(secret.encode(), body, sha256).hexdigest()
    hmac.compare_digest(expected, request.headers["X-Webhook-Signature"])

The body we send is exactly :func:`canonical_json` of the payload, so
re-serializing the parsed body the same way yields the same bytes.
"""
from __future__ import annotations

import hmac
import json
import secrets
from hashlib import sha256
from typing import Any

SIGNATURE_PREFIX = "sha256="


def canonical_json(payload: Any) -> bytes:
    """Deterministic JSON encoding: sorted keys, compact separators, UTF-8."""
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False
    ).encode("utf-8")


def sign_bytes(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def sign(payload: Any, secret: str) -> str:
    return sign_bytes(canonical_json(payload), secret)


def verify(payload: Any, signature: Any, secret: Any) -> bool:
    """Constant-time check of ``signature`` against ``payload``. Never raises."""
    if not isinstance(signature, str) or not isinstance(secret, str):
        return False
    if not signature.startswith(SIGNATURE_PREFIX):
        return False
    try:
        expected = sign(payload, secret).encode("ascii")
        received = signature.encode("utf-8")
    except (TypeError, ValueError):
        return False
    return hmac.compare_digest(expected, received)


def generate_secret() -> str:
    """32 random bytes, hex encoded."""
    return secrets.token_hex(32)
