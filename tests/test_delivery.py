"""DeliveryWorker against a real local receiver."""
from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from dashboard_webhooks.domain.events import Event, EventType
from dashboard_webhooks.domain.webhooks import WebhookRegistration
from dashboard_webhooks.repositories.delivery_logs import InMemoryDeliveryLogStore
from dashboard_webhooks.repositories.webhooks import InMemoryWebhookStore
from dashboard_webhooks.services.delivery import DeliveryWorker, merge_headers
from dashboard_webhooks.services.signing import canonical_json, sign_bytes, verify

from tests.utils import unused_url

SECRET = "a" * 64


def make_webhook(url: str, **overrides) -> WebhookRegistration:
    fields = {"id": "whk_test", "owner_id": "user-1", "url": url, "secret": SECRET}
    fields.update(overrides)
    return WebhookRegistration(**fields)


def make_event(data=None) -> Event:
    return Event(type=EventType.DASHBOARD_CREATED, owner_id="user-1", data=data or {"dashboardId": "d1"})


@pytest.fixture
async def worker():
    w = DeliveryWorker(request_timeout=1.0, probe_timeout=1.0)
    yield w
    await w.close()


def test_merge_headers_reserved_win():
    merged = merge_headers(
        {"Authorization": "Bearer x", "x-webhook-id": "spoof"},
        {"X-Webhook-Id": "whk_real"},
    )
    assert merged == {"Authorization": "Bearer x", "X-Webhook-Id": "whk_real"}


@pytest.mark.asyncio
async def test_deliver_success_sends_signed_payload(worker, receiver):
    webhook = make_webhook(receiver.url, headers={"Authorization": "Bearer token"})
    event = make_event()

    outcome = await worker.deliver(webhook, event)

    assert outcome.success is True
    assert outcome.status_code == 200
    assert outcome.attempt == 1

    [request] = receiver.requests
    assert request.headers["Content-Type"] == "application/json"
    assert request.headers["X-Webhook-Id"] == webhook.id
    assert request.headers["X-Event-Type"] == "dashboard.created"
    assert request.headers["X-Webhook-Timestamp"].isdigit()
    assert request.headers["Authorization"] == "Bearer token"
    assert "X-Webhook-Test" not in request.headers

    assert request.headers["X-Webhook-Signature"] == sign_bytes(request.body, SECRET)
    body = request.json
    assert verify(body, request.headers["X-Webhook-Signature"], SECRET)
    assert body["id"] == event.id
    assert body["type"] == "dashboard.created"
    assert body["userId"] == "user-1"
    assert body["data"] == {"dashboardId": "d1"}
    assert body["timestamp"] == event.timestamp.isoformat()

    stats = webhook.delivery_stats
    assert (stats.sent, stats.succeeded, stats.failed) == (1, 1, 0)
    assert stats.last_delivery is not None
    assert stats.last_error is None


@pytest.mark.asyncio
async def test_body_is_canonical_json(worker, receiver):
    event = make_event({"z": 1, "a": [1, 2]})
    await worker.deliver(make_webhook(receiver.url), event)
    assert receiver.requests[0].body == canonical_json(event.wire_payload())


@pytest.mark.asyncio
async def test_reserved_headers_cannot_be_overridden(worker, receiver):
    # bypass registry validation to make sure the worker still protects them
    webhook = make_webhook(
        receiver.url, headers={"X-Webhook-Id": "evil", "X-Webhook-Signature": "sha256=00"}
    )
    await worker.deliver(webhook, make_event())
    [request] = receiver.requests
    assert request.headers["X-Webhook-Id"] == "whk_test"
    assert request.headers["X-Webhook-Signature"] == sign_bytes(request.body, SECRET)


@pytest.mark.asyncio
async def test_client_error_status_counts_as_delivered(worker, make_receiver):
    receiver = await make_receiver([404])
    webhook = make_webhook(receiver.url)
    outcome = await worker.deliver(webhook, make_event())
    assert outcome.success is True
    assert outcome.retryable is False
    assert outcome.status_code == 404
    assert webhook.delivery_stats.succeeded == 1


@pytest.mark.asyncio
async def test_server_error_is_retryable_failure(worker, make_receiver):
    receiver = await make_receiver([503])
    webhook = make_webhook(receiver.url)
    outcome = await worker.deliver(webhook, make_event(), attempt=2)
    assert outcome.success is False
    assert outcome.retryable is True
    assert outcome.status_code == 503
    assert outcome.attempt == 2
    assert outcome.error.startswith("HTTP 503")

    stats = webhook.delivery_stats
    assert (stats.sent, stats.succeeded, stats.failed) == (1, 0, 1)
    assert stats.last_error.message == outcome.error
    assert stats.last_delivery is None


@pytest.mark.asyncio
async def test_connection_refused_is_retryable_failure(worker):
    webhook = make_webhook(unused_url())
    outcome = await worker.deliver(webhook, make_event())
    assert outcome.success is False
    assert outcome.retryable is True
    assert outcome.status_code is None
    assert outcome.error
    assert webhook.delivery_stats.failed == 1


@pytest.mark.asyncio
async def test_timeout_is_retryable_failure(make_receiver):
    receiver = await make_receiver([200], delay=1.0)
    worker = DeliveryWorker(request_timeout=0.1)
    try:
        outcome = await worker.deliver(make_webhook(receiver.url), make_event())
    finally:
        await worker.close()
    assert outcome.success is False
    assert outcome.retryable is True
    assert "timed out" in outcome.error


@pytest.mark.asyncio
async def test_unserializable_payload_is_not_retryable(worker, receiver):
    webhook = make_webhook(receiver.url)
    outcome = await worker.deliver(webhook, make_event({"bad": object()}))
    assert outcome.success is False
    assert outcome.retryable is False
    assert receiver.requests == []
    assert webhook.delivery_stats.failed == 1


@pytest.mark.asyncio
async def test_deliver_persists_stats_and_log(receiver):
    webhook_store = InMemoryWebhookStore()
    log_store = InMemoryDeliveryLogStore()
    webhook = make_webhook(receiver.url)
    await webhook_store.save(webhook)
    worker = DeliveryWorker(webhook_store=webhook_store, log_store=log_store)
    try:
        event = make_event()
        await worker.deliver(webhook, event)
    finally:
        await worker.close()

    [stored] = await webhook_store.load_all()
    assert stored.delivery_stats.sent == 1
    entries, total = await log_store.query("user-1", webhook.id)
    assert total == 1
    assert entries[0].event_id == event.id
    assert entries[0].status == "success"
    assert entries[0].status_code == 200


@pytest.mark.asyncio
async def test_store_failures_do_not_escape(receiver):
    webhook_store = AsyncMock()
    webhook_store.save_stats.side_effect = RuntimeError("db down")
    log_store = AsyncMock()
    log_store.append.side_effect = RuntimeError("db down")
    worker = DeliveryWorker(webhook_store=webhook_store, log_store=log_store)
    webhook = make_webhook(receiver.url)
    try:
        outcome = await worker.deliver(webhook, make_event())
    finally:
        await worker.close()
    assert outcome.success is True
    assert webhook.delivery_stats.succeeded == 1


# ---------------------------------------------------------------------------
# probe
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_probe_sends_test_payload(worker, receiver):
    outcome = await worker.probe(receiver.url, SECRET, {"Authorization": "Bearer t"})
    assert outcome.success is True
    assert outcome.status_code == 200

    [request] = receiver.requests
    assert request.headers["X-Webhook-Test"] == "true"
    assert request.headers["Authorization"] == "Bearer t"
    assert "X-Webhook-Id" not in request.headers
    assert "X-Event-Type" not in request.headers
    assert request.headers["X-Webhook-Signature"] == sign_bytes(request.body, SECRET)
    body = json.loads(request.body)
    assert body["type"] == "test"
    assert body["data"] == {"message": "This is a test webhook delivery"}


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [404, 500])
async def test_probe_requires_2xx(worker, make_receiver, status):
    receiver = await make_receiver([status])
    outcome = await worker.probe(receiver.url, SECRET)
    assert outcome.success is False
    assert outcome.status_code == status
    assert f"HTTP {status}" in outcome.error


@pytest.mark.asyncio
async def test_probe_unreachable(worker):
    outcome = await worker.probe(unused_url(), SECRET)
    assert outcome.success is False
    assert outcome.error
