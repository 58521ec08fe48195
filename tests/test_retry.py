"""RetryPolicy and RetryScheduler behaviour."""
from __future__ import annotations

import asyncio

import pytest

from dashboard_webhooks.domain.dto import WebhookCreateDTO, WebhookUpdateDTO
from dashboard_webhooks.domain.events import Event, EventType
from dashboard_webhooks.domain.webhooks import DeliveryOutcome, WebhookRegistration
from dashboard_webhooks.services.retry import RetryPolicy, RetryScheduler
from dashboard_webhooks.services.webhooks import WebhookService

OWNER = "user-1"


def make_webhook(**overrides) -> WebhookRegistration:
    fields = {"id": "whk_x", "owner_id": OWNER, "url": "http://127.0.0.1:1/hook", "secret": "s"}
    fields.update(overrides)
    return WebhookRegistration(**fields)


async def register(service: WebhookService, url: str, **fields) -> str:
    dto = WebhookCreateDTO(url=url, test_on_register=False, **fields)
    result = await service.register(OWNER, dto)
    return result.id


async def settle(service: WebhookService) -> None:
    await service.dispatcher.join()
    await asyncio.wait_for(service.scheduler.join(), 5.0)


# ---------------------------------------------------------------------------
# policy
# ---------------------------------------------------------------------------

def test_default_backoff_schedule():
    policy = RetryPolicy()
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]
    assert policy.delay_for(10) == 30.0


def test_backoff_is_capped():
    policy = RetryPolicy(base_delay=1.0, multiplier=10.0, max_delay=30.0)
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 10.0, 30.0]


def test_should_retry():
    policy = RetryPolicy(max_retries=3)
    webhook = make_webhook()
    failed = DeliveryOutcome(success=False, retryable=True, attempt=1)
    assert policy.should_retry(webhook, failed) is True
    assert policy.should_retry(webhook, failed.model_copy(update={"attempt": 3})) is False
    assert policy.should_retry(webhook, failed.model_copy(update={"retryable": False})) is False
    assert policy.should_retry(webhook, DeliveryOutcome(success=True)) is False
    assert policy.should_retry(make_webhook(retry_on_failure=False), failed) is False


# ---------------------------------------------------------------------------
# scheduler against a live receiver
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_server_errors_are_retried_with_backoff(service, make_receiver):
    receiver = await make_receiver([503])
    webhook_id = await register(service, receiver.url)

    await service.emit(EventType.DASHBOARD_CREATED, OWNER, {"n": 1})
    await settle(service)

    requests = receiver.deliveries
    assert len(requests) == 3
    assert len({r.json["id"] for r in requests}) == 1
    gap1 = requests[1].received_at - requests[0].received_at
    gap2 = requests[2].received_at - requests[1].received_at
    assert gap1 >= 0.09
    assert gap2 >= 0.18

    stats = service.get_webhook(OWNER, webhook_id).delivery_stats
    assert (stats.sent, stats.succeeded, stats.failed) == (3, 0, 3)
    assert stats.last_error.message.startswith("HTTP 503")


@pytest.mark.asyncio
async def test_retry_recovers(service, make_receiver):
    receiver = await make_receiver([500, 200])
    webhook_id = await register(service, receiver.url)

    await service.emit("widget.created", OWNER)
    await settle(service)

    assert len(receiver.deliveries) == 2
    stats = service.get_webhook(OWNER, webhook_id).delivery_stats
    assert (stats.sent, stats.succeeded, stats.failed) == (2, 1, 1)
    assert stats.last_delivery is not None


@pytest.mark.asyncio
async def test_retry_disabled_means_single_attempt(service, make_receiver):
    receiver = await make_receiver([503])
    webhook_id = await register(service, receiver.url, retry_on_failure=False)

    await service.emit(EventType.DASHBOARD_CREATED, OWNER)
    await settle(service)
    await asyncio.sleep(0.3)

    assert len(receiver.deliveries) == 1
    assert service.scheduler.pending_count == 0
    stats = service.get_webhook(OWNER, webhook_id).delivery_stats
    assert (stats.sent, stats.failed) == (1, 1)


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(service, make_receiver):
    receiver = await make_receiver([400])
    await register(service, receiver.url)

    await service.emit(EventType.DASHBOARD_CREATED, OWNER)
    await settle(service)

    assert len(receiver.deliveries) == 1


@pytest.mark.asyncio
async def test_delete_cancels_pending_retries(service, make_receiver):
    receiver = await make_receiver([503])
    webhook_id = await register(service, receiver.url)
    webhook = service.registry.lookup(OWNER, webhook_id)

    await service.emit(EventType.DASHBOARD_CREATED, OWNER)
    await service.dispatcher.join()
    assert service.scheduler.pending_count == 1

    await service.delete_webhook(OWNER, webhook_id)
    assert service.scheduler.pending_count == 0
    await asyncio.sleep(0.5)

    assert len(receiver.deliveries) == 1
    assert webhook.delivery_stats.sent == 1


@pytest.mark.asyncio
async def test_retry_for_deleted_webhook_is_skipped(service, make_receiver):
    """Even without discard, the scheduler re-checks the registry before each attempt."""
    receiver = await make_receiver([503])
    webhook_id = await register(service, receiver.url)

    await service.emit(EventType.DASHBOARD_CREATED, OWNER)
    await service.dispatcher.join()
    await service.registry.delete(OWNER, webhook_id)
    await asyncio.wait_for(service.scheduler.join(), 2.0)

    assert len(receiver.deliveries) == 1


@pytest.mark.asyncio
async def test_retry_for_deactivated_webhook_is_skipped(service, make_receiver):
    receiver = await make_receiver([503])
    webhook_id = await register(service, receiver.url)

    await service.emit(EventType.DASHBOARD_CREATED, OWNER)
    await service.dispatcher.join()
    await service.update_webhook(OWNER, webhook_id, WebhookUpdateDTO(active=False))
    await asyncio.wait_for(service.scheduler.join(), 2.0)

    assert len(receiver.deliveries) == 1


@pytest.mark.asyncio
async def test_retry_uses_current_url(service, make_receiver):
    failing = await make_receiver([503])
    healthy = await make_receiver([200])
    webhook_id = await register(service, failing.url)

    await service.emit(EventType.DASHBOARD_CREATED, OWNER)
    await service.dispatcher.join()
    await service.update_webhook(OWNER, webhook_id, WebhookUpdateDTO(url=healthy.url))
    await settle(service)

    assert len(failing.deliveries) == 1
    assert len(healthy.deliveries) == 1
    stats = service.get_webhook(OWNER, webhook_id).delivery_stats
    assert (stats.sent, stats.succeeded, stats.failed) == (2, 1, 1)


# ---------------------------------------------------------------------------
# scheduler bounds and lifecycle
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_queue_bound_drops_extra_retries(service):
    scheduler = RetryScheduler(
        service.worker, service.registry, RetryPolicy(base_delay=10.0), max_pending=1
    )
    webhook = make_webhook()
    event = Event(type=EventType.DASHBOARD_CREATED, owner_id=OWNER)
    try:
        assert scheduler.schedule(webhook, event, 1) is True
        assert scheduler.schedule(webhook, event, 1) is False
        assert scheduler.pending_count == 1
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_stop_discards_pending_and_refuses_new(service):
    scheduler = RetryScheduler(service.worker, service.registry, RetryPolicy(base_delay=10.0))
    webhook = make_webhook()
    event = Event(type=EventType.DASHBOARD_CREATED, owner_id=OWNER)
    scheduler.schedule(webhook, event, 1)
    scheduler.schedule(webhook, event, 2)
    assert scheduler.pending_count == 2

    await scheduler.stop()

    assert scheduler.pending_count == 0
    assert scheduler.schedule(webhook, event, 1) is False
    await asyncio.wait_for(scheduler.join(), 1.0)


@pytest.mark.asyncio
async def test_discard_only_affects_one_webhook(service):
    scheduler = RetryScheduler(service.worker, service.registry, RetryPolicy(base_delay=10.0))
    event = Event(type=EventType.DASHBOARD_CREATED, owner_id=OWNER)
    try:
        scheduler.schedule(make_webhook(id="whk_a"), event, 1)
        scheduler.schedule(make_webhook(id="whk_a"), event, 2)
        scheduler.schedule(make_webhook(id="whk_b"), event, 1)
        assert scheduler.discard("whk_a") == 2
        assert scheduler.discard("whk_a") == 0
        assert scheduler.pending_count == 1
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_after_attempt_on_success_schedules_nothing(service):
    scheduler = RetryScheduler(service.worker, service.registry)
    event = Event(type=EventType.DASHBOARD_CREATED, owner_id=OWNER)
    try:
        assert scheduler.after_attempt(make_webhook(), event, DeliveryOutcome(success=True)) is False
        assert scheduler.pending_count == 0
    finally:
        await scheduler.stop()
