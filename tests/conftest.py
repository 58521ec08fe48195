from __future__ import annotations

import pytest

from dashboard_webhooks.main import create_app
from dashboard_webhooks.services.retry import RetryPolicy
from dashboard_webhooks.services.webhooks import WebhookService
from dashboard_webhooks.settings import Settings

from tests.utils import Receiver


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Same shape as the production policy, scaled down to keep tests quick."""
    return RetryPolicy(max_retries=3, base_delay=0.1, multiplier=2.0, max_delay=1.0)


@pytest.fixture
async def make_receiver():
    receivers: list[Receiver] = []

    async def factory(statuses: list[int] | None = None, delay: float = 0.0) -> Receiver:
        receiver = Receiver(statuses=statuses or [200], delay=delay)
        await receiver.start()
        receivers.append(receiver)
        return receiver

    yield factory
    for receiver in receivers:
        await receiver.stop()


@pytest.fixture
async def receiver(make_receiver) -> Receiver:
    return await make_receiver()


@pytest.fixture
async def service(fast_policy):
    svc = WebhookService(policy=fast_policy, request_timeout=2.0, probe_timeout=2.0)
    yield svc
    await svc.stop()


@pytest.fixture
def settings() -> Settings:
    return Settings(store_backend="memory", worker_interval_seconds=3600)


@pytest.fixture
async def service_client(aiohttp_client, settings, service):
    """Client for the HTTP API backed by the in-memory ``service`` fixture."""
    app = create_app(settings, service=service)
    return await aiohttp_client(app)
