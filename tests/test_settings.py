from __future__ import annotations

from dashboard_webhooks.repositories import InMemoryWebhookStore
from dashboard_webhooks.services.webhooks import WebhookService
from dashboard_webhooks.settings import Settings


def test_cors_origins_from_comma_separated_env(monkeypatch):
    monkeypatch.setenv("CORS_ALLOWED_ORIGINS", "http://a.test, http://b.test,")
    settings = Settings()
    assert settings.cors_allowed_origins == ["http://a.test", "http://b.test"]


def test_webhook_settings_from_env(monkeypatch):
    monkeypatch.setenv("WEBHOOK_MAX_RETRIES", "5")
    monkeypatch.setenv("WEBHOOK_RETRY_BASE_DELAY_SECONDS", "0.5")
    settings = Settings()
    assert settings.webhook_max_retries == 5
    assert settings.webhook_retry_base_delay_seconds == 0.5
    assert settings.webhook_retry_max_delay_seconds == 30.0


def test_service_from_settings_uses_retry_settings():
    settings = Settings(
        webhook_max_retries=4,
        webhook_retry_base_delay_seconds=2.0,
        webhook_retry_multiplier=3.0,
        webhook_retry_max_delay_seconds=10.0,
    )
    service = WebhookService.from_settings(settings, webhook_store=InMemoryWebhookStore())
    policy = service.scheduler.policy
    assert policy.max_retries == 4
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [2.0, 6.0, 10.0]
