"""Single HTTP delivery attempt for one (webhook, event) pair."""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Mapping

import structlog
from aiohttp import ClientError, ClientSession, ClientTimeout

from dashboard_webhooks.core.exceptions import DeliveryError
from dashboard_webhooks.core.ids import generate_delivery_id, generate_event_id
from dashboard_webhooks.domain.events import Event
from dashboard_webhooks.domain.webhooks import DeliveryLogEntry, DeliveryOutcome, WebhookRegistration
from dashboard_webhooks.repositories.delivery_logs import DeliveryLogStore
from dashboard_webhooks.repositories.webhooks import WebhookStore
from dashboard_webhooks.services.signing import canonical_json, sign_bytes

logger = structlog.get_logger(__name__)

CONTENT_TYPE_HEADER = "Content-Type"
WEBHOOK_ID_HEADER = "X-Webhook-Id"
SIGNATURE_HEADER = "X-Webhook-Signature"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
EVENT_TYPE_HEADER = "X-Event-Type"
TEST_HEADER = "X-Webhook-Test"

RESERVED_HEADERS = frozenset(
    h.lower()
    for h in (
        CONTENT_TYPE_HEADER,
        WEBHOOK_ID_HEADER,
        SIGNATURE_HEADER,
        TIMESTAMP_HEADER,
        EVENT_TYPE_HEADER,
        TEST_HEADER,
    )
)

_ERROR_BODY_LIMIT = 500


def is_reserved_header(name: str) -> bool:
    return name.strip().lower() in RESERVED_HEADERS


def merge_headers(custom: Mapping[str, str] | None, reserved: Mapping[str, str]) -> dict[str, str]:
    """Custom headers first, then reserved ones; reserved names always win."""
    headers = {k: v for k, v in (custom or {}).items() if not is_reserved_header(k)}
    headers.update(reserved)
    return headers


def _timestamp_ms() -> str:
    return str(int(time.time() * 1000))


class DeliveryWorker:
    """Performs delivery attempts and probes over a shared aiohttp session.

    ``deliver`` never raises: the result of every attempt is returned as a
    :class:`DeliveryOutcome` and recorded in the webhook's stats. Persisting
    stats and log entries is best effort.
    """

    def __init__(
        self,
        *,
        session: ClientSession | None = None,
        request_timeout: float = 10.0,
        probe_timeout: float = 5.0,
        webhook_store: WebhookStore | None = None,
        log_store: DeliveryLogStore | None = None,
    ):
        self._session = session
        self._owns_session = session is None
        self._request_timeout = request_timeout
        self._probe_timeout = probe_timeout
        self._webhook_store = webhook_store
        self._log_store = log_store

    def _get_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _post(
        self, url: str, body: bytes, headers: dict[str, str], timeout: float
    ) -> int:
        """POST ``body``; returns the status code or raises :class:`DeliveryError`."""
        try:
            async with self._get_session().post(
                url,
                data=body,
                headers=headers,
                timeout=ClientTimeout(total=timeout),
            ) as resp:
                if resp.status >= 500:
                    text = await resp.text(errors="replace")
                    raise DeliveryError(
                        f"HTTP {resp.status}: {text[:_ERROR_BODY_LIMIT]}", status_code=resp.status
                    )
                return resp.status
        except asyncio.TimeoutError as exc:
            raise DeliveryError(f"Request timed out after {timeout:g}s") from exc
        except ClientError as exc:
            raise DeliveryError(str(exc) or type(exc).__name__) from exc

    async def deliver(
        self, webhook: WebhookRegistration, event: Event, attempt: int = 1
    ) -> DeliveryOutcome:
        log = logger.bind(
            webhook_id=webhook.id, event_id=event.id, event_type=event.type.value, attempt=attempt
        )
        started = time.perf_counter()
        try:
            body = canonical_json(event.wire_payload())
        except (TypeError, ValueError) as exc:
            # the receiver can never accept this payload, so retrying is pointless
            outcome = DeliveryOutcome(
                success=False, retryable=False, error=f"Payload is not JSON serializable: {exc}", attempt=attempt
            )
            log.error("webhook payload rejected", error=outcome.error)
            await self._record(webhook, event, outcome)
            return outcome

        headers = merge_headers(
            webhook.headers,
            {
                CONTENT_TYPE_HEADER: "application/json",
                WEBHOOK_ID_HEADER: webhook.id,
                SIGNATURE_HEADER: sign_bytes(body, webhook.secret),
                TIMESTAMP_HEADER: _timestamp_ms(),
                EVENT_TYPE_HEADER: event.type.value,
            },
        )

        try:
            status = await self._post(webhook.url, body, headers, self._request_timeout)
        except DeliveryError as exc:
            outcome = DeliveryOutcome(
                success=False,
                retryable=True,
                status_code=exc.status_code,
                error=str(exc),
                attempt=attempt,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            log.warning(
                "webhook delivery failed", status_code=exc.status_code, error=outcome.error
            )
        except Exception as exc:
            outcome = DeliveryOutcome(
                success=False,
                retryable=False,
                error=str(exc) or type(exc).__name__,
                attempt=attempt,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            log.exception("webhook delivery crashed")
        else:
            # anything below 500 counts as delivered; 4xx is the receiver's problem
            outcome = DeliveryOutcome(
                success=True,
                status_code=status,
                attempt=attempt,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            log.info("webhook delivered", status_code=status, duration_ms=outcome.duration_ms)

        await self._record(webhook, event, outcome)
        return outcome

    async def _record(
        self, webhook: WebhookRegistration, event: Event, outcome: DeliveryOutcome
    ) -> None:
        now = datetime.now(timezone.utc)
        if outcome.success:
            webhook.delivery_stats.record_success(now)
        else:
            webhook.delivery_stats.record_failure(outcome.error or "delivery failed", now)

        if self._webhook_store is not None:
            try:
                await self._webhook_store.save_stats(webhook.id, webhook.delivery_stats)
            except Exception:
                logger.exception("webhook stats persist failed", webhook_id=webhook.id)

        if self._log_store is not None:
            entry = DeliveryLogEntry(
                id=generate_delivery_id(),
                webhook_id=webhook.id,
                owner_id=webhook.owner_id,
                event_id=event.id,
                event_type=event.type.value,
                attempt=outcome.attempt,
                status="success" if outcome.success else "failed",
                status_code=outcome.status_code,
                error=outcome.error,
                duration_ms=outcome.duration_ms,
                created_at=now,
            )
            try:
                await self._log_store.append(entry)
            except Exception:
                logger.exception("webhook delivery log write failed", webhook_id=webhook.id)

    async def probe(
        self,
        url: str,
        secret: str,
        headers: Mapping[str, str] | None = None,
    ) -> DeliveryOutcome:
        """Send a signed test payload. Succeeds only on a 2xx response."""
        payload: dict[str, Any] = {
            "id": generate_event_id(),
            "type": "test",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": {"message": "This is a test webhook delivery"},
        }
        body = canonical_json(payload)
        request_headers = merge_headers(
            headers,
            {
                CONTENT_TYPE_HEADER: "application/json",
                SIGNATURE_HEADER: sign_bytes(body, secret),
                TIMESTAMP_HEADER: _timestamp_ms(),
                TEST_HEADER: "true",
            },
        )
        started = time.perf_counter()
        try:
            status = await self._post(url, body, request_headers, self._probe_timeout)
        except DeliveryError as exc:
            outcome = DeliveryOutcome(
                success=False, retryable=True, status_code=exc.status_code, error=str(exc)
            )
        except Exception as exc:
            outcome = DeliveryOutcome(success=False, error=str(exc) or type(exc).__name__)
        else:
            ok = 200 <= status < 300
            outcome = DeliveryOutcome(
                success=ok, status_code=status, error=None if ok else f"HTTP {status}"
            )
        outcome.duration_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            "webhook probe finished",
            url=url,
            success=outcome.success,
            status_code=outcome.status_code,
            error=outcome.error,
        )
        return outcome
