"""Bounded delay-queue scheduler for webhook retries.

Usage::

    scheduler = RetryScheduler(worker, registry, RetryPolicy(max_retries=3))
    scheduler.start()
    ...
    outcome = await worker.deliver(webhook, event, attempt=1)
    scheduler.after_attempt(webhook, event, outcome)
    ...
    await scheduler.stop()  # pending retries are discarded, not persisted
"""
from __future__ import annotations

import asyncio
import heapq
import itertools
from dataclasses import dataclass, field

import structlog

from dashboard_webhooks.domain.events import Event
from dashboard_webhooks.domain.webhooks import DeliveryOutcome, WebhookRegistration
from dashboard_webhooks.services.delivery import DeliveryWorker
from dashboard_webhooks.services.registry import SubscriptionRegistry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before attempt ``attempt + 1`` (``attempt`` is 1-based)."""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)

    def should_retry(self, webhook: WebhookRegistration, outcome: DeliveryOutcome) -> bool:
        return (
            webhook.retry_on_failure
            and not outcome.success
            and outcome.retryable
            and outcome.attempt < self.max_retries
        )


@dataclass(order=True)
class _RetryJob:
    due: float
    seq: int
    owner_id: str = field(compare=False)
    webhook_id: str = field(compare=False)
    event: Event = field(compare=False)
    attempt: int = field(compare=False)


class RetryScheduler:
    """Runs deferred delivery attempts without blocking the dispatcher.

    Jobs sit in a heap ordered by due time; one timer task pops due jobs and
    runs each as its own task, at most ``max_concurrency`` at a time. At most
    ``max_pending`` jobs wait in the heap; further retries are dropped.

    A job carries the webhook id, not the registration: right before the
    attempt it asks the registry for the current registration and drops itself
    if the webhook was deleted or deactivated in the meantime.
    """

    def __init__(
        self,
        worker: DeliveryWorker,
        registry: SubscriptionRegistry,
        policy: RetryPolicy | None = None,
        *,
        max_pending: int = 10_000,
        max_concurrency: int = 20,
    ):
        self._worker = worker
        self._registry = registry
        self.policy = policy or RetryPolicy()
        self._max_pending = max_pending
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._heap: list[_RetryJob] = []
        self._seq = itertools.count()
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._running: set[asyncio.Task[None]] = set()
        self._timer: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def pending_count(self) -> int:
        return len(self._heap)

    @property
    def running_count(self) -> int:
        return len(self._running)

    def start(self) -> None:
        if self._timer is None:
            self._closed = False
            self._timer = asyncio.create_task(self._run_timer())

    async def stop(self) -> None:
        """Cancel the timer, discard pending retries, cancel running attempts."""
        self._closed = True
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass

        discarded = len(self._heap)
        self._heap.clear()

        running = list(self._running)
        for task in running:
            task.cancel()
        if running:
            await asyncio.gather(*running, return_exceptions=True)
        self._running.clear()
        self._idle.set()
        logger.info("retry scheduler stopped", discarded=discarded, cancelled=len(running))

    async def join(self) -> None:
        """Wait until no retry is pending or running."""
        await self._idle.wait()

    def after_attempt(
        self, webhook: WebhookRegistration, event: Event, outcome: DeliveryOutcome
    ) -> bool:
        """Schedule the next attempt when policy allows. Returns True if scheduled."""
        if outcome.success:
            return False
        if self.policy.should_retry(webhook, outcome):
            return self.schedule(webhook, event, outcome.attempt)
        logger.warning(
            "webhook delivery abandoned",
            webhook_id=webhook.id,
            event_id=event.id,
            event_type=event.type.value,
            attempts=outcome.attempt,
            retryable=outcome.retryable,
            retry_on_failure=webhook.retry_on_failure,
            error=outcome.error,
        )
        return False

    def schedule(self, webhook: WebhookRegistration, event: Event, attempt: int) -> bool:
        """Queue attempt ``attempt + 1`` after the backoff delay for ``attempt``."""
        if self._closed:
            logger.warning("retry dropped: scheduler stopped", webhook_id=webhook.id, event_id=event.id)
            return False
        if len(self._heap) >= self._max_pending:
            logger.warning(
                "retry dropped: queue full",
                webhook_id=webhook.id,
                event_id=event.id,
                pending=len(self._heap),
            )
            return False
        self.start()

        delay = self.policy.delay_for(attempt)
        loop = asyncio.get_running_loop()
        job = _RetryJob(
            due=loop.time() + delay,
            seq=next(self._seq),
            owner_id=webhook.owner_id,
            webhook_id=webhook.id,
            event=event,
            attempt=attempt + 1,
        )
        heapq.heappush(self._heap, job)
        self._idle.clear()
        self._wakeup.set()
        logger.info(
            "webhook retry scheduled",
            webhook_id=webhook.id,
            event_id=event.id,
            next_attempt=job.attempt,
            delay_seconds=delay,
        )
        return True

    def discard(self, webhook_id: str) -> int:
        """Drop every pending retry for ``webhook_id``. Returns how many were dropped."""
        kept = [job for job in self._heap if job.webhook_id != webhook_id]
        dropped = len(self._heap) - len(kept)
        if dropped:
            heapq.heapify(kept)
            self._heap = kept
            self._wakeup.set()
            self._check_idle()
            logger.info("pending retries discarded", webhook_id=webhook_id, count=dropped)
        return dropped

    async def _run_timer(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            self._wakeup.clear()
            now = loop.time()
            while self._heap and self._heap[0].due <= now:
                job = heapq.heappop(self._heap)
                task = asyncio.create_task(self._execute(job))
                self._running.add(task)
                task.add_done_callback(self._on_done)
            timeout = self._heap[0].due - now if self._heap else None
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout)
            except asyncio.TimeoutError:
                pass

    async def _execute(self, job: _RetryJob) -> None:
        async with self._semaphore:
            webhook = self._registry.eligible(job.owner_id, job.webhook_id)
            if webhook is None:
                logger.info(
                    "webhook retry skipped: webhook removed or inactive",
                    webhook_id=job.webhook_id,
                    event_id=job.event.id,
                    attempt=job.attempt,
                )
                return
            outcome = await self._worker.deliver(webhook, job.event, job.attempt)
        self.after_attempt(webhook, job.event, outcome)

    def _on_done(self, task: asyncio.Task[None]) -> None:
        self._running.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("webhook retry task failed", exc_info=task.exception())
        self._check_idle()

    def _check_idle(self) -> None:
        if not self._heap and not self._running:
            self._idle.set()
