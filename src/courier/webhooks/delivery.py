"""Webhook delivery with signed requests and exponential backoff retry.

``WebhookDispatcher.dispatch`` performs one attempt for one delivery and
is the only entry point for both the first attempt and every retry. It is
safe to call any number of times for the same delivery: once a delivery
is terminal further calls do nothing.

Attempt outcome rules:
- HTTP 200 (and only 200) is a success.
- Any other status, a network error or a timeout is a failed attempt,
  retried after ``retry_delay_ms(attempt)`` while budget remains.
- A disabled target fails the delivery immediately, without retry.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import httpx

from courier.logging import get_logger, log_context
from courier.models import to_epoch_ms, utc_now

from .backoff import BASE_DELAY_MS, JITTER_MS, MAX_DELAY_MS, SNIPPET_LIMIT, retry_delay_ms, truncate
from .signing import compute_signature

if TYPE_CHECKING:
    from courier.config import Settings
    from courier.models import Delivery, DeliveryContext, Event, Target
    from courier.scheduler import TaskScheduler
    from courier.storage import ForwardingStore

logger = get_logger(__name__)

DEFAULT_USER_AGENT = "courier-webhook-forwarder/1.0"
TARGET_DISABLED = "Target disabled"
BUDGET_EXHAUSTED = "Attempt budget exhausted"

# Scheduler wake-ups may run marginally ahead of the stored retry time
DUE_TOLERANCE = timedelta(seconds=1)

# Added to the request timeout while an attempt holds its lease
LEASE_MARGIN = timedelta(seconds=30)


@dataclass
class AttemptResult:
    """What came back from one HTTP attempt."""

    status_code: int | None = None
    response_snippet: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status_code == 200


class WebhookDispatcher:
    """Delivers events to targets and drives the retry loop.

    Example:
        ```python
        dispatcher = WebhookDispatcher(store, scheduler)

        # First attempt or retry, same call
        delivery = await dispatcher.dispatch("dlv_abc")

        # Re-queue retries whose time has come (e.g. after a restart)
        await dispatcher.process_due()
        ```
    """

    def __init__(
        self,
        store: ForwardingStore,
        scheduler: TaskScheduler,
        client: httpx.AsyncClient | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        max_concurrent: int = 10,
        base_delay_ms: int = BASE_DELAY_MS,
        max_delay_ms: int = MAX_DELAY_MS,
        jitter_ms: int = JITTER_MS,
        snippet_limit: int = SNIPPET_LIMIT,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            store: Storage for deliveries, targets and events.
            scheduler: Runs retries after their backoff delay.
            client: Shared HTTP client. A short-lived client is opened per
                request when omitted.
            user_agent: User-Agent header value.
            max_concurrent: Maximum requests in flight.
            base_delay_ms: Delay after the first failed attempt.
            max_delay_ms: Cap of the exponential delay.
            jitter_ms: Upper bound (exclusive) of the random jitter.
            snippet_limit: Maximum stored characters of bodies and errors.
            rng: Random source for jitter.
            clock: Source of the current time.
        """
        self._store = store
        self._scheduler = scheduler
        self._client = client
        self._user_agent = user_agent
        self._max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._base_delay_ms = base_delay_ms
        self._max_delay_ms = max_delay_ms
        self._jitter_ms = jitter_ms
        self._snippet_limit = snippet_limit
        self._rng = rng
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        store: ForwardingStore,
        scheduler: TaskScheduler,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> WebhookDispatcher:
        return cls(
            store,
            scheduler,
            client=client,
            clock=clock,
            user_agent=settings.user_agent,
            max_concurrent=settings.max_concurrent_deliveries,
            base_delay_ms=settings.retry_base_delay_ms,
            max_delay_ms=settings.retry_max_delay_ms,
            jitter_ms=settings.retry_jitter_ms,
            snippet_limit=settings.response_snippet_limit,
        )

    def retry_delay_ms(self, attempt: int) -> int:
        """Backoff before the attempt that follows ``attempt``."""
        return retry_delay_ms(
            attempt,
            base_ms=self._base_delay_ms,
            cap_ms=self._max_delay_ms,
            jitter_ms=self._jitter_ms,
            rng=self._rng,
        )

    async def dispatch(self, delivery_id: str) -> Delivery | None:
        """Make one delivery attempt.

        Args:
            delivery_id: Delivery to attempt.

        Returns:
            The delivery as left by this call, or None if it (or its
            target or event) no longer exists.
        """
        context = await self._store.get_delivery_context(delivery_id)
        if context is None:
            logger.info("Delivery context missing, skipping", delivery_id=delivery_id)
            return None

        with log_context(
            delivery_id=delivery_id,
            target_id=context.target.id,
            event_id=context.event.id,
        ):
            return await self._dispatch(context)

    async def _dispatch(self, context: DeliveryContext) -> Delivery | None:
        delivery, target, event = context.delivery, context.target, context.event

        if delivery.is_terminal:
            logger.debug("Delivery already terminal", status=delivery.status)
            return delivery

        if not delivery.is_due(self._clock() + DUE_TOLERANCE):
            logger.debug("Delivery not due yet", next_attempt_at=str(delivery.next_attempt_at))
            return delivery

        if not target.enabled:
            return await self._fail_without_attempt(delivery, target, TARGET_DISABLED)

        if delivery.budget_exhausted:
            # Previous attempt was spent but its outcome never recorded
            return await self._fail_without_attempt(delivery, target, BUDGET_EXHAUSTED)

        # The lease starts once a request slot is held, never while queued
        async with self._semaphore:
            now = self._clock()
            started = await self._store.start_attempt(
                delivery.id,
                lease_until=now + timedelta(milliseconds=target.timeout_ms) + LEASE_MARGIN,
                due_by=now + DUE_TOLERANCE,
            )
            if started is None:
                logger.info("Delivery no longer due or attemptable, skipping")
                return await self._store.get_delivery(delivery.id)
            delivery = started
            result = await self._attempt(delivery, target, event)

        now = self._clock()

        if result.succeeded:
            return await self._record_success(delivery, target, result, now)
        return await self._record_failure(delivery, target, result, now)

    async def _attempt(self, delivery: Delivery, target: Target, event: Event) -> AttemptResult:
        body = event.to_envelope().to_body()
        timestamp = str(to_epoch_ms(self._clock()))
        headers = self.build_headers(delivery, event, timestamp, body, target.signing_secret)
        timeout = target.timeout_ms / 1000

        try:
            response = await asyncio.wait_for(
                self._post(str(target.url), body, headers, timeout),
                timeout=timeout,
            )
        except TimeoutError:
            return AttemptResult(error=f"Request timed out after {target.timeout_ms}ms")
        except httpx.HTTPError as e:
            return AttemptResult(error=self._truncate(str(e) or e.__class__.__name__))
        except Exception as e:
            logger.exception("Unexpected error delivering webhook")
            return AttemptResult(error=self._truncate(f"Unexpected error: {e}"))

        snippet = self._truncate(response.text) if response.text else None
        if response.status_code == 200:
            return AttemptResult(status_code=200, response_snippet=snippet)
        return AttemptResult(
            status_code=response.status_code,
            response_snippet=snippet,
            error=f"Unexpected status {response.status_code}",
        )

    async def _post(
        self, url: str, body: str, headers: dict[str, str], timeout: float
    ) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, content=body, headers=headers, timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(url, content=body, headers=headers)

    def build_headers(
        self,
        delivery: Delivery,
        event: Event,
        timestamp: str,
        body: str,
        secret: str,
    ) -> dict[str, str]:
        """Headers for one attempt; ``X-Attempt`` is the 1-based attempt number."""
        return {
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
            "X-Event-Id": event.id,
            "X-Event-Type": event.event_type,
            "X-Delivery-Id": delivery.id,
            "X-Attempt": str(delivery.attempt_count),
            "X-Timestamp": timestamp,
            "X-Signature": compute_signature(secret, body, timestamp),
        }

    async def _record_success(
        self, delivery: Delivery, target: Target, result: AttemptResult, now: datetime
    ) -> Delivery:
        delivery.mark_succeeded(
            at=now,
            status_code=200,
            response_snippet=result.response_snippet,
        )
        if not await self._store.save_delivery_outcome(delivery):
            logger.warning("Delivery finished concurrently, outcome dropped")
            return await self._store.get_delivery(delivery.id) or delivery
        await self._store.record_target_success(target.id, now)
        logger.info(
            "Webhook delivered",
            url=str(target.url),
            attempt=delivery.attempt_count,
        )
        return delivery

    async def _record_failure(
        self, delivery: Delivery, target: Target, result: AttemptResult, now: datetime
    ) -> Delivery:
        error = result.error or "Unknown delivery error"
        retry_at: datetime | None = None

        if delivery.can_retry:
            retry_at = now + timedelta(milliseconds=self.retry_delay_ms(delivery.attempt_count))
            delivery.mark_retrying(
                at=now,
                retry_at=retry_at,
                error=error,
                status_code=result.status_code,
                response_snippet=result.response_snippet,
            )
        else:
            delivery.mark_failed(
                at=now,
                error=error,
                status_code=result.status_code,
                response_snippet=result.response_snippet,
            )

        if not await self._store.save_delivery_outcome(delivery):
            logger.warning("Delivery finished concurrently, outcome dropped")
            return await self._store.get_delivery(delivery.id) or delivery
        await self._store.record_target_failure(target.id, now, error)

        if retry_at is not None:
            delay = max(0.0, (retry_at - now).total_seconds())
            self._scheduler.run_after(delay, self.dispatch, delivery.id)
            logger.info(
                "Webhook attempt failed, retry scheduled",
                url=str(target.url),
                attempt=delivery.attempt_count,
                max_attempts=delivery.max_attempts,
                status_code=result.status_code,
                error=error,
                retry_at=retry_at.isoformat(),
            )
        else:
            logger.warning(
                "Webhook delivery failed permanently",
                url=str(target.url),
                attempts=delivery.attempt_count,
                status_code=result.status_code,
                error=error,
            )
        return delivery

    async def _fail_without_attempt(
        self, delivery: Delivery, target: Target, error: str
    ) -> Delivery:
        now = self._clock()
        delivery.mark_failed(
            at=now,
            error=error,
            status_code=delivery.last_status_code,
            response_snippet=delivery.last_response_snippet,
        )
        if not await self._store.save_delivery_outcome(delivery):
            return await self._store.get_delivery(delivery.id) or delivery
        await self._store.record_target_failure(target.id, now, error)
        logger.warning("Webhook delivery failed without attempt", reason=error)
        return delivery

    def _truncate(self, value: str) -> str:
        return truncate(value, self._snippet_limit)

    async def process_due(self, now: datetime | None = None, limit: int = 100) -> int:
        """Re-queue pending deliveries whose next attempt is due.

        Recovers retries lost when the process running the scheduler
        stopped. Duplicate dispatches are harmless.

        Args:
            now: Reference time (defaults to the dispatcher clock).
            limit: Maximum deliveries to re-queue.

        Returns:
            Number of dispatches scheduled.
        """
        due = await self._store.list_due_deliveries(now or self._clock(), limit)
        for delivery in due:
            self._scheduler.run_after(0, self.dispatch, delivery.id)
        if due:
            logger.info("Re-queued due deliveries", count=len(due))
        return len(due)
