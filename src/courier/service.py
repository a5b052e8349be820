"""Core Courier service layer.

``ForwardingService`` wires storage, scheduler, planner and dispatcher
together and exposes the operations used by the rest of the system:
event ingestion and the per-target delivery history.

Example:
    ```python
    from courier.service import ForwardingService

    async with ForwardingService.create() as courier:
        result = await courier.submit_event(
            account_id="acc_123",
            event_type="message.inbound.received",
            source="meta_webhook",
            payload={"from": "+15550100", "text": "hi"},
            dedupe_key="wamid.HBgL...",
        )
        history = await courier.list_recent_deliveries("tgt_abc")
    ```
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from courier.config import Settings
from courier.exceptions import ValidationError
from courier.logging import get_logger
from courier.models import (
    Delivery,
    DeliverySummary,
    Event,
    EventSource,
    EventType,
    SubmitResult,
    Target,
    utc_now,
)
from courier.scheduler import InProcessScheduler, TaskScheduler
from courier.storage import ForwardingStore, create_store
from courier.webhooks import DeliveryPlanner, WebhookDispatcher

logger = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 20


@dataclass
class ForwardingService:
    """High-level entry point of the forwarding engine.

    Attributes:
        store: Storage backend.
        settings: Configuration settings.
        scheduler: Task scheduler (defaults to InProcessScheduler).
        client: Shared HTTP client for webhook requests (optional).
        clock: Source of the current time for the dispatcher.
    """

    store: ForwardingStore
    settings: Settings
    scheduler: TaskScheduler | None = None
    client: httpx.AsyncClient | None = None
    clock: Callable[[], datetime] = utc_now

    dispatcher: WebhookDispatcher = field(init=False, repr=False)
    planner: DeliveryPlanner = field(init=False, repr=False)
    _sweeper: asyncio.Task[None] | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.scheduler is None:
            self.scheduler = InProcessScheduler()
        self.dispatcher = WebhookDispatcher.from_settings(
            self.store, self.scheduler, self.settings, client=self.client, clock=self.clock
        )
        self.planner = DeliveryPlanner(self.store, self.scheduler, self.dispatcher)

    @classmethod
    def create(cls, settings: Settings | None = None) -> ForwardingService:
        """Create a service with the storage backend named in settings."""
        if settings is None:
            settings = Settings()
        return cls(store=create_store(settings), settings=settings)

    async def initialize(self, run_sweeper: bool = False) -> None:
        """Initialize storage and optionally start the retry sweeper.

        Args:
            run_sweeper: Re-queue overdue deliveries now and then every
                ``settings.sweep_interval_seconds``.
        """
        await self.store.initialize()
        if run_sweeper and self._sweeper is None:
            await self.dispatcher.process_due(limit=self.settings.sweep_batch_size)
            self._sweeper = asyncio.create_task(self._sweep_forever())

    async def close(self) -> None:
        """Stop background work and release storage."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        if self.scheduler is not None:
            await self.scheduler.close()
        await self.store.close()

    async def __aenter__(self) -> ForwardingService:
        await self.initialize()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.settings.sweep_interval_seconds)
            try:
                await self.dispatcher.process_due(limit=self.settings.sweep_batch_size)
            except Exception:
                logger.exception("Retry sweep failed")

    async def submit_event(
        self,
        account_id: str,
        event_type: EventType,
        source: EventSource,
        payload: Any,
        occurred_at: datetime | None = None,
        dedupe_key: str | None = None,
    ) -> SubmitResult:
        """Accept a domain event for forwarding.

        With a ``dedupe_key``, at most one event exists per (account,
        key). Repeats return the original event ID with ``deduped=True``
        and trigger no new deliveries.

        Args:
            account_id: Account the event belongs to.
            event_type: Type of event.
            source: Originating subsystem.
            payload: Opaque JSON value forwarded verbatim.
            occurred_at: When it happened (defaults to now).
            dedupe_key: Optional idempotency token.

        Returns:
            SubmitResult with the event ID and what happened.
        """
        event = Event.create(
            account_id=account_id,
            event_type=event_type,
            source=source,
            payload=payload,
            occurred_at=occurred_at,
            dedupe_key=dedupe_key,
        )
        stored, inserted = await self.store.insert_event(event)

        if not inserted:
            logger.info(
                "Duplicate event ignored",
                event_id=stored.id,
                account_id=account_id,
                dedupe_key=dedupe_key,
            )
            return SubmitResult(event_id=stored.id, deduped=True, queued=False)

        assert self.scheduler is not None
        self.scheduler.run_after(0, self.planner.plan_deliveries, stored.id)
        logger.info(
            "Event accepted",
            event_id=stored.id,
            account_id=account_id,
            event_type=event_type,
            source=source,
        )
        return SubmitResult(event_id=stored.id, deduped=False, queued=True)

    async def plan_deliveries(self, event_id: str) -> int:
        """Fan an event out to its subscribed targets."""
        return await self.planner.plan_deliveries(event_id)

    async def dispatch(self, delivery_id: str) -> Delivery | None:
        """Make one attempt for a delivery."""
        return await self.dispatcher.dispatch(delivery_id)

    async def get_target(self, target_id: str) -> Target | None:
        return await self.store.get_target(target_id)

    async def list_recent_deliveries(
        self,
        target_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[DeliverySummary]:
        """Most recent deliveries of a target, newest first.

        Args:
            target_id: Target to inspect.
            limit: Maximum rows to return (at least 1).

        Returns:
            DeliverySummary rows enriched with event type and time.

        Raises:
            ValidationError: If limit is below 1.
        """
        if limit < 1:
            raise ValidationError("limit", "must be at least 1")

        deliveries = await self.store.list_deliveries_for_target(target_id, limit)

        events: dict[str, Event | None] = {}
        summaries: list[DeliverySummary] = []
        for delivery in deliveries:
            if delivery.event_id not in events:
                events[delivery.event_id] = await self.store.get_event(delivery.event_id)
            event = events[delivery.event_id]
            summaries.append(
                DeliverySummary(
                    id=delivery.id,
                    event_id=delivery.event_id,
                    event_type=event.event_type if event else "unknown",
                    event_occurred_at=event.occurred_at if event else None,
                    status=delivery.status,
                    attempt_count=delivery.attempt_count,
                    max_attempts=delivery.max_attempts,
                    last_attempt_at=delivery.last_attempt_at,
                    next_attempt_at=delivery.next_attempt_at,
                    last_status_code=delivery.last_status_code,
                    last_error=delivery.last_error,
                )
            )
        return summaries
