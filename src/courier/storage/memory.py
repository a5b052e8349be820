"""In-memory storage backend.

Suitable for tests, local development and single-process deployments that
can afford to lose state on restart. Records are copied on the way in and
out so callers never share mutable state with the store.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from courier.models import DeliveryContext

from .base import StripedLocks

if TYPE_CHECKING:
    from courier.models import Delivery, Event, EventType, Target

logger = logging.getLogger(__name__)


class MemoryStore:
    """Dictionary-backed ``ForwardingStore``."""

    def __init__(self) -> None:
        self._events: dict[str, Event] = {}
        self._targets: dict[str, Target] = {}
        self._deliveries: dict[str, Delivery] = {}
        self._locks = StripedLocks()

    async def initialize(self) -> None:
        logger.debug("Using in-memory store")

    async def close(self) -> None:
        pass

    async def __aenter__(self) -> MemoryStore:
        await self.initialize()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # Events

    async def insert_event(self, event: Event) -> tuple[Event, bool]:
        async with self._locks.for_key(event.id):
            existing = self._events.get(event.id)
            if existing is not None:
                return existing, False
            self._events[event.id] = event
            return event, True

    async def get_event(self, event_id: str) -> Event | None:
        return self._events.get(event_id)

    # Targets

    async def put_target(self, target: Target) -> str:
        async with self._locks.for_key(target.id):
            self._targets[target.id] = target.model_copy(deep=True)
        return target.id

    async def get_target(self, target_id: str) -> Target | None:
        target = self._targets.get(target_id)
        return target.model_copy(deep=True) if target else None

    async def list_subscribed_targets(
        self, account_id: str, event_type: EventType
    ) -> list[Target]:
        return [
            target.model_copy(deep=True)
            for target in self._targets.values()
            if target.account_id == account_id and target.subscribes_to(event_type)
        ]

    async def record_target_success(self, target_id: str, at: datetime) -> Target | None:
        async with self._locks.for_key(target_id):
            target = self._targets.get(target_id)
            if target is None:
                return None
            return target.record_success(at).model_copy(deep=True)

    async def record_target_failure(
        self, target_id: str, at: datetime, error: str
    ) -> Target | None:
        async with self._locks.for_key(target_id):
            target = self._targets.get(target_id)
            if target is None:
                return None
            return target.record_failure(at, error).model_copy(deep=True)

    # Deliveries

    async def create_delivery(self, delivery: Delivery) -> bool:
        async with self._locks.for_key(delivery.id):
            if delivery.id in self._deliveries:
                return False
            self._deliveries[delivery.id] = delivery.model_copy(deep=True)
            return True

    async def get_delivery(self, delivery_id: str) -> Delivery | None:
        delivery = self._deliveries.get(delivery_id)
        return delivery.model_copy(deep=True) if delivery else None

    async def get_delivery_context(self, delivery_id: str) -> DeliveryContext | None:
        delivery = self._deliveries.get(delivery_id)
        if delivery is None:
            return None
        target = self._targets.get(delivery.target_id)
        event = self._events.get(delivery.event_id)
        if target is None or event is None:
            return None
        return DeliveryContext(
            delivery=delivery.model_copy(deep=True),
            target=target.model_copy(deep=True),
            event=event,
        )

    async def start_attempt(
        self,
        delivery_id: str,
        lease_until: datetime | None = None,
        due_by: datetime | None = None,
    ) -> Delivery | None:
        async with self._locks.for_key(delivery_id):
            delivery = self._deliveries.get(delivery_id)
            if delivery is None or delivery.is_terminal or delivery.budget_exhausted:
                return None
            if due_by is not None and not delivery.is_due(due_by):
                return None
            return delivery.begin_attempt(lease_until).model_copy(deep=True)

    async def save_delivery_outcome(self, delivery: Delivery) -> bool:
        async with self._locks.for_key(delivery.id):
            current = self._deliveries.get(delivery.id)
            if current is None or current.is_terminal:
                return False
            stored = delivery.model_copy(deep=True)
            # A concurrent duplicate may have spent another attempt meanwhile
            stored.attempt_count = max(stored.attempt_count, current.attempt_count)
            self._deliveries[delivery.id] = stored
            return True

    async def list_deliveries_for_target(self, target_id: str, limit: int) -> list[Delivery]:
        matching = [d for d in self._deliveries.values() if d.target_id == target_id]
        matching.sort(key=lambda d: d.recency, reverse=True)
        return [d.model_copy(deep=True) for d in matching[:limit]]

    async def list_due_deliveries(self, now: datetime, limit: int) -> list[Delivery]:
        due = [
            d
            for d in self._deliveries.values()
            if d.status == "pending" and d.next_attempt_at is not None and d.next_attempt_at <= now
        ]
        due.sort(key=lambda d: d.next_attempt_at or d.created_at)
        return [d.model_copy(deep=True) for d in due[:limit]]
