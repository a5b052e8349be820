"""Storage protocol shared by all Courier backends.

Every write that the forwarding engine relies on for correctness is a
single atomic store operation:

- ``insert_event`` / ``create_delivery`` are insert-if-absent, which makes
  ingestion idempotent per dedupe key and planning idempotent per
  (event, target).
- ``start_attempt`` only spends an attempt while the delivery is pending
  and under budget.
- ``save_delivery_outcome`` only applies while the stored delivery is
  still pending, so terminal states never change.
- ``record_target_success`` / ``record_target_failure`` serialize
  concurrent writers to the same target.
"""

from __future__ import annotations

import asyncio
import zlib
from abc import abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from courier.models import Delivery, DeliveryContext, Event, EventType, Target


@runtime_checkable
class ForwardingStore(Protocol):
    """Persistence operations used by ingress, planner, dispatcher and read model."""

    @abstractmethod
    async def initialize(self) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    # Events

    @abstractmethod
    async def insert_event(self, event: Event) -> tuple[Event, bool]:
        """Store ``event`` unless one with the same ID exists.

        Returns:
            The stored event and whether it was newly inserted.
        """
        ...

    @abstractmethod
    async def get_event(self, event_id: str) -> Event | None: ...

    # Targets

    @abstractmethod
    async def put_target(self, target: Target) -> str:
        """Create or replace a target (target-management boundary)."""
        ...

    @abstractmethod
    async def get_target(self, target_id: str) -> Target | None: ...

    @abstractmethod
    async def list_subscribed_targets(
        self, account_id: str, event_type: EventType
    ) -> list[Target]:
        """Enabled targets of the account subscribed to ``event_type``."""
        ...

    @abstractmethod
    async def record_target_success(self, target_id: str, at: datetime) -> Target | None: ...

    @abstractmethod
    async def record_target_failure(
        self, target_id: str, at: datetime, error: str
    ) -> Target | None: ...

    # Deliveries

    @abstractmethod
    async def create_delivery(self, delivery: Delivery) -> bool:
        """Store ``delivery`` unless one with the same ID exists.

        Returns:
            True if the delivery was newly created.
        """
        ...

    @abstractmethod
    async def get_delivery(self, delivery_id: str) -> Delivery | None: ...

    @abstractmethod
    async def get_delivery_context(self, delivery_id: str) -> DeliveryContext | None:
        """Delivery with its target and event, or None if any is missing."""
        ...

    @abstractmethod
    async def start_attempt(
        self,
        delivery_id: str,
        lease_until: datetime | None = None,
        due_by: datetime | None = None,
    ) -> Delivery | None:
        """Increment ``attempt_count`` of a pending, under-budget delivery.

        ``next_attempt_at`` moves to ``lease_until`` when given, so the
        delivery is not due again while the attempt is in flight. With
        ``due_by``, a delivery whose ``next_attempt_at`` is later than
        ``due_by`` is left alone; the check and the increment are one
        atomic step.

        Returns:
            The updated delivery, or None if it is missing, terminal, out
            of attempts or not yet due.
        """
        ...

    @abstractmethod
    async def save_delivery_outcome(self, delivery: Delivery) -> bool:
        """Persist an attempt outcome if the stored delivery is still pending.

        Returns:
            True if the write was applied.
        """
        ...

    @abstractmethod
    async def list_deliveries_for_target(self, target_id: str, limit: int) -> list[Delivery]:
        """Most recent deliveries for a target, newest first."""
        ...

    @abstractmethod
    async def list_due_deliveries(self, now: datetime, limit: int) -> list[Delivery]:
        """Pending deliveries whose ``next_attempt_at`` is at or before ``now``."""
        ...


class StripedLocks:
    """Fixed pool of asyncio locks selected by key.

    Serializes writers to the same row without one lock per row.
    """

    def __init__(self, stripes: int = 64) -> None:
        self._locks = [asyncio.Lock() for _ in range(stripes)]

    def for_key(self, key: str) -> asyncio.Lock:
        return self._locks[zlib.crc32(key.encode("utf-8")) % len(self._locks)]
