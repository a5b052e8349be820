"""Qdrant storage backend for Courier.

Events, targets and deliveries live in three collections, one point per
record. Points carry a constant one-dimensional vector because nothing is
searched semantically; all lookups are by point ID or payload filter.

Point IDs are derived from record IDs, and record IDs are derived from
natural keys (dedupe key, event/target pair), so insert-if-absent reduces
to "retrieve, then upsert" under a per-row lock. The locks are held in
process: run a single dispatcher process per collection prefix.

Example:
    ```python
    async with QdrantStore(url="http://localhost:6333") as store:
        await store.put_target(target)
        deliveries = await store.list_deliveries_for_target(target.id, limit=20)
    ```
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel
from qdrant_client import AsyncQdrantClient, models

from courier.config import settings
from courier.exceptions import StorageError
from courier.models import Delivery, DeliveryContext, Event, EventType, Target

from .base import StripedLocks
from .retry import qdrant_retry

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", Event, Target, Delivery)

COLLECTION_NAMES = {
    "events": "events",
    "targets": "targets",
    "deliveries": "deliveries",
}

KEYWORD_INDEXES = {
    "events": ["account_id"],
    "targets": ["account_id", "subscribed_events"],
    "deliveries": ["target_id", "event_id", "status"],
}

# Payload fields derived for filtering, stripped on load
DERIVED_FIELDS = ("next_attempt_ts",)

_VECTOR = [1.0]


class QdrantStore:
    """Async Qdrant-backed ``ForwardingStore``."""

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        prefix: str | None = None,
        page_size: int = 256,
    ) -> None:
        """Initialize storage client.

        Args:
            url: Qdrant server URL. Defaults to settings.qdrant_url.
            api_key: Qdrant API key. Defaults to settings.qdrant_api_key.
            prefix: Collection name prefix. Defaults to settings.collection_prefix.
            page_size: Scroll page size for full scans.
        """
        self._url = url or settings.qdrant_url
        self._api_key = api_key or settings.qdrant_api_key
        self._prefix = prefix or settings.collection_prefix
        self._page_size = page_size
        self._client: AsyncQdrantClient | None = None
        self._locks = StripedLocks()

    @property
    def client(self) -> AsyncQdrantClient:
        """Get the Qdrant client, raising if not initialized."""
        if self._client is None:
            raise StorageError("Storage not initialized. Call initialize() first.")
        return self._client

    async def initialize(self) -> None:
        """Connect and ensure collections exist."""
        if self._client is None:
            self._client = AsyncQdrantClient(url=self._url, api_key=self._api_key)
        await self._ensure_collections()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def __aenter__(self) -> QdrantStore:
        await self.initialize()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def _collection_name(self, kind: str) -> str:
        return f"{self._prefix}_{COLLECTION_NAMES[kind]}"

    @staticmethod
    def _point_id(record_id: str) -> str:
        """Qdrant point IDs must be UUIDs; hash the record ID into one."""
        h = hashlib.sha256(record_id.encode()).hexdigest()[:32]
        return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"

    @qdrant_retry
    async def _ensure_collections(self) -> None:
        collections = await self.client.get_collections()
        existing = {c.name for c in collections.collections}

        for kind in COLLECTION_NAMES:
            name = self._collection_name(kind)
            if name in existing:
                continue
            await self.client.create_collection(
                collection_name=name,
                vectors_config=models.VectorParams(size=1, distance=models.Distance.DOT),
            )
            for field_name in KEYWORD_INDEXES[kind]:
                await self.client.create_payload_index(
                    collection_name=name,
                    field_name=field_name,
                    field_schema=models.PayloadSchemaType.KEYWORD,
                )
            if kind == "deliveries":
                await self.client.create_payload_index(
                    collection_name=name,
                    field_name="next_attempt_ts",
                    field_schema=models.PayloadSchemaType.FLOAT,
                )
            logger.info("Created collection %s", name)

    # Payload conversion

    @staticmethod
    def _to_payload(record: BaseModel) -> dict[str, Any]:
        data = record.model_dump(mode="json")
        if isinstance(record, Delivery) and record.next_attempt_at is not None:
            data["next_attempt_ts"] = record.next_attempt_at.timestamp()
        return data

    @staticmethod
    def _from_payload(payload: dict[str, Any], record_class: type[RecordT]) -> RecordT:
        data = {k: v for k, v in payload.items() if k not in DERIVED_FIELDS}
        return record_class.model_validate(data)

    # Low-level operations

    @qdrant_retry
    async def _get(self, kind: str, record_id: str, record_class: type[RecordT]) -> RecordT | None:
        results = await self.client.retrieve(
            collection_name=self._collection_name(kind),
            ids=[self._point_id(record_id)],
            with_payload=True,
        )
        if not results or results[0].payload is None:
            return None
        return self._from_payload(results[0].payload, record_class)

    @qdrant_retry
    async def _put(self, kind: str, record: Event | Target | Delivery) -> None:
        await self.client.upsert(
            collection_name=self._collection_name(kind),
            points=[
                models.PointStruct(
                    id=self._point_id(record.id),
                    vector=_VECTOR,
                    payload=self._to_payload(record),
                )
            ],
            wait=True,
        )

    @qdrant_retry
    async def _scroll_page(
        self,
        kind: str,
        scroll_filter: models.Filter,
        limit: int,
        offset: Any = None,
    ) -> tuple[list[models.Record], Any]:
        return await self.client.scroll(
            collection_name=self._collection_name(kind),
            scroll_filter=scroll_filter,
            limit=limit,
            offset=offset,
            with_payload=True,
        )

    async def _scroll_all(
        self, kind: str, scroll_filter: models.Filter, record_class: type[RecordT]
    ) -> list[RecordT]:
        records: list[RecordT] = []
        offset: Any = None
        while True:
            points, offset = await self._scroll_page(kind, scroll_filter, self._page_size, offset)
            records.extend(
                self._from_payload(p.payload, record_class) for p in points if p.payload is not None
            )
            if offset is None:
                return records

    async def _update(
        self,
        kind: str,
        record_id: str,
        record_class: type[RecordT],
        mutate: Callable[[RecordT], RecordT | None],
    ) -> RecordT | None:
        """Read-modify-write one record under its row lock.

        ``mutate`` returns the record to store, or None to leave it untouched.
        """
        async with self._locks.for_key(record_id):
            record = await self._get(kind, record_id, record_class)
            if record is None:
                return None
            updated = mutate(record)
            if updated is None:
                return None
            await self._put(kind, updated)
            return updated

    # Events

    async def insert_event(self, event: Event) -> tuple[Event, bool]:
        async with self._locks.for_key(event.id):
            existing = await self._get("events", event.id, Event)
            if existing is not None:
                return existing, False
            await self._put("events", event)
            return event, True

    async def get_event(self, event_id: str) -> Event | None:
        return await self._get("events", event_id, Event)

    # Targets

    async def put_target(self, target: Target) -> str:
        async with self._locks.for_key(target.id):
            await self._put("targets", target)
        return target.id

    async def get_target(self, target_id: str) -> Target | None:
        return await self._get("targets", target_id, Target)

    async def list_subscribed_targets(
        self, account_id: str, event_type: EventType
    ) -> list[Target]:
        scroll_filter = models.Filter(
            must=[
                models.FieldCondition(key="account_id", match=models.MatchValue(value=account_id)),
                models.FieldCondition(key="enabled", match=models.MatchValue(value=True)),
                models.FieldCondition(
                    key="subscribed_events", match=models.MatchValue(value=event_type)
                ),
            ]
        )
        targets = await self._scroll_all("targets", scroll_filter, Target)
        return [t for t in targets if t.subscribes_to(event_type)]

    async def record_target_success(self, target_id: str, at: datetime) -> Target | None:
        return await self._update(
            "targets", target_id, Target, lambda target: target.record_success(at)
        )

    async def record_target_failure(
        self, target_id: str, at: datetime, error: str
    ) -> Target | None:
        return await self._update(
            "targets", target_id, Target, lambda target: target.record_failure(at, error)
        )

    # Deliveries

    async def create_delivery(self, delivery: Delivery) -> bool:
        async with self._locks.for_key(delivery.id):
            if await self._get("deliveries", delivery.id, Delivery) is not None:
                return False
            await self._put("deliveries", delivery)
            return True

    async def get_delivery(self, delivery_id: str) -> Delivery | None:
        return await self._get("deliveries", delivery_id, Delivery)

    async def get_delivery_context(self, delivery_id: str) -> DeliveryContext | None:
        delivery = await self.get_delivery(delivery_id)
        if delivery is None:
            return None
        target = await self.get_target(delivery.target_id)
        event = await self.get_event(delivery.event_id)
        if target is None or event is None:
            return None
        return DeliveryContext(delivery=delivery, target=target, event=event)

    async def start_attempt(
        self,
        delivery_id: str,
        lease_until: datetime | None = None,
        due_by: datetime | None = None,
    ) -> Delivery | None:
        def spend(delivery: Delivery) -> Delivery | None:
            if delivery.is_terminal or delivery.budget_exhausted:
                return None
            if due_by is not None and not delivery.is_due(due_by):
                return None
            return delivery.begin_attempt(lease_until)

        return await self._update("deliveries", delivery_id, Delivery, spend)

    async def save_delivery_outcome(self, delivery: Delivery) -> bool:
        def apply(current: Delivery) -> Delivery | None:
            if current.is_terminal:
                return None
            stored = delivery.model_copy(deep=True)
            stored.attempt_count = max(stored.attempt_count, current.attempt_count)
            return stored

        return await self._update("deliveries", delivery.id, Delivery, apply) is not None

    async def list_deliveries_for_target(self, target_id: str, limit: int) -> list[Delivery]:
        scroll_filter = models.Filter(
            must=[
                models.FieldCondition(key="target_id", match=models.MatchValue(value=target_id)),
            ]
        )
        deliveries = await self._scroll_all("deliveries", scroll_filter, Delivery)
        deliveries.sort(key=lambda d: d.recency, reverse=True)
        return deliveries[:limit]

    async def list_due_deliveries(self, now: datetime, limit: int) -> list[Delivery]:
        scroll_filter = models.Filter(
            must=[
                models.FieldCondition(key="status", match=models.MatchValue(value="pending")),
                models.FieldCondition(
                    key="next_attempt_ts", range=models.Range(lte=now.timestamp())
                ),
            ]
        )
        deliveries = await self._scroll_all("deliveries", scroll_filter, Delivery)
        deliveries.sort(key=lambda d: d.next_attempt_at or d.created_at)
        return deliveries[:limit]
