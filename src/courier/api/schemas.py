"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from courier.models import DeliverySummary, EventSource, EventType


class SubmitEventRequest(BaseModel):
    """Request body for submitting an event.

    Attributes:
        account_id: Account the event belongs to.
        event_type: One of the forwardable event types.
        source: Subsystem the event came from.
        payload: Opaque JSON value forwarded verbatim.
        occurred_at: When it happened (defaults to now).
        dedupe_key: Optional idempotency token, unique per account.
    """

    model_config = ConfigDict(extra="forbid")

    account_id: str = Field(min_length=1, description="Owning account")
    event_type: EventType = Field(description="Event type")
    source: EventSource = Field(default="api", description="Originating subsystem")
    payload: Any = Field(default=None, description="Opaque event payload")
    occurred_at: datetime | None = Field(default=None, description="When the event occurred")
    dedupe_key: str | None = Field(
        default=None,
        min_length=1,
        max_length=512,
        description="Idempotency token",
    )


class SubmitEventResponse(BaseModel):
    """Response for an accepted event."""

    event_id: str
    deduped: bool
    queued: bool


class DeliveryListResponse(BaseModel):
    """Recent deliveries of one target, newest first."""

    target_id: str
    deliveries: list[DeliverySummary]
    count: int


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str
    version: str
    storage_connected: bool
