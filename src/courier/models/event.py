"""Domain events and the webhook envelope built from them."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .base import EventSource, EventType, as_utc, derive_id, generate_id, to_epoch_ms, utc_now


def dedupe_event_id(account_id: str, dedupe_key: str) -> str:
    """Event ID used when the caller supplies a dedupe key."""
    return derive_id("evt", account_id, dedupe_key)


class Event(BaseModel):
    """An immutable record of something that happened in an account.

    Attributes:
        id: Unique identifier (derived from the dedupe key when one is given).
        account_id: Account the event belongs to.
        event_type: Closed set of forwardable event types.
        source: Subsystem the event came from.
        occurred_at: When it happened; defaults to ingestion time.
        payload: Opaque JSON value forwarded verbatim.
        dedupe_key: Optional caller-supplied idempotency token.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=lambda: generate_id("evt"))
    account_id: str = Field(min_length=1, description="Owning account")
    event_type: EventType = Field(description="Event type")
    source: EventSource = Field(description="Originating subsystem")
    occurred_at: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred",
    )
    payload: Any = Field(default=None, description="Opaque event payload")
    dedupe_key: str | None = Field(default=None, description="Idempotency token")

    @field_validator("occurred_at")
    @classmethod
    def _occurred_at_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @classmethod
    def create(
        cls,
        account_id: str,
        event_type: EventType,
        source: EventSource,
        payload: Any,
        occurred_at: datetime | None = None,
        dedupe_key: str | None = None,
    ) -> "Event":
        """Build a new event, deriving its ID from the dedupe key if present."""
        fields: dict[str, Any] = {
            "account_id": account_id,
            "event_type": event_type,
            "source": source,
            "payload": payload,
            "dedupe_key": dedupe_key,
        }
        if occurred_at is not None:
            fields["occurred_at"] = occurred_at
        if dedupe_key is not None:
            fields["id"] = dedupe_event_id(account_id, dedupe_key)
        return cls(**fields)

    def to_envelope(self) -> "WebhookEnvelope":
        """Build the JSON body sent to targets."""
        return WebhookEnvelope(
            id=self.id,
            type=self.event_type,
            source=self.source,
            occurred_at=to_epoch_ms(self.occurred_at),
            account_id=self.account_id,
            payload=self.payload,
        )


class WebhookEnvelope(BaseModel):
    """Body of a webhook request.

    Serialized with camelCase keys:
    ``{"id", "type", "source", "occurredAt", "accountId", "payload"}``.
    """

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str
    type: EventType
    source: EventSource
    occurred_at: int = Field(description="Unix epoch milliseconds")
    account_id: str
    payload: Any = None

    def to_body(self) -> str:
        """Serialize to the exact string that is signed and sent."""
        return self.model_dump_json(by_alias=True)


class SubmitResult(BaseModel):
    """Outcome of submitting an event."""

    model_config = ConfigDict(extra="forbid")

    event_id: str
    deduped: bool = False
    queued: bool = False
