"""Webhook targets: user-configured endpoints subscribed to event types.

Targets are owned by the target-management collaborator. Courier reads
the configuration fields and writes only the delivery bookkeeping fields
(``consecutive_failures`` and the ``last_*`` timestamps).
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from .base import ALL_EVENT_TYPES, EventType, generate_id, utc_now

DEFAULT_MAX_ATTEMPTS = 8
DEFAULT_TIMEOUT_MS = 10_000


class Target(BaseModel):
    """Configuration and health of a webhook endpoint.

    Attributes:
        id: Unique identifier for this target.
        account_id: Account that owns the target.
        url: Endpoint receiving POSTed envelopes.
        name: Optional human-readable label.
        enabled: Disabled targets receive nothing; pending deliveries fail.
        subscribed_events: Event types forwarded to this target.
        signing_secret: Shared secret for request signatures.
        max_attempts: Attempt budget copied onto each new delivery (1-20).
        timeout_ms: Per-request timeout in milliseconds (1000-60000).
        consecutive_failures: Failed attempts since the last success.
        last_delivery_at: Last attempt outcome of any kind.
        last_success_at: Last successful attempt.
        last_failure_at: Last failed attempt.
        last_error: Error text of the last failure, cleared on success.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("tgt"))
    account_id: str = Field(min_length=1, description="Owning account")
    url: HttpUrl = Field(description="Endpoint to POST events to")
    name: str | None = Field(default=None, description="Human-readable label")
    enabled: bool = Field(default=True, description="Whether the target is active")
    subscribed_events: set[EventType] = Field(
        default_factory=lambda: set(ALL_EVENT_TYPES),
        description="Event types to forward",
    )
    signing_secret: str = Field(min_length=1, description="Shared signing secret")
    max_attempts: int = Field(
        default=DEFAULT_MAX_ATTEMPTS, ge=1, le=20, description="Attempt budget per delivery"
    )
    timeout_ms: int = Field(
        default=DEFAULT_TIMEOUT_MS, ge=1000, le=60_000, description="Request timeout"
    )
    consecutive_failures: int = Field(default=0, ge=0)
    last_delivery_at: datetime | None = None
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def subscribes_to(self, event_type: EventType) -> bool:
        """Check if this target is enabled and subscribed to the event type."""
        return self.enabled and event_type in self.subscribed_events

    def record_success(self, at: datetime) -> "Target":
        """Reset the failure streak after a delivered attempt."""
        self.last_delivery_at = at
        self.last_success_at = at
        self.consecutive_failures = 0
        self.last_error = None
        self.updated_at = utc_now()
        return self

    def record_failure(self, at: datetime, error: str) -> "Target":
        """Extend the failure streak after a failed attempt."""
        self.last_delivery_at = at
        self.last_failure_at = at
        self.consecutive_failures += 1
        self.last_error = error
        self.updated_at = utc_now()
        return self
