"""Delivery records: one per (event, target) pair.

A delivery starts ``pending`` and ends either ``succeeded`` or ``failed``.
Terminal states never change again.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .base import EventType, derive_id, utc_now
from .event import Event
from .target import Target

DeliveryStatus = Literal["pending", "succeeded", "failed"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"succeeded", "failed"})


def delivery_id_for(event_id: str, target_id: str) -> str:
    """Stable delivery ID for an (event, target) pair."""
    return derive_id("dlv", event_id, target_id)


class Delivery(BaseModel):
    """State of forwarding one event to one target.

    Attributes:
        id: Derived from (event_id, target_id).
        account_id: Account owning the event and target.
        event_id: Event being forwarded.
        target_id: Target receiving it.
        status: pending, succeeded or failed.
        attempt_count: Attempts started so far.
        max_attempts: Budget copied from the target at creation.
        next_attempt_at: When the next attempt is due (pending only).
        last_attempt_at: When the last attempt finished.
        last_status_code: HTTP status of the last response, if any.
        last_error: Error text of the last failed attempt.
        last_response_snippet: Truncated body of the last response.
        delivered_at: Set once the delivery succeeds.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    account_id: str
    event_id: str
    target_id: str
    status: DeliveryStatus = "pending"
    attempt_count: int = Field(default=0, ge=0)
    max_attempts: int = Field(ge=1, le=20)
    next_attempt_at: datetime | None = None
    last_attempt_at: datetime | None = None
    last_status_code: int | None = None
    last_error: str | None = None
    last_response_snippet: str | None = None
    delivered_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _check_budget(self) -> "Delivery":
        if self.attempt_count > self.max_attempts:
            raise ValueError(
                f"attempt_count ({self.attempt_count}) exceeds max_attempts ({self.max_attempts})"
            )
        return self

    @classmethod
    def for_target(
        cls,
        event_id: str,
        account_id: str,
        target_id: str,
        max_attempts: int,
    ) -> "Delivery":
        """Create a fresh pending delivery that is due immediately."""
        now = utc_now()
        return cls(
            id=delivery_id_for(event_id, target_id),
            account_id=account_id,
            event_id=event_id,
            target_id=target_id,
            max_attempts=max_attempts,
            next_attempt_at=now,
            created_at=now,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def budget_exhausted(self) -> bool:
        return self.attempt_count >= self.max_attempts

    @property
    def can_retry(self) -> bool:
        """Whether a failed attempt may be followed by another one."""
        return self.attempt_count < self.max_attempts

    def is_due(self, at: datetime) -> bool:
        """Whether an attempt may start at ``at``."""
        return self.next_attempt_at is None or self.next_attempt_at <= at

    @property
    def recency(self) -> datetime:
        """Sort key for history views: last attempt, else creation."""
        return self.last_attempt_at or self.created_at

    def begin_attempt(self, lease_until: datetime | None = None) -> "Delivery":
        """Spend one attempt from the budget.

        Args:
            lease_until: Moves ``next_attempt_at`` past the end of the
                attempt so sweeps leave the in-flight attempt alone.
        """
        if self.is_terminal:
            raise ValueError(f"Delivery {self.id} is already {self.status}")
        if self.budget_exhausted:
            raise ValueError(f"Delivery {self.id} has no attempts left")
        self.attempt_count += 1
        if lease_until is not None:
            self.next_attempt_at = lease_until
        return self

    def mark_succeeded(
        self,
        at: datetime,
        status_code: int,
        response_snippet: str | None = None,
    ) -> "Delivery":
        """Mark delivery as delivered."""
        self.status = "succeeded"
        self.last_attempt_at = at
        self.next_attempt_at = None
        self.last_status_code = status_code
        self.last_response_snippet = response_snippet
        self.last_error = None
        self.delivered_at = at
        return self

    def mark_retrying(
        self,
        at: datetime,
        retry_at: datetime,
        error: str,
        status_code: int | None = None,
        response_snippet: str | None = None,
    ) -> "Delivery":
        """Record a failed attempt that will be retried at ``retry_at``."""
        self.status = "pending"
        self.last_attempt_at = at
        self.next_attempt_at = retry_at
        self.last_status_code = status_code
        self.last_error = error
        self.last_response_snippet = response_snippet
        return self

    def mark_failed(
        self,
        at: datetime,
        error: str,
        status_code: int | None = None,
        response_snippet: str | None = None,
    ) -> "Delivery":
        """Mark delivery as failed (no more attempts)."""
        self.status = "failed"
        self.last_attempt_at = at
        self.next_attempt_at = None
        self.last_status_code = status_code
        self.last_error = error
        self.last_response_snippet = response_snippet
        self.delivered_at = None
        return self


class DeliverySummary(BaseModel):
    """Delivery row for the per-target history view."""

    model_config = ConfigDict(extra="forbid")

    id: str
    event_id: str
    event_type: EventType | Literal["unknown"]
    event_occurred_at: datetime | None = None
    status: DeliveryStatus
    attempt_count: int
    max_attempts: int
    last_attempt_at: datetime | None = None
    next_attempt_at: datetime | None = None
    last_status_code: int | None = None
    last_error: str | None = None


class DeliveryContext(BaseModel):
    """Everything the dispatcher needs for one attempt, read together."""

    model_config = ConfigDict(extra="forbid")

    delivery: Delivery
    target: Target
    event: Event
