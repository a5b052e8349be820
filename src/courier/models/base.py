"""Shared helpers for Courier models."""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime
from typing import Literal
from uuid import uuid4

# Event types that can be forwarded to targets
EventType = Literal[
    "message.inbound.received",
    "message.outbound.sent",
    "message.outbound.failed",
    "message.status.updated",
]

ALL_EVENT_TYPES: list[EventType] = [
    "message.inbound.received",
    "message.outbound.sent",
    "message.outbound.failed",
    "message.status.updated",
]

# Where an event originated
EventSource = Literal["meta_webhook", "twilio_webhook", "api"]


def generate_id(prefix: str) -> str:
    """Generate a unique ID with the given prefix.

    Examples:
        generate_id("evt") -> "evt_a1b2c3d4e5f6"
        generate_id("tgt") -> "tgt_a1b2c3d4e5f6"
    """
    return f"{prefix}_{uuid4().hex[:12]}"


def derive_id(prefix: str, *parts: str) -> str:
    """Derive a stable ID from its natural key.

    The same parts always yield the same ID, so inserting twice under a
    derived ID is detectable as a duplicate.

    Examples:
        derive_id("dlv", "evt_1", "tgt_1") -> "dlv_3f0c2a..." (24 hex chars)
    """
    digest = hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()
    return f"{prefix}_{digest[:24]}"


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Normalize to UTC; naive datetimes are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_epoch_ms(value: datetime) -> int:
    """Convert a datetime to Unix epoch milliseconds (naive means UTC)."""
    return int(as_utc(value).timestamp() * 1000)
