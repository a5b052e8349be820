"""Data models for Courier.

Core records:
    - Event: Immutable domain event submitted for forwarding
    - Target: User-configured webhook endpoint (read-mostly)
    - Delivery: Per-(event, target) attempt tracking

Supporting types:
    - WebhookEnvelope: JSON body sent to targets
    - SubmitResult: Outcome of event ingestion
    - DeliverySummary: Row of the per-target history view
    - DeliveryContext: Delivery with its target and event
"""

from .base import (
    ALL_EVENT_TYPES,
    EventSource,
    EventType,
    as_utc,
    derive_id,
    generate_id,
    to_epoch_ms,
    utc_now,
)
from .delivery import (
    TERMINAL_STATUSES,
    Delivery,
    DeliveryContext,
    DeliveryStatus,
    DeliverySummary,
    delivery_id_for,
)
from .event import Event, SubmitResult, WebhookEnvelope, dedupe_event_id
from .target import DEFAULT_MAX_ATTEMPTS, DEFAULT_TIMEOUT_MS, Target

__all__ = [
    # Shared types
    "ALL_EVENT_TYPES",
    "EventSource",
    "EventType",
    "as_utc",
    "derive_id",
    "generate_id",
    "to_epoch_ms",
    "utc_now",
    # Events
    "Event",
    "SubmitResult",
    "WebhookEnvelope",
    "dedupe_event_id",
    # Targets
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_TIMEOUT_MS",
    "Target",
    # Deliveries
    "TERMINAL_STATUSES",
    "Delivery",
    "DeliveryContext",
    "DeliveryStatus",
    "DeliverySummary",
    "delivery_id_for",
]
