"""Courier: outbound event forwarding.

Delivers account events (inbound messages, outbound sends and failures,
status updates) to user-configured HTTP endpoints as HMAC-signed JSON
webhooks, retrying failed attempts with exponential backoff and tracking
per-endpoint health.

Quick Start:
    from courier.service import ForwardingService

    async with ForwardingService.create() as courier:
        await courier.store.put_target(target)
        result = await courier.submit_event(
            account_id="acc_123",
            event_type="message.status.updated",
            source="twilio_webhook",
            payload={"sid": "SM123", "status": "delivered"},
        )

Records:
    - Event: Immutable domain event, deduplicated per account
    - Target: Webhook endpoint with its subscriptions and health
    - Delivery: One event on its way to one target
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings, settings

# Exceptions
from .exceptions import CourierError, NotFoundError, StorageError, ValidationError

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    log_context,
    unbind_context,
)

# Models
from .models import (
    Delivery,
    DeliverySummary,
    Event,
    EventSource,
    EventType,
    SubmitResult,
    Target,
    WebhookEnvelope,
)

# Service
from .service import ForwardingService

__all__ = [
    "__version__",
    # Configuration
    "Settings",
    "settings",
    # Exceptions
    "CourierError",
    "NotFoundError",
    "StorageError",
    "ValidationError",
    # Logging
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "log_context",
    "unbind_context",
    # Models
    "Delivery",
    "DeliverySummary",
    "Event",
    "EventSource",
    "EventType",
    "SubmitResult",
    "Target",
    "WebhookEnvelope",
    # Service
    "ForwardingService",
]
