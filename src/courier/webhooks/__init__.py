"""Webhook forwarding for Courier.

Provides HMAC-signed webhook delivery with exponential backoff retry.

Example:
    ```python
    from courier.webhooks import DeliveryPlanner, WebhookDispatcher

    dispatcher = WebhookDispatcher(store, scheduler)
    planner = DeliveryPlanner(store, scheduler, dispatcher)

    created = await planner.plan_deliveries(event_id)
    ```
"""

from .backoff import base_delay_ms, retry_delay_ms, truncate
from .delivery import AttemptResult, WebhookDispatcher
from .planner import DeliveryPlanner
from .signing import compute_signature, verify_signature

__all__ = [
    "AttemptResult",
    "DeliveryPlanner",
    "WebhookDispatcher",
    "base_delay_ms",
    "compute_signature",
    "retry_delay_ms",
    "truncate",
    "verify_signature",
]
