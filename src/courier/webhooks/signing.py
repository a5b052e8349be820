"""HMAC-SHA256 request signatures.

The signed message is ``"{timestamp}.{body}"``: binding the timestamp lets
receivers reject replays of an old body under a fresh timestamp header.
"""

from __future__ import annotations

import hashlib
import hmac
import time

SIGNATURE_PREFIX = "sha256="


def signing_message(body: str, timestamp: str) -> bytes:
    """Canonical byte string covered by the signature."""
    return f"{timestamp}.{body}".encode("utf-8")


def compute_signature(secret: str, body: str, timestamp: str) -> str:
    """Compute the signature for a webhook request.

    Args:
        secret: Shared secret of the target.
        body: Exact JSON body being sent.
        timestamp: Value of the ``X-Timestamp`` header (epoch milliseconds).

    Returns:
        Signature in format "sha256=<hex_digest>".
    """
    digest = hmac.new(
        key=secret.encode("utf-8"),
        msg=signing_message(body, timestamp),
        digestmod=hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(
    secret: str,
    body: str,
    timestamp: str,
    signature: str,
    tolerance_seconds: float | None = None,
    now: float | None = None,
) -> bool:
    """Verify a webhook signature on the receiving side.

    Args:
        secret: Shared secret of the target.
        body: Raw request body.
        timestamp: ``X-Timestamp`` header value (epoch milliseconds).
        signature: ``X-Signature`` header value.
        tolerance_seconds: If set, reject timestamps further than this from now.
        now: Current Unix time in seconds (defaults to ``time.time()``).

    Returns:
        True if the signature matches (and the timestamp is fresh), else False.
    """
    if tolerance_seconds is not None:
        try:
            sent_at = int(timestamp) / 1000
        except ValueError:
            return False
        current = time.time() if now is None else now
        if abs(current - sent_at) > tolerance_seconds:
            return False

    expected = compute_signature(secret, body, timestamp)
    return hmac.compare_digest(expected, signature)
