"""Retry delay and storage truncation rules."""

from __future__ import annotations

import random

BASE_DELAY_MS = 5000
MAX_DELAY_MS = 60 * 60 * 1000
JITTER_MS = 1000
SNIPPET_LIMIT = 1000
TRUNCATION_MARKER = "..."


def base_delay_ms(
    attempt: int,
    base_ms: int = BASE_DELAY_MS,
    cap_ms: int = MAX_DELAY_MS,
) -> int:
    """Exponential part of the delay after ``attempt`` failed attempts.

    5s, 10s, 20s, ... capped at one hour with the defaults.
    """
    exponent = max(0, attempt - 1)
    # Past this point the product is above any sane cap anyway
    if exponent >= 48:
        return cap_ms
    return min(cap_ms, base_ms * 2**exponent)


def retry_delay_ms(
    attempt: int,
    base_ms: int = BASE_DELAY_MS,
    cap_ms: int = MAX_DELAY_MS,
    jitter_ms: int = JITTER_MS,
    rng: random.Random | None = None,
) -> int:
    """Delay in milliseconds before the attempt following ``attempt``.

    Adds uniform jitter in ``[0, jitter_ms)`` so deliveries that failed
    together do not retry together.
    """
    jitter = 0
    if jitter_ms > 0:
        jitter = int((rng or random).random() * jitter_ms)
    return base_delay_ms(attempt, base_ms, cap_ms) + jitter


def truncate(value: str, limit: int = SNIPPET_LIMIT) -> str:
    """Cut ``value`` to ``limit`` characters, marking the cut with ``...``."""
    if len(value) <= limit:
        return value
    return f"{value[:limit]}{TRUNCATION_MARKER}"
