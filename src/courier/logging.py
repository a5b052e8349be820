"""Structured logging for Courier.

Everything goes through one stdout handler formatted by structlog: records
from ``courier.logging.get_logger`` and from plain ``logging.getLogger``
(storage and scheduler modules) come out in the same shape. JSON lines in
production, coloured key/value output in development.

Delivery code binds ``delivery_id``, ``target_id`` and ``event_id`` with
``log_context`` so every line of one attempt can be correlated.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from structlog.typing import Processor

_configured = False
_handler: logging.Handler | None = None

# Applied to structlog and stdlib records alike
_PRE_CHAIN: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
]


def _render_chain(format: str) -> list[Processor]:
    if format.lower() == "json":
        return [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    return [
        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
        structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
    ]


def configure_logging(level: str = "INFO", format: str = "json") -> None:
    """Install the Courier log handler on the root logger.

    Safe to call repeatedly; the previous Courier handler is replaced and
    handlers installed by others (e.g. pytest) are left alone.

    Args:
        level: Log level name; unknown names fall back to INFO.
        format: "json" or "text".
    """
    global _configured, _handler

    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_PRE_CHAIN,
            processors=_render_chain(format),
        )
    )

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)
    root.addHandler(handler)
    root.setLevel(log_level)
    _handler = handler

    structlog.configure(
        processors=[*_PRE_CHAIN, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Structured logger; configures JSON/INFO output if nothing did yet."""
    if not _configured:
        configure_logging()
    return structlog.get_logger(name)  # type: ignore[no-any-return]


def bind_context(**kwargs: object) -> None:
    """Attach fields to every later log line of the current task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def log_context(**kwargs: object) -> Iterator[None]:
    """Bind fields for one block, restoring earlier values on exit.

    Example:
        ```python
        with log_context(delivery_id="dlv_abc", target_id="tgt_123"):
            logger.info("Attempting delivery")  # carries both ids
        ```
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
