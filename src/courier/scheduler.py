"""Delayed task execution for fire-and-forget continuations.

Ingress schedules planning, planning schedules dispatch, and dispatch
schedules its own retries. All of them go through a ``TaskScheduler`` so
the execution engine can be swapped.

Only the in-process backend ships: tasks live in the event loop and are
lost when the process exits. Deliveries that were waiting for a retry are
picked up again by ``WebhookDispatcher.process_due`` after a restart.

Example:
    ```python
    scheduler = InProcessScheduler()
    scheduler.run_after(5.0, dispatcher.dispatch, "dlv_abc")
    ...
    await scheduler.close()
    ```
"""

from __future__ import annotations

import asyncio
import logging
from abc import abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

Task = Callable[..., Awaitable[Any]]


@runtime_checkable
class TaskScheduler(Protocol):
    """Protocol for delayed task execution.

    Implementations provide at-least-once execution: a task may run more
    than once, so every task must be idempotent.
    """

    @abstractmethod
    def run_after(self, delay_seconds: float, task: Task, *args: Any) -> None:
        """Run ``task(*args)`` no earlier than ``delay_seconds`` from now."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Stop accepting work and release resources."""
        ...


class InProcessScheduler:
    """Runs scheduled tasks as asyncio tasks in the current event loop.

    Exceptions raised by a task are logged, never propagated: there is no
    caller left to receive them.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        """Number of scheduled tasks that have not finished yet."""
        return len(self._tasks)

    def run_after(self, delay_seconds: float, task: Task, *args: Any) -> None:
        if self._closed:
            raise RuntimeError("Scheduler is closed")
        handle = asyncio.get_running_loop().create_task(
            self._run(max(0.0, delay_seconds), task, args)
        )
        self._tasks.add(handle)
        handle.add_done_callback(self._tasks.discard)

    async def _run(self, delay_seconds: float, task: Task, args: tuple[Any, ...]) -> None:
        if delay_seconds > 0:
            await asyncio.sleep(delay_seconds)
        name = getattr(task, "__qualname__", repr(task))
        try:
            await task(*args)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled task %s failed (args=%r)", name, args)

    async def wait_idle(self) -> None:
        """Wait until no scheduled task is left, including tasks they schedule."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel everything still waiting and wait for it to unwind."""
        self._closed = True
        tasks = list(self._tasks)
        for handle in tasks:
            handle.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("Cancelled %d scheduled tasks on shutdown", len(tasks))
