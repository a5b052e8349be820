"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import itertools
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import httpx
import pytest

from courier.config import Settings
from courier.models import Event, Target, utc_now
from courier.storage import MemoryStore


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or utc_now()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class ManualScheduler:
    """TaskScheduler that runs tasks only when told to.

    Running a task first moves the clock to the task's due time, so
    delayed retries become due exactly when they run.
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.tasks: list[tuple[datetime, int, Any, tuple[Any, ...]]] = []
        self._seq = itertools.count()
        self.closed = False

    def run_after(self, delay_seconds: float, task: Any, *args: Any) -> None:
        due = self.clock() + timedelta(seconds=delay_seconds)
        self.tasks.append((due, next(self._seq), task, args))

    @property
    def delays(self) -> list[float]:
        return [(due - self.clock()).total_seconds() for due, _, _, _ in self.tasks]

    async def run_next(self) -> Any:
        self.tasks.sort(key=lambda t: (t[0], t[1]))
        due, _, task, args = self.tasks.pop(0)
        if due > self.clock.now:
            self.clock.now = due
        return await task(*args)

    async def run_all(self, max_steps: int = 200) -> int:
        steps = 0
        while self.tasks:
            if steps >= max_steps:
                raise AssertionError("Scheduler did not drain")
            await self.run_next()
            steps += 1
        return steps

    async def close(self) -> None:
        self.closed = True
        self.tasks.clear()


class RecordingEndpoint:
    """httpx.MockTransport handler returning scripted responses."""

    def __init__(self, *responses: httpx.Response | Exception | int) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self._responses)) - 1
        response = self._responses[index] if self._responses else 200
        if isinstance(response, Exception):
            raise response
        if isinstance(response, int):
            return httpx.Response(response, text="ok" if response == 200 else "error")
        return response

    @property
    def calls(self) -> int:
        return len(self.requests)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def test_settings() -> Settings:
    """Settings with jitter disabled so retry delays are exact."""
    return Settings(env="test", retry_jitter_ms=0)


@pytest.fixture
def make_client() -> Callable[[RecordingEndpoint], httpx.AsyncClient]:
    def _make(endpoint: RecordingEndpoint) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(endpoint))

    return _make


def make_target(**overrides: Any) -> Target:
    fields: dict[str, Any] = {
        "account_id": "acc_1",
        "url": "https://hooks.example.com/courier",
        "signing_secret": "whsec_test_secret",
        "subscribed_events": {"message.inbound.received"},
        "max_attempts": 3,
        "timeout_ms": 5000,
    }
    fields.update(overrides)
    return Target(**fields)


def make_event(**overrides: Any) -> Event:
    fields: dict[str, Any] = {
        "account_id": "acc_1",
        "event_type": "message.inbound.received",
        "source": "meta_webhook",
        "payload": {"from": "+15550100", "text": "hello"},
    }
    fields.update(overrides)
    return Event.create(**fields)
