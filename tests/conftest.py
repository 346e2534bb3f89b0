"""Pytest configuration and fixtures for distcron tests"""
from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from distcron.core.clock import ManualClock
from distcron.core.scheduler.locks import MemoryLocker, SqlLocker
from distcron.core.scheduler.runner import RunnerShutdownError
from distcron.persistence.db import dispose_engines

# 2023-11-14T22:13:20Z
START_MILLIS = 1_700_000_000_000


@dataclass
class ScheduledCall:
    func: Callable[[], None]
    initial_delay: timedelta
    interval: timedelta
    name: str
    fixed_rate: bool


class FakeTaskRunner:
    """Deterministic TaskRunner: records schedules and fires them on demand."""

    def __init__(self) -> None:
        self.scheduled: list[ScheduledCall] = []
        self.shutdown_calls = 0

    @property
    def is_shutdown(self) -> bool:
        return self.shutdown_calls > 0

    def schedule_at_fixed_rate(self, func, initial_delay, period, name):
        if self.is_shutdown:
            raise RunnerShutdownError("Task runner has been shut down")
        self.scheduled.append(ScheduledCall(func, initial_delay, period, name, fixed_rate=True))

    def schedule_with_fixed_delay(self, func, initial_delay, delay, name):
        if self.is_shutdown:
            raise RunnerShutdownError("Task runner has been shut down")
        self.scheduled.append(ScheduledCall(func, initial_delay, delay, name, fixed_rate=False))

    def shutdown(self) -> None:
        self.shutdown_calls += 1

    def fire_all(self, times: int = 1) -> None:
        for _ in range(times):
            for call in self.scheduled:
                call.func()


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def clock():
    """Manual clock starting at a fixed instant"""
    return ManualClock(START_MILLIS)


@pytest.fixture
def sqlite_engine():
    """In-memory SQLite engine shared by every session of one test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def sql_locker(sqlite_engine, clock):
    locker = SqlLocker(sqlite_engine, environment="dev", clock=clock)
    locker.create_table()
    return locker


@pytest.fixture
def memory_locker(clock):
    return MemoryLocker(environment="dev", clock=clock)


@pytest.fixture(params=["sql", "memory"])
def locker(request):
    """Every locker implementation, driven by the manual clock"""
    return request.getfixturevalue(f"{request.param}_locker")


@pytest.fixture
def fake_runner():
    return FakeTaskRunner()


@pytest.fixture
def reset_engines():
    """Drop the process-wide engine cache around a test"""
    dispose_engines()
    yield
    dispose_engines()
