"""Integration tests against the real APScheduler-backed runner.

Timing is polled with a deadline: the assertions are lower bounds that hold
on a slow machine as well.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from distcron.core.config import SchedulerConfig
from distcron.core.scheduler.locks import MemoryLocker
from distcron.core.scheduler.runner import (
    PARKED,
    ApschedulerTaskRunner,
    FixedDelayTrigger,
    RunnerShutdownError,
    TimeUnit,
)
from distcron.core.scheduler.service import GuardedSchedulerFactory

from conftest import wait_until

MIN_RUNS = 25


@pytest.fixture
def runner():
    task_runner = ApschedulerTaskRunner(SchedulerConfig())
    yield task_runner
    task_runner.shutdown()


@pytest.fixture
def scheduler(runner):
    return GuardedSchedulerFactory(MemoryLocker(), runner).create_scheduler("test cron job")


def test_fixed_rate_runs_repeatedly(scheduler):
    cron_job = Mock()

    # schedule to run immediately every millisecond
    scheduler.schedule_at_fixed_rate(cron_job, 0, 1, TimeUnit.MILLISECONDS)

    assert wait_until(lambda: cron_job.call_count >= MIN_RUNS)


def test_fixed_rate_keeps_running_when_job_raises(scheduler):
    cron_job = Mock(side_effect=RuntimeError("oh noes"))

    scheduler.schedule_at_fixed_rate(cron_job, 0, 1, TimeUnit.MILLISECONDS)

    assert wait_until(lambda: cron_job.call_count >= MIN_RUNS)


def test_fixed_rate_with_lock_runs_repeatedly(scheduler):
    cron_job = Mock()

    scheduler.schedule_at_fixed_rate_with_lock(cron_job, 0, 1, TimeUnit.MILLISECONDS, 20)

    assert wait_until(lambda: cron_job.call_count >= MIN_RUNS)


def test_fixed_delay_runs_repeatedly(scheduler):
    cron_job = Mock()

    scheduler.schedule_with_fixed_delay(cron_job, 0, 1, TimeUnit.MILLISECONDS)

    assert wait_until(lambda: cron_job.call_count >= MIN_RUNS)


def test_fixed_delay_keeps_running_when_job_raises(scheduler):
    cron_job = Mock(side_effect=RuntimeError("oh noes"))

    scheduler.schedule_with_fixed_delay(cron_job, 0, 1, TimeUnit.MILLISECONDS)

    assert wait_until(lambda: cron_job.call_count >= MIN_RUNS)


def test_failing_job_does_not_halt_sibling(runner):
    factory = GuardedSchedulerFactory(MemoryLocker(), runner)
    broken = Mock(side_effect=RuntimeError("oh noes"))
    healthy = Mock()

    factory.create_scheduler("broken").schedule_at_fixed_rate(broken, 0, 1, TimeUnit.MILLISECONDS)
    factory.create_scheduler("healthy").schedule_with_fixed_delay(healthy, 0, 1, TimeUnit.MILLISECONDS)

    assert wait_until(lambda: broken.call_count >= MIN_RUNS and healthy.call_count >= MIN_RUNS)


def test_initial_delay_is_honoured(scheduler):
    cron_job = Mock()

    scheduler.schedule_at_fixed_rate(cron_job, 10, 1, TimeUnit.SECONDS)
    time.sleep(0.2)

    cron_job.assert_not_called()


def test_stop_prevents_future_runs(scheduler, runner):
    cron_job = Mock()
    scheduler.schedule_at_fixed_rate(cron_job, 0, 1, TimeUnit.MILLISECONDS)
    assert wait_until(lambda: cron_job.call_count >= 1)

    scheduler.stop()
    time.sleep(0.05)
    calls_after_stop = cron_job.call_count
    time.sleep(0.2)

    assert runner.is_shutdown
    assert cron_job.call_count == calls_after_stop


def test_scheduling_after_shutdown_is_rejected(runner):
    runner.shutdown()

    with pytest.raises(RunnerShutdownError):
        runner.schedule_at_fixed_rate(Mock(), timedelta(0), timedelta(seconds=1), "late")


def test_shutdown_is_idempotent(runner):
    runner.shutdown()
    runner.shutdown()

    assert runner.is_shutdown


def test_fixed_delay_waits_after_each_run_completes(runner):
    starts: list[float] = []

    def slow_job():
        starts.append(time.monotonic())
        time.sleep(0.05)

    runner.schedule_with_fixed_delay(slow_job, timedelta(0), timedelta(milliseconds=50), "slow")

    assert wait_until(lambda: len(starts) >= 4)
    gaps = [later - earlier for earlier, later in zip(starts, starts[1:])]
    # 50 ms of work plus 50 ms of delay between consecutive starts
    assert all(gap >= 0.095 for gap in gaps), gaps


def test_jobs_sharing_a_runner_never_overlap(runner):
    guard = threading.Lock()
    active = 0
    peak = 0
    calls = {"a": 0, "b": 0}

    def job(name):
        def run():
            nonlocal active, peak
            with guard:
                active += 1
                peak = max(peak, active)
            time.sleep(0.005)
            with guard:
                active -= 1
                calls[name] += 1

        return run

    runner.schedule_at_fixed_rate(job("a"), timedelta(0), timedelta(milliseconds=1), "a")
    runner.schedule_at_fixed_rate(job("b"), timedelta(0), timedelta(milliseconds=1), "b")

    assert wait_until(lambda: calls["a"] >= 5 and calls["b"] >= 5)
    assert peak == 1


def test_repeated_stop_leaves_timer_thread_intact(monkeypatch):
    errors = []
    monkeypatch.setattr(threading, "excepthook", lambda args: errors.append(args.exc_value))

    for _ in range(30):
        task_runner = ApschedulerTaskRunner(SchedulerConfig())
        fast = Mock()
        delayed = Mock()
        task_runner.schedule_at_fixed_rate(fast, timedelta(0), timedelta(milliseconds=1), "fast")
        task_runner.schedule_with_fixed_delay(delayed, timedelta(0), timedelta(milliseconds=1), "delayed")
        assert wait_until(lambda: fast.called and delayed.called)
        task_runner.shutdown()

    time.sleep(0.1)

    assert errors == []


def test_fixed_delay_trigger_parks_until_resumed():
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    trigger = FixedDelayTrigger(start, timedelta(seconds=5))

    assert trigger.get_next_fire_time(None, start) == start
    assert trigger.get_next_fire_time(start, start) == PARKED

    trigger.resume_at = start + timedelta(seconds=7)
    assert trigger.get_next_fire_time(start, start) == start + timedelta(seconds=7)
    assert trigger.get_next_fire_time(trigger.resume_at, trigger.resume_at) == PARKED


@pytest.mark.parametrize(
    ("unit", "amount", "expected"),
    [
        (TimeUnit.MILLISECONDS, 1, timedelta(milliseconds=1)),
        (TimeUnit.SECONDS, 1.5, timedelta(seconds=1.5)),
        (TimeUnit.MINUTES, 2, timedelta(minutes=2)),
        (TimeUnit.HOURS, 1, timedelta(hours=1)),
        (TimeUnit.DAYS, 7, timedelta(days=7)),
    ],
)
def test_time_unit_conversion(unit, amount, expected):
    assert unit.to_timedelta(amount) == expected
