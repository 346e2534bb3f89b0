"""
Recurring timer used to fire guarded jobs.

``TaskRunner`` is the seam between the lock-guarded scheduler and whatever
actually fires callbacks. ``ApschedulerTaskRunner`` drives it with an
APScheduler ``BackgroundScheduler`` whose single worker thread runs every
firing in turn.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Protocol
from uuid import uuid4

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.interval import IntervalTrigger

from distcron.core.config.models import SchedulerConfig
from distcron.core.logging import get_logger

logger = get_logger("runner")

# Next run time of a fixed-delay job between its runs
PARKED = datetime(9999, 1, 1, tzinfo=timezone.utc)


class TimeUnit(str, Enum):
    """Units for initial delays, periods and delays."""

    MILLISECONDS = "milliseconds"
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"

    def to_timedelta(self, amount: float) -> timedelta:
        return timedelta(**{self.value: amount})


class RunnerShutdownError(RuntimeError):
    """Raised when scheduling on a runner that has been shut down."""


class TaskRunner(Protocol):
    """Fires callbacks on a recurring schedule."""

    @property
    def is_shutdown(self) -> bool: ...

    def schedule_at_fixed_rate(
        self,
        func: Callable[[], None],
        initial_delay: timedelta,
        period: timedelta,
        name: str,
    ) -> None:
        """Fire ``func`` every ``period`` regardless of how long each run takes."""
        ...

    def schedule_with_fixed_delay(
        self,
        func: Callable[[], None],
        initial_delay: timedelta,
        delay: timedelta,
        name: str,
    ) -> None:
        """Fire ``func`` again ``delay`` after each run completes."""
        ...

    def shutdown(self) -> None:
        """Stop future firings without waiting for a running one."""
        ...


class ApschedulerTaskRunner:
    """TaskRunner backed by an APScheduler ``BackgroundScheduler``.

    Fixed rate uses an ``IntervalTrigger``; a firing that is still running
    when the next one is due makes APScheduler skip the overlap
    (``max_instances=1``). Fixed delay keeps one job per schedule on an
    ``FixedDelayTrigger`` and moves its next run time when the job
    executed event for the previous firing arrives.
    """

    def __init__(self, config: SchedulerConfig | None = None) -> None:
        config = config or SchedulerConfig()
        self._scheduler = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers=config.max_workers)},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": None,
            },
            timezone=config.timezone,
        )
        self._shutdown = False
        self._state_lock = threading.Lock()
        self._fixed_delays: dict[str, FixedDelayTrigger] = {}
        self._scheduler.add_listener(self._on_run_finished, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def schedule_at_fixed_rate(
        self,
        func: Callable[[], None],
        initial_delay: timedelta,
        period: timedelta,
        name: str,
    ) -> None:
        self._ensure_started()
        self._scheduler.add_job(
            func,
            IntervalTrigger(
                seconds=period.total_seconds(),
                start_date=_utcnow() + initial_delay,
                timezone=timezone.utc,
            ),
            id=f"{name}:{uuid4().hex[:8]}",
            name=name,
        )
        logger.debug("Added fixed-rate job %s every %s", name, period)

    def schedule_with_fixed_delay(
        self,
        func: Callable[[], None],
        initial_delay: timedelta,
        delay: timedelta,
        name: str,
    ) -> None:
        self._ensure_started()
        job_id = f"{name}:{uuid4().hex[:8]}"
        trigger = FixedDelayTrigger(_utcnow() + initial_delay, delay)
        self._fixed_delays[job_id] = trigger

        self._scheduler.add_job(
            func,
            trigger,
            id=job_id,
            name=name,
        )
        logger.debug("Added fixed-delay job %s with %s between runs", name, delay)

    def shutdown(self) -> None:
        with self._state_lock:
            if self._shutdown:
                return
            self._shutdown = True
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)

    def _ensure_started(self) -> None:
        with self._state_lock:
            if self._shutdown:
                raise RunnerShutdownError("Task runner has been shut down")
            if not self._scheduler.running:
                self._scheduler.start()

    def _on_run_finished(self, event: JobExecutionEvent) -> None:
        trigger = self._fixed_delays.get(event.job_id)
        if trigger is None or self._shutdown:
            return

        trigger.resume_at = _utcnow() + trigger.delay
        try:
            self._scheduler.modify_job(event.job_id, next_run_time=trigger.resume_at)
        except JobLookupError:
            # Runner shut down while this run was in flight
            logger.debug("Fixed-delay job %s gone before rescheduling", event.job_id)


class FixedDelayTrigger(BaseTrigger):
    """Fires at ``start``, then only at the time set once a run has finished.

    The job stays registered between runs, so the scheduler never has to
    remove a finished job while it is stopping. Until the runner sets
    ``resume_at`` the job is parked.
    """

    def __init__(self, start: datetime, delay: timedelta) -> None:
        self.start = start
        self.delay = delay
        self.resume_at: datetime | None = None

    def get_next_fire_time(
        self,
        previous_fire_time: datetime | None,
        now: datetime,
    ) -> datetime:
        if previous_fire_time is None:
            return self.start
        if self.resume_at is not None and self.resume_at > previous_fire_time:
            return self.resume_at
        return PARKED

    def __str__(self) -> str:
        return f"fixed delay of {self.delay}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
