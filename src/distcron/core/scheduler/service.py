"""
Lock-guarded scheduling of periodic jobs.

``GuardedScheduler`` wraps a job so that on every firing it first takes the
job's distributed lock, runs only if it won, and catches, logs and swallows
anything the job raises. An exception escaping into the shared timer would
stop every job on it, not just the failing one.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from distcron.core.config.models import AppConfig
from distcron.core.logging import get_contextual_logger
from distcron.core.scheduler.locks import Locker, create_locker
from distcron.core.scheduler.runner import ApschedulerTaskRunner, TaskRunner, TimeUnit

DEFAULT_CRONJOB_EXPIRY = 600

LOCK_KEY_PREFIX = "LOCK_"


class ReleasePolicy(str, Enum):
    """When a guarded job gives its lock back."""

    # Fixed rate with a caller-chosen expiry
    AFTER_EXPIRY = "after_expiry"
    # Released as soon as the run finishes; default expiry is only a safety net
    AFTER_COMMAND = "after_command"


@dataclass(frozen=True)
class ScheduledJob:
    """One schedule registered through a GuardedScheduler."""

    name: str
    lock_key: str
    command: Callable[[], Any]
    policy: ReleasePolicy
    fixed_rate: bool
    initial_delay: float
    period: float
    unit: TimeUnit
    expiry_in_seconds: int
    # Only consulted for AFTER_EXPIRY jobs
    release_after_run: bool = True

    @property
    def releases_after_run(self) -> bool:
        if self.policy is ReleasePolicy.AFTER_COMMAND:
            return True
        return self.release_after_run


class GuardedScheduler:
    """Runs one named cron job on a shared TaskRunner under a distributed lock."""

    def __init__(
        self,
        locker: Locker,
        runner: TaskRunner,
        description: str,
        default_expiry_seconds: int = DEFAULT_CRONJOB_EXPIRY,
    ) -> None:
        self._locker = locker
        self._runner = runner
        self.description = description
        self.lock_key = LOCK_KEY_PREFIX + description
        self.default_expiry_seconds = default_expiry_seconds
        self.jobs: list[ScheduledJob] = []
        self._logger = get_contextual_logger(
            "scheduler",
            job=description,
            lock_key=self.lock_key,
            environment=locker.environment,
        )

    def schedule_at_fixed_rate_with_lock(
        self,
        command: Callable[[], Any],
        initial_delay: float,
        period: float,
        unit: TimeUnit,
        expiry_in_seconds: int,
        release_after_run: bool = True,
    ) -> ScheduledJob:
        """Run ``command`` every ``period`` holding the lock for ``expiry_in_seconds``.

        The lock is still released once the run completes, the expiry only
        covering a process that dies mid-run. Pass ``release_after_run=False``
        to keep the lock until it expires.
        """
        _require_positive("period", period)
        _require_positive("expiry_in_seconds", expiry_in_seconds)

        job = self._register(
            command,
            policy=ReleasePolicy.AFTER_EXPIRY,
            fixed_rate=True,
            initial_delay=initial_delay,
            period=period,
            unit=unit,
            expiry_in_seconds=expiry_in_seconds,
            release_after_run=release_after_run,
        )

        self._logger.info(
            "Scheduled cron job '%s' with a start delay of %s %s, a fixed rate of %s %s "
            "and expiry in %s seconds",
            self.description,
            initial_delay,
            unit.value,
            period,
            unit.value,
            expiry_in_seconds,
        )
        return job

    def schedule_at_fixed_rate(
        self,
        command: Callable[[], Any],
        initial_delay: float,
        period: float,
        unit: TimeUnit,
    ) -> ScheduledJob:
        """Run ``command`` every ``period``, releasing the lock after each run."""
        _require_positive("period", period)

        job = self._register(
            command,
            policy=ReleasePolicy.AFTER_COMMAND,
            fixed_rate=True,
            initial_delay=initial_delay,
            period=period,
            unit=unit,
            expiry_in_seconds=self.default_expiry_seconds,
        )

        self._logger.info(
            "Scheduled cron job '%s' with a start delay of %s %s and a fixed rate of %s %s",
            self.description,
            initial_delay,
            unit.value,
            period,
            unit.value,
        )
        return job

    def schedule_with_fixed_delay(
        self,
        command: Callable[[], Any],
        initial_delay: float,
        delay: float,
        unit: TimeUnit,
    ) -> ScheduledJob:
        """Run ``command`` again ``delay`` after each run completes."""
        _require_positive("delay", delay)

        job = self._register(
            command,
            policy=ReleasePolicy.AFTER_COMMAND,
            fixed_rate=False,
            initial_delay=initial_delay,
            period=delay,
            unit=unit,
            expiry_in_seconds=self.default_expiry_seconds,
        )

        self._logger.info(
            "Scheduled cron job '%s' with a start delay of %s %s and a delay before next run of %s %s",
            self.description,
            initial_delay,
            unit.value,
            delay,
            unit.value,
        )
        return job

    def stop(self) -> None:
        """Shut down the runner. Running firings are left to finish."""
        self._runner.shutdown()

        self._logger.info("Shut down schedule of cron job '%s'", self.description)

    def _register(self, command: Callable[[], Any], **params: Any) -> ScheduledJob:
        job = ScheduledJob(
            name=self.description,
            lock_key=self.lock_key,
            command=command,
            **params,
        )
        if job.initial_delay < 0:
            raise ValueError(f"initial_delay must not be negative, got {job.initial_delay}")

        firing = self._guard(job)
        initial_delay = job.unit.to_timedelta(job.initial_delay)
        interval = job.unit.to_timedelta(job.period)

        if job.fixed_rate:
            self._runner.schedule_at_fixed_rate(firing, initial_delay, interval, self.description)
        else:
            self._runner.schedule_with_fixed_delay(firing, initial_delay, interval, self.description)

        self.jobs.append(job)
        return job

    def _guard(self, job: ScheduledJob) -> Callable[[], None]:
        """Wrap ``job.command`` in acquire, run and release.

        Guarantees only one instance of the job runs at a given time across
        replicas; any exception the command raises is caught, logged and
        swallowed.
        """
        def run() -> None:
            self._logger.info("Started run of cron job '%s'", job.name)

            try:
                acquired = self._locker.try_lock(job.lock_key, job.expiry_in_seconds)
            except Exception:
                self._logger.exception("Lock check for cron job '%s' failed", job.name)
                acquired = False

            if not acquired:
                self._logger.info("Cron job '%s' already running, cannot acquire lock", job.name)
                return

            try:
                _invoke(job.command)
                self._logger.info("Finished run of cron job '%s'", job.name)
            except Exception as exc:
                self._logger.error(
                    "Cron job '%s' run failed with an unhandled exception: %s",
                    job.name,
                    exc,
                    exc_info=True,
                )
            finally:
                if job.releases_after_run:
                    self._release(job)

        return run

    def _release(self, job: ScheduledJob) -> None:
        try:
            self._locker.unlock(job.lock_key)
        except Exception:
            self._logger.exception("Releasing lock for cron job '%s' failed", job.name)


class GuardedSchedulerFactory:
    """Creates GuardedSchedulers that share one locker and one runner."""

    def __init__(
        self,
        locker: Locker,
        runner: TaskRunner | None = None,
        default_expiry_seconds: int = DEFAULT_CRONJOB_EXPIRY,
    ) -> None:
        self.locker = locker
        self.runner: TaskRunner = runner if runner is not None else ApschedulerTaskRunner()
        self.default_expiry_seconds = default_expiry_seconds

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        runner: TaskRunner | None = None,
    ) -> "GuardedSchedulerFactory":
        """Build the locker and runner described by ``config``."""
        return cls(
            create_locker(config),
            runner if runner is not None else ApschedulerTaskRunner(config.scheduler),
            default_expiry_seconds=config.locks.default_ttl_seconds,
        )

    def create_scheduler(self, description: str) -> GuardedScheduler:
        return GuardedScheduler(
            self.locker,
            self.runner,
            description,
            default_expiry_seconds=self.default_expiry_seconds,
        )


def _invoke(command: Callable[[], Any]) -> None:
    result = command()
    if asyncio.iscoroutine(result):
        asyncio.run(result)


def _require_positive(name: str, value: float) -> None:
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
