"""Lock-guarded scheduling - distributed locks and the APScheduler runner."""

from .locks import (
    LockInfo,
    Locker,
    MemoryLocker,
    SqlLocker,
    UnsupportedStoreError,
    create_locker,
    environment_lock_key,
)
from .runner import ApschedulerTaskRunner, RunnerShutdownError, TaskRunner, TimeUnit
from .service import (
    DEFAULT_CRONJOB_EXPIRY,
    GuardedScheduler,
    GuardedSchedulerFactory,
    ReleasePolicy,
    ScheduledJob,
)

__all__ = [
    "LockInfo",
    "Locker",
    "MemoryLocker",
    "SqlLocker",
    "UnsupportedStoreError",
    "create_locker",
    "environment_lock_key",
    "ApschedulerTaskRunner",
    "RunnerShutdownError",
    "TaskRunner",
    "TimeUnit",
    "DEFAULT_CRONJOB_EXPIRY",
    "GuardedScheduler",
    "GuardedSchedulerFactory",
    "ReleasePolicy",
    "ScheduledJob",
]
