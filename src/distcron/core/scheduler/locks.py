"""
Distributed lock management for guarded scheduled execution.

A lock is one row keyed by an environment-scoped name holding an expiry in
epoch milliseconds. Acquisition is a single conditional write that only
succeeds when the row is missing or expired; the store's atomicity is what
guarantees that two replicas never both win.
"""

from __future__ import annotations

import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine

from distcron.core.clock import Clock, SystemClock
from distcron.core.config.models import DEFAULT_ENVIRONMENT, AppConfig, LockBackend
from distcron.core.logging import get_logger
from distcron.persistence.db import build_session_factory, get_engine
from distcron.persistence.models import Base, LockRecord

logger = get_logger("locks")

# An expiry of 0 means the lock is always expired, therefore released
RELEASED_EXPIRY = 0

_WHITESPACE = re.compile(r"\s+")

_UPSERT_BUILDERS = {
    "sqlite": sqlite_insert,
    "postgresql": postgresql_insert,
}


class UnsupportedStoreError(Exception):
    """The database has no atomic conditional upsert we know how to issue."""


def environment_lock_key(lock_key: str, environment: str | None = None) -> str:
    """Scope ``lock_key`` to a deployment environment.

    Lets dev, staging and prod share one lock table. Whitespace is removed
    from the result.
    """
    env = (environment or "").strip() or DEFAULT_ENVIRONMENT
    return _WHITESPACE.sub("", f"{lock_key}_{env}")


@dataclass(frozen=True)
class LockInfo:
    """Snapshot of a stored lock record."""

    key: str
    expiry_epoch_millis: int
    created_at: str

    def is_held(self, now_millis: int) -> bool:
        return now_millis < self.expiry_epoch_millis


class Locker(ABC):
    """Non-blocking lock with an expiry, shared between processes."""

    def __init__(self, environment: str = DEFAULT_ENVIRONMENT, clock: Clock | None = None) -> None:
        self.environment = environment
        self.clock: Clock = clock or SystemClock()

    def scoped_key(self, lock_key: str) -> str:
        return environment_lock_key(lock_key, self.environment)

    @abstractmethod
    def try_lock(self, lock_key: str, expiry_in_seconds: int) -> bool:
        """Acquire the lock for ``expiry_in_seconds``. Returns True if acquired.

        Tries exactly once and never waits. If the holder dies without
        releasing, the lock becomes acquirable again once the expiry passes.
        Store errors are logged and reported as a failed acquisition.
        """

    @abstractmethod
    def unlock(self, lock_key: str) -> None:
        """Release the lock. Never raises.

        There is no ownership check: only call this while holding the lock.
        """

    @abstractmethod
    def get_lock(self, lock_key: str) -> LockInfo | None:
        """Return the stored record for ``lock_key``, if any."""

    @abstractmethod
    def list_locks(self) -> list[LockInfo]:
        """Return every stored record ordered by key."""

    def is_locked(self, lock_key: str) -> bool:
        """Check if lock is currently held (not expired)."""
        info = self.get_lock(lock_key)
        return info is not None and info.is_held(self.clock.millis())


class SqlLocker(Locker):
    """Locker backed by the ``distributed_locks`` table.

    Acquisition is ``INSERT ... ON CONFLICT DO UPDATE ... WHERE expiry <= now``:
    the row count tells a won lock (1) from a live one held elsewhere (0).
    """

    def __init__(
        self,
        engine: Engine,
        environment: str = DEFAULT_ENVIRONMENT,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(environment, clock)
        dialect = engine.dialect.name
        if dialect not in _UPSERT_BUILDERS:
            raise UnsupportedStoreError(f"No conditional upsert for database dialect: {dialect}")

        self._engine = engine
        self._insert = _UPSERT_BUILDERS[dialect]
        self._session_factory = build_session_factory(engine)

    def create_table(self) -> None:
        """Create the lock table if it doesn't exist."""
        Base.metadata.create_all(bind=self._engine, tables=[LockRecord.__table__])

    def try_lock(self, lock_key: str, expiry_in_seconds: int) -> bool:
        key = self.scoped_key(lock_key)
        logger.info("Trying to acquire lock [%s]", key)

        try:
            now = self.clock.millis()
            # create the lock if it doesn't exist, OR overwrite it if it's expired
            stmt = self._upsert(key, now + expiry_in_seconds * 1000, expired_at=now)
            with self._session_factory() as session, session.begin():
                acquired = session.execute(stmt).rowcount > 0
        except Exception:
            logger.error("Error when trying to acquire lock [%s]", key, exc_info=True)
            return False

        if not acquired:
            logger.info("Could not acquire locked lock [%s]", key)
            return False

        logger.info("Acquired lock [%s]", key)
        return True

    def unlock(self, lock_key: str) -> None:
        key = self.scoped_key(lock_key)
        logger.info("Releasing lock [%s]", key)

        try:
            with self._session_factory() as session, session.begin():
                session.execute(self._upsert(key, RELEASED_EXPIRY))
        except Exception:
            logger.error("Failed to release lock [%s]", key, exc_info=True)
            return

        logger.info("Released lock [%s]", key)

    def get_lock(self, lock_key: str) -> LockInfo | None:
        with self._session_factory() as session:
            record = session.get(LockRecord, self.scoped_key(lock_key))
            return _to_info(record) if record is not None else None

    def list_locks(self) -> list[LockInfo]:
        with self._session_factory() as session:
            stmt = select(LockRecord).order_by(LockRecord.id)
            return [_to_info(record) for record in session.execute(stmt).scalars()]

    def _upsert(self, key: str, expiry: int, expired_at: int | None = None):
        table = LockRecord.__table__
        stmt = self._insert(table).values(
            id=key,
            expiry_epoch_millis=expiry,
            created_at=self.clock.now().isoformat(),
        )
        where = None
        if expired_at is not None:
            where = table.c.expiry_epoch_millis <= expired_at

        return stmt.on_conflict_do_update(
            index_elements=[table.c.id],
            set_={
                "expiry_epoch_millis": stmt.excluded.expiry_epoch_millis,
                "created_at": stmt.excluded.created_at,
            },
            where=where,
        )


class MemoryLocker(Locker):
    """Process-local locker for tests and single-host development."""

    def __init__(self, environment: str = DEFAULT_ENVIRONMENT, clock: Clock | None = None) -> None:
        super().__init__(environment, clock)
        self._records: dict[str, LockInfo] = {}
        self._guard = threading.Lock()

    def try_lock(self, lock_key: str, expiry_in_seconds: int) -> bool:
        key = self.scoped_key(lock_key)
        logger.info("Trying to acquire lock [%s]", key)

        with self._guard:
            now = self.clock.millis()
            current = self._records.get(key)
            if current is not None and current.is_held(now):
                logger.info("Could not acquire locked lock [%s]", key)
                return False

            self._records[key] = LockInfo(
                key=key,
                expiry_epoch_millis=now + expiry_in_seconds * 1000,
                created_at=self.clock.now().isoformat(),
            )

        logger.info("Acquired lock [%s]", key)
        return True

    def unlock(self, lock_key: str) -> None:
        key = self.scoped_key(lock_key)
        logger.info("Releasing lock [%s]", key)

        with self._guard:
            self._records[key] = LockInfo(
                key=key,
                expiry_epoch_millis=RELEASED_EXPIRY,
                created_at=self.clock.now().isoformat(),
            )

        logger.info("Released lock [%s]", key)

    def get_lock(self, lock_key: str) -> LockInfo | None:
        with self._guard:
            return self._records.get(self.scoped_key(lock_key))

    def list_locks(self) -> list[LockInfo]:
        with self._guard:
            return [self._records[key] for key in sorted(self._records)]


def _to_info(record: LockRecord) -> LockInfo:
    return LockInfo(
        key=record.id,
        expiry_epoch_millis=record.expiry_epoch_millis,
        created_at=record.created_at,
    )


def create_locker(config: AppConfig, clock: Clock | None = None) -> Locker:
    """Build the locker selected by ``config.locks.backend``."""
    if config.locks.backend is LockBackend.MEMORY:
        return MemoryLocker(config.environment, clock)

    engine = get_engine(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
    )
    return SqlLocker(engine, config.environment, clock)
