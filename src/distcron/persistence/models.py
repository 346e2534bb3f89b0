"""
SQLAlchemy ORM models for distcron.

Defines the lock table shared by every replica:
- LockRecord: one row per environment-scoped lock key
"""

from __future__ import annotations

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# =============================================================================
# Base Class
# =============================================================================


class Base(DeclarativeBase):
    """Base class for all ORM models."""


# =============================================================================
# Lock Model
# =============================================================================


class LockRecord(Base):
    """Distributed lock for preventing concurrent runs across replicas.

    A lock is free when ``expiry_epoch_millis`` is in the past. Rows are
    never deleted: releasing a lock writes an expiry of 0.
    """

    __tablename__ = "distributed_locks"

    # Environment-scoped lock key, e.g. "LOCK_nightly-report_prod"
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    expiry_epoch_millis: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    # ISO-8601 time of the last write; informational only
    created_at: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<LockRecord(id='{self.id}', expiry_epoch_millis={self.expiry_epoch_millis})>"
