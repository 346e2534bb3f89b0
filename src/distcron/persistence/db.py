"""
Database connection and session management.

Provides synchronous database access with connection pooling and the session
factory used by the lock store.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

DEFAULT_DATABASE_URL = "sqlite:///data/distcron.db"


# =============================================================================
# Global Engine References
# =============================================================================

_sync_engine: Engine | None = None


# =============================================================================
# SQLite Configuration
# =============================================================================


def _configure_sqlite(engine: Engine) -> None:
    """Configure SQLite for concurrent lock writers.

    Enables:
    - WAL mode so readers do not block the writer
    - A busy timeout so contending writers queue instead of failing fast
    """
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create a session factory bound to ``engine``."""
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


# =============================================================================
# Engine Creation
# =============================================================================


def get_engine(
    url: str = DEFAULT_DATABASE_URL,
    echo: bool = False,
    pool_size: int = 5,
) -> Engine:
    """Get or create the database engine.

    Args:
        url: SQLAlchemy database URL
        echo: Whether to log SQL statements
        pool_size: Connection pool size (ignored for SQLite)

    Returns:
        SQLAlchemy Engine instance
    """
    global _sync_engine

    if _sync_engine is not None:
        return _sync_engine

    # Ensure data directory exists for SQLite
    if url.startswith("sqlite:///") and url != "sqlite:///:memory:":
        db_path = url.replace("sqlite:///", "")
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    if url.startswith("sqlite"):
        _sync_engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )
        _configure_sqlite(_sync_engine)
    else:
        _sync_engine = create_engine(
            url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=10,
            pool_pre_ping=True,
        )

    return _sync_engine


# =============================================================================
# Database Initialization
# =============================================================================


def init_db(url: str = DEFAULT_DATABASE_URL, echo: bool = False) -> None:
    """Create the lock table if it doesn't exist.

    Args:
        url: Database URL
        echo: Whether to log SQL
    """
    engine = get_engine(url, echo=echo)
    Base.metadata.create_all(bind=engine)


def drop_db(url: str = DEFAULT_DATABASE_URL) -> None:
    """Drop all database tables.

    WARNING: This releases every lock and forgets its history.

    Args:
        url: Database URL
    """
    engine = get_engine(url)
    Base.metadata.drop_all(bind=engine)


# =============================================================================
# Cleanup
# =============================================================================


def dispose_engines() -> None:
    """Dispose of the database engine.

    Should be called on application shutdown.
    """
    global _sync_engine

    if _sync_engine is not None:
        _sync_engine.dispose()
        _sync_engine = None
