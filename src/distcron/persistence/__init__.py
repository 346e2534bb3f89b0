"""Database persistence layer."""

from .db import (
    build_session_factory,
    dispose_engines,
    get_engine,
    init_db,
)
from .models import Base, LockRecord

__all__ = [
    "build_session_factory",
    "dispose_engines",
    "get_engine",
    "init_db",
    "Base",
    "LockRecord",
]
