"""CLI command modules."""

from . import db, locks

__all__ = [
    "db",
    "locks",
]
