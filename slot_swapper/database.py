# database.py
from datetime import datetime, timezone

from databases import Database
from sqlalchemy import create_engine, MetaData

from slot_swapper.config import DATABASE_URL

# Create the core database objects
database = Database(DATABASE_URL)
metadata = MetaData()
engine = create_engine(DATABASE_URL)

# SQLSTATE codes PostgreSQL uses for serialization failures, deadlocks and unique violations
_WRITE_CONFLICT_SQLSTATES = {"40001", "40P01", "23505"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC; aware ones are converted to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_write_conflict(exc: BaseException) -> bool:
    """
    True when the store refused a write because a concurrent transaction got
    to the same rows first: a lock timeout, a serialization failure, or one of
    the pending-request unique indexes firing.
    """
    if getattr(exc, "sqlstate", None) in _WRITE_CONFLICT_SQLSTATES:
        return True
    message = str(exc).lower()
    return "database is locked" in message or "unique constraint failed" in message
