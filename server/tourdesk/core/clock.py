"""UTC time helpers.

Every timestamp column stores naive UTC, so values read back from SQLite and
Postgres compare cleanly against these helpers.
"""

from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utctoday() -> date:
    return utcnow().date()


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Normalise an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
