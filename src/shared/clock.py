"""UTC clock helpers.

SQLite hands datetimes back without a timezone; everything this system
writes is UTC, so naive values read from storage are UTC.
"""

from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)
