"""Timezone helpers. All timestamps in quotetrack are UTC-aware."""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Normalize a datetime to aware UTC.

    SQLite drops tzinfo on round-trip, so naive values coming back from the
    database are interpreted as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
