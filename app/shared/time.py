from datetime import datetime, timezone


def now_utc() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def utc_naive() -> datetime:
    """Current UTC time without tzinfo, matching the naive DateTime columns."""
    return now_utc().replace(tzinfo=None)
