from datetime import datetime, timezone
from typing import Optional


def now_utc() -> datetime:
    """Return timezone-aware current UTC datetime."""
    return datetime.now(timezone.utc)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to naive UTC for storage.

    Aware values are converted to UTC first; naive values are taken to be
    UTC already. Rows are stored naive so comparisons against values read
    back from SQLite never mix aware and naive datetimes.
    """
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def format_utc(dt: Optional[datetime]) -> Optional[str]:
    if not dt:
        return None
    # If the DB returned a naive datetime, assume UTC and attach tzinfo
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()
