"""Timezone-aware datetime helpers."""

import math
import time
from datetime import datetime, timezone
from typing import Annotated, Any

from pydantic import AfterValidator


def now_utc() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def unix_timestamp() -> int:
    """Current time in whole seconds since the epoch."""
    return math.floor(time.time())


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes; aware datetimes are returned unchanged."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


def to_datetime(value: Any) -> datetime | None:
    """Convert an ISO-8601 string or datetime to an aware datetime.

    Returns:
        The parsed datetime, or None if the value cannot be interpreted as one
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return ensure_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def is_valid_date(value: Any) -> bool:
    return isinstance(value, datetime)


def dates_equal(a: Any, b: Any) -> bool:
    """Compare two datetimes by instant; non-datetimes never compare equal."""
    if not (is_valid_date(a) and is_valid_date(b)):
        return False
    return ensure_utc(a) == ensure_utc(b)


def to_iso_string(value: datetime) -> str:
    """Format a datetime as ISO-8601 in UTC with a trailing Z."""
    utc = ensure_utc(value).astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")
