from __future__ import annotations

import time
from datetime import datetime, timezone

# Last millisecond of 9999-12-31 UTC, the upper bound of datetime.
MAX_TIMESTAMP_MS = 253_402_300_799_999


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def is_valid_millis(timestamp_ms: int) -> bool:
    """Return True when epoch milliseconds map onto a datetime."""

    return 0 <= timestamp_ms <= MAX_TIMESTAMP_MS


def now_millis() -> int:
    """Return the current wall-clock time in epoch milliseconds."""

    return int(time.time() * 1000)


def millis_to_datetime(timestamp_ms: int) -> datetime:
    """Convert epoch milliseconds into an aware UTC datetime."""

    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


def datetime_to_millis(value: datetime) -> int:
    # SQLite drops tzinfo on read; stored values are always UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)
