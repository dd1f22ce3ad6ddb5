"""Timestamp parsing and window helpers shared by the tailer, correlator and store."""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 instant into an aware UTC datetime.

    Accepts a trailing ``Z`` or explicit offsets; naive values are taken as UTC.
    Anything unparseable yields ``None``.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        token = value.strip()
        if not token:
            return None
        try:
            dt = datetime.fromisoformat(token.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def epoch_to_iso(epoch_seconds: float) -> str:
    return to_iso(datetime.fromtimestamp(float(epoch_seconds), timezone.utc))


def offset_seconds(later: Any, earlier: Any) -> float | None:
    """Signed ``later - earlier`` in seconds, or None when either side is unparseable."""
    end = parse_timestamp(later)
    start = parse_timestamp(earlier)
    if end is None or start is None:
        return None
    return (end - start).total_seconds()


def within_window(time1: Any, time2: Any, window_seconds: float) -> bool:
    diff = offset_seconds(time1, time2)
    if diff is None:
        return False
    return abs(diff) <= window_seconds


def duration_ms(start: Any, end: Any) -> int | None:
    """Milliseconds from ``start`` to ``end``; negative or missing pairs give None."""
    diff = offset_seconds(end, start)
    if diff is None or diff < 0:
        return None
    return int(round(diff * 1000))


def is_recent(epoch_seconds: float, window_seconds: float, now: float | None = None) -> bool:
    current = time.time() if now is None else now
    return epoch_seconds >= current - window_seconds
