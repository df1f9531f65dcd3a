from __future__ import annotations

"""Time-related helper functions."""

from datetime import datetime, timezone
import time


def now_ts() -> float:
    """Return the current UNIX timestamp."""
    return time.time()


def format_ts(ts: float, fmt: str = "%Y-%m-%d %H:%M:%S") -> str:
    """Return formatted string for the given timestamp."""
    return datetime.fromtimestamp(ts).strftime(fmt)


def iso_utc(ts: float) -> str:
    """Return ``ts`` as an ISO-8601 UTC string with a ``Z`` suffix."""
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_ts(value) -> float | None:
    """Safely convert a stored field to a float timestamp."""
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
