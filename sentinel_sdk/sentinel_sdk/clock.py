"""
Time helpers for timestamps and duration measurement.

Wall-clock timestamps (utc_now, iso_timestamp) are for the wire payload.
Durations use the monotonic clock so they stay correct across system
clock adjustments.
"""

import time
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def iso_timestamp(value: datetime) -> str:
    """
    Format a datetime as ISO 8601 with millisecond precision.

    UTC values get a 'Z' suffix; naive values are assumed to be UTC.

    Examples:
        >>> iso_timestamp(datetime(2024, 1, 1, tzinfo=timezone.utc))
        '2024-01-01T00:00:00.000Z'
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def monotonic_ms() -> float:
    """High-resolution monotonic time in milliseconds."""
    return time.perf_counter() * 1000.0


def elapsed_ms(start_ms: float) -> float:
    """Milliseconds since start_ms (from monotonic_ms), rounded to 2 decimals."""
    return round(max(monotonic_ms() - start_ms, 0.0), 2)


def format_duration(ms: float) -> str:
    """
    Format a duration in milliseconds for log output.

    Examples:
        >>> format_duration(12.5)
        '12.50ms'
        >>> format_duration(1500)
        '1.50s'
        >>> format_duration(125000)
        '2m 5.00s'
    """
    if ms < 1000:
        return f"{ms:.2f}ms"

    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.2f}s"

    minutes = int(seconds // 60)
    return f"{minutes}m {seconds % 60:.2f}s"
