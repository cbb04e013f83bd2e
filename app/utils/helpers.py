"""
Helper utilities for export ingestion.

Time conversion and path handling shared across the pipeline.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def seconds_to_datetime(seconds: float) -> datetime:
    """Convert epoch seconds to an aware UTC datetime."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def format_iso_millis(value: datetime) -> str:
    """
    Format datetime as ISO-8601 UTC with millisecond precision.

    Args:
        value: Aware or naive (assumed UTC) datetime

    Returns:
        String such as ``2017-06-01T10:00:00.000Z``
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def epoch_millis(value: datetime) -> int:
    """
    Return epoch milliseconds for ``value``.

    Sub-millisecond precision is truncated the same way as in
    ``format_iso_millis``, so both always name the same instant.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - EPOCH
    return (delta.days * 86400 + delta.seconds) * 1000 + delta.microseconds // 1000


def monthly_index_name(prefix: str, when: Optional[datetime] = None) -> str:
    """
    Build the monthly index bucket name.

    Args:
        prefix: Index prefix, e.g. ``qbserve-``
        when: Date to bucket by (defaults to now, UTC)

    Returns:
        ``<prefix><YYYY>.<MM>``
    """
    when = (when or utc_now()).astimezone(timezone.utc)
    return f"{prefix}{when.year:04d}.{when.month:02d}"


def normalise_path(path: Path) -> Path:
    """Return a resolved version of ``path`` without forcing existence."""
    try:
        return path.expanduser().resolve()
    except FileNotFoundError:
        return path.expanduser().absolute()
