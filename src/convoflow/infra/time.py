"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone

# Epoch values above this are already milliseconds (year 2286 in seconds)
_MS_THRESHOLD = 9_999_999_999


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def epoch_ms() -> int:
    """Current time as integer milliseconds since epoch."""
    return int(utc_now().timestamp() * 1000)


def from_provider_timestamp(raw: object) -> datetime | None:
    """Convert a provider epoch (seconds or milliseconds) to aware UTC datetime.

    Numeric strings are accepted. Anything else returns None.
    """
    if isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        if not raw.strip().isdigit():
            return None
        raw = int(raw.strip())
    if not isinstance(raw, (int, float)) or raw <= 0:
        return None
    seconds = raw / 1000 if raw > _MS_THRESHOLD else raw
    return datetime.fromtimestamp(seconds, tz=timezone.utc)
