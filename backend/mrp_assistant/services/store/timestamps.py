"""
Timestamp decoding for store documents.

Documents can carry timestamps in several shapes depending on how they were
written: native datetimes, objects exposing ``to_datetime()``, serialized
``{"seconds": .., "nanoseconds": ..}`` maps (also with underscore-prefixed
keys), epoch numbers in seconds or milliseconds, or ISO strings. Every read
path funnels through ``to_iso`` / ``to_datetime`` so callers never see the
raw encodings.
"""
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Optional

# Epoch values above this are treated as milliseconds (year ~5138 in seconds).
_EPOCH_MILLIS_THRESHOLD = 100_000_000_000


def _seconds_map(value: Dict[str, Any]) -> Optional[datetime]:
    seconds = value.get("seconds", value.get("_seconds"))
    if not isinstance(seconds, (int, float)) or isinstance(seconds, bool):
        return None
    nanos = value.get("nanoseconds", value.get("_nanoseconds")) or 0
    return datetime.fromtimestamp(seconds + nanos / 1e9, tz=timezone.utc)


def to_datetime(value: Any) -> Optional[datetime]:
    """
    Decode any supported timestamp encoding into an aware UTC datetime.

    Returns None for None, empty strings and values that are not timestamps.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if hasattr(value, "to_datetime") and callable(value.to_datetime):
        return to_datetime(value.to_datetime())
    if isinstance(value, dict):
        return _seconds_map(value)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if abs(value) >= _EPOCH_MILLIS_THRESHOLD else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def to_iso(value: Any) -> Optional[str]:
    """
    Decode a stored timestamp into an ISO 8601 string.

    Strings are passed through untouched; they are already what callers
    expect and re-formatting them would change stored precision.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    decoded = to_datetime(value)
    if decoded is None:
        return str(value)
    return decoded.isoformat()
