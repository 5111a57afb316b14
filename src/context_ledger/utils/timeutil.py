"""Timestamp helpers.

All timestamps persisted by the ledger are UTC ISO-8601 strings with
millisecond precision and a ``Z`` suffix, so lexical order equals time order.
"""

import math
from datetime import UTC, datetime
from typing import Any

from context_ledger.constants import EPOCH_MILLIS_THRESHOLD


def format_iso(value: datetime) -> str:
    """Format a datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    # strftime("%Y") does not zero-pad years below 1000
    millis = value.microsecond // 1000
    return f"{value.year:04d}" + value.strftime("-%m-%dT%H:%M:%S.") + f"{millis:03d}Z"


def utc_now_iso() -> str:
    return format_iso(datetime.now(UTC))


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO-8601 string into an aware UTC datetime.

    Naive values are interpreted as UTC. Returns None for unparseable input.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    # SQLite datetime('now') uses a space separator
    if len(text) > 10 and text[10] == " ":
        text = f"{text[:10]}T{text[11:]}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def epoch_ms(value: str | None) -> float | None:
    """Milliseconds since the epoch for an ISO string, or None."""
    parsed = parse_iso(value)
    if parsed is None:
        return None
    return parsed.timestamp() * 1000


def _from_epoch(number: float) -> datetime | None:
    """Datetime for epoch seconds or milliseconds; None before 1970 or unrepresentable."""
    if not math.isfinite(number) or number < 0:
        return None
    seconds = number / 1000 if number > EPOCH_MILLIS_THRESHOLD else number
    try:
        return datetime.fromtimestamp(seconds, UTC)
    except (OverflowError, OSError, ValueError):
        return None


def normalize_timestamp(value: Any) -> str | None:
    """Normalize a raw log timestamp into the canonical ISO form.

    Numbers above 1e12 are epoch milliseconds, smaller numbers are epoch
    seconds. Numeric strings are treated the same way; any other string is
    parsed as an ISO date. Returns None when nothing usable is found.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        try:
            number = float(value)
        except OverflowError:
            return None
        parsed = _from_epoch(number)
        return format_iso(parsed) if parsed else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = _from_epoch(float(text))
        except ValueError:
            parsed = parse_iso(text)
        return format_iso(parsed) if parsed else None
    return None


def minutes_between(start: str | None, end: str | None) -> float:
    """Non-negative minutes between two ISO timestamps (0 when unparseable)."""
    start_ms = epoch_ms(start)
    end_ms = epoch_ms(end)
    if start_ms is None or end_ms is None:
        return 0.0
    return max(0.0, end_ms - start_ms) / 60000
