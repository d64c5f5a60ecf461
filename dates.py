"""Date sanitizing helpers.

Upstream timestamp fields are sometimes garbage (impossible months, random
bytes). Parsing never raises: a bad value becomes ``None`` and the record is
picked up by the repair loop instead.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from dateutil.parser import isoparse

DISPLAY_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_date(raw: Any) -> datetime | None:
    """Parse an ISO-8601 string into an aware UTC datetime, or None."""
    if not isinstance(raw, str) or not raw.strip():
        return None

    try:
        parsed = isoparse(raw.strip())
        # Offset-less timestamps from the API are UTC.
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    except (ValueError, OverflowError):
        return None


def normalize_date(value: Any) -> datetime | None:
    """Re-check an in-memory date value before it is persisted."""
    return value if isinstance(value, datetime) else None


def format_datetime(value: datetime | None) -> str:
    """Render as YYYY-MM-DD HH:MM:SS in local time; empty string for None."""
    if value is None:
        return ""
    local = value.astimezone() if value.tzinfo is not None else value
    return local.strftime(DISPLAY_FORMAT)
