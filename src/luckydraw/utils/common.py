"""Common utility functions for the lucky draw backend."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional

_FRACTION = re.compile(r"\.(\d+)")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts datetimes, ISO strings (with or without a trailing 'Z') and
    None. Naive values are assumed to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        # PostgREST trims trailing zeros; fromisoformat before 3.11 wants 3 or 6 digits
        text = _FRACTION.sub(lambda m: "." + m.group(1).ljust(6, "0")[:6], text, count=1)
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def format_pkr(amount: float) -> str:
    """Format a rupee amount for display: 'Rs 1,500'."""
    return f"Rs {int(round(amount or 0)):,}"


def shorten_name(name: str, limit: int = 24) -> str:
    """Trim a participant name for feed messages."""
    if not name:
        return ""
    name = name.strip()
    if len(name) <= limit:
        return name
    return name[: limit - 3] + "..."
