"""Common time utilities."""

from __future__ import annotations

import datetime as dt


def utcnow() -> dt.datetime:
    """Return an aware UTC timestamp suitable for DB defaults."""
    return dt.datetime.now(dt.UTC)


def parse_github_datetime(value: object) -> dt.datetime | None:
    """Parse a GitHub ISO-8601 timestamp into an aware UTC datetime.

    Anything that is not a parseable string yields ``None``; GitHub omits or
    nulls timestamps freely (``merged_at``, ``started_at``) and a missing value
    must never fail a record.
    """
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=dt.UTC)
    return parsed.astimezone(dt.UTC)
