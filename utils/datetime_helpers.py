# -*- coding: utf-8 -*-
"""Datetime helpers for the sync wire format.

Every ``datetime`` stored in the database is UTC without tzinfo. On the wire
timestamps travel as ISO 8601 strings with an explicit ``+00:00`` offset; the
helpers below convert between the two representations.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Current time as naive UTC, the storage convention."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def _ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive values, convert aware ones to UTC."""

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_naive_utc(dt: datetime) -> datetime:
    return _ensure_utc(dt).replace(tzinfo=None)


def parse_datetime(value: Union[str, datetime, date, None]) -> Optional[datetime]:
    """Parse an ISO string (``Z`` suffix allowed) or a datetime into naive UTC.

    :raises ValueError: when ``value`` is not a recognizable timestamp.
    """

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if not isinstance(value, str):
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(text))


def datetime_to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Format a stored datetime as an ISO string with a UTC offset.

    :param dt: value to format; ``None`` passes through.
    """

    if dt is None:
        return None
    return _ensure_utc(dt).isoformat()
