from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


UTC = timezone.utc


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values (SQLite drops tzinfo) and convert aware ones."""

    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as ISO-8601 in UTC, keeping microseconds."""

    value = ensure_utc(dt)
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


def parse_iso(s: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string and return a timezone-aware UTC datetime."""

    if not s:
        return None
    value = s.strip()
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    return ensure_utc(dt)


def is_later(a: Optional[datetime], b: Optional[datetime]) -> bool:
    """Return True when ``a`` is strictly later than ``b``; missing values lose."""

    left = ensure_utc(a)
    right = ensure_utc(b)
    if left is None:
        return False
    if right is None:
        return True
    return left > right


__all__ = [
    "UTC",
    "ensure_utc",
    "is_later",
    "parse_iso",
    "to_iso",
    "utc_now",
]
