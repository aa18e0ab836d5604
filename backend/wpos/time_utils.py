"""
UTC helpers. The database stores naive datetimes that are always UTC;
the API always speaks ISO-8601 with a trailing 'Z'.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    "2026-03-01", "2026-03-01T10:15" and "2026-03-01T10:15:00Z" all parse;
    offsets are folded into UTC. Blank input gives None.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Second precision; naive values are taken as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"


def month_key(dt: datetime) -> str:
    """Rollup bucket for monthly analytics, e.g. '2026-03'."""
    return dt.strftime("%Y-%m")
