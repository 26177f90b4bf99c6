# memberhub/utils/datetime_tools.py
from __future__ import annotations
from typing import Any
from datetime import datetime, date, timezone
from zoneinfo import ZoneInfo

# DB convention: naive datetimes are UTC.

def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

def _to_zoneinfo(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except Exception:
        return ZoneInfo("UTC")

def parse_datetime(val: Any) -> datetime | None:
    """Try to parse val into a datetime (aware or naive). Supports:
       - datetime (returns as-is)
       - date (midnight)
       - ISO-like strings: 'YYYY-MM-DD', 'YYYY-MM-DD HH:MM[:SS[.us]]', with or without 'Z' or offset
    """
    if isinstance(val, datetime):
        return val
    if isinstance(val, date):
        return datetime(val.year, val.month, val.day)
    if isinstance(val, str):
        s = val.strip()
        if not s:
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        # normalize T separator for fromisoformat
        if "T" not in s and " " in s:
            s = s.replace(" ", "T")
        try:
            return datetime.fromisoformat(s)
        except ValueError:
            return None
    return None

def to_utc_naive(val: Any, local_tz_name: str | None = None) -> datetime | None:
    """Parse val and return naive UTC for storage. Naive input is read in local_tz_name (default UTC)."""
    dt = parse_datetime(val)
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=_to_zoneinfo(local_tz_name))
    return dt.astimezone(ZoneInfo("UTC")).replace(tzinfo=None)

def to_iso(val: datetime | None) -> str | None:
    """Serialize a stored (naive UTC) datetime as ISO-8601 with an explicit Z."""
    if val is None:
        return None
    if val.tzinfo is not None:
        val = val.astimezone(ZoneInfo("UTC")).replace(tzinfo=None)
    return val.isoformat(timespec="seconds") + "Z"

def whole_minutes_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 60)

def whole_days_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 86400)
