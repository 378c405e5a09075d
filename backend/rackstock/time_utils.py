from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a movement / return date from a form field or spreadsheet cell.

    Blank input gives None. Plain dates ("2026-03-01") and naive timestamps are
    taken as UTC; "Z" and "+HH:MM" offsets are converted to UTC.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"
    return _to_naive_utc(datetime.fromisoformat(text))


def coerce_datetime(value, *, field: str = "date", default_now: bool = True) -> Optional[datetime]:
    """
    Normalize a movement date to canonical UTC-naive datetime.

    Accepts:
    - None / blank string -> utcnow() (or None when default_now is False)
    - datetime: aware -> converted to UTC; naive -> kept
    - date -> midnight of that day
    - str -> parse_iso_datetime
    """
    if isinstance(value, str):
        try:
            value = parse_iso_datetime(value)
        except ValueError:
            raise ValueError(f"invalid {field}") from None

    if value is None:
        return utcnow() if default_now else None
    if isinstance(value, datetime):
        return _to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    raise ValueError(f"invalid {field}")


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize for to_dict(): whole seconds, trailing 'Z'. Naive values are UTC."""
    if dt is None:
        return None
    stamp = _to_naive_utc(dt).replace(microsecond=0)
    return stamp.isoformat() + "Z"
