"""Timestamps are stored as naive UTC and serialized with a trailing Z."""

from __future__ import annotations

from datetime import datetime, timezone

from .validation import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc(dt: datetime) -> datetime:
    # naive means UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso_datetime(value: str | None, *, field: str = "datetime") -> datetime | None:
    """
    Parse a sales history bound ("2026-03-01", "2026-03-01T09:30Z", ...).

    Empty or missing means unbounded and returns None. Raises
    ValidationError naming `field` when the value is not ISO-8601.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime") from None
    return _as_utc(parsed).replace(tzinfo=None)


def to_utc_z(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return _as_utc(dt).replace(microsecond=0, tzinfo=None).isoformat() + "Z"
