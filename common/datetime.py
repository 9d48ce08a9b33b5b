"""Datetime helpers shared by the ledger, settlement and rebalancer code.

All timestamps handled by the treasury are timezone-aware UTC. Settlement
webhooks carry ``settledAt`` as ISO-8601 text in whatever form the payment
facilitator emits (``Z`` suffix, explicit offsets, fractional seconds), so
parsing goes through :func:`parse_iso8601` rather than ``fromisoformat``.
"""
from __future__ import annotations

import datetime as _dt
from typing import Union

from dateutil.parser import isoparse as _isoparse

__all__ = ["parse_iso8601", "utcnow", "ensure_utc"]


def utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def ensure_utc(dt: _dt.datetime) -> _dt.datetime:
    """Return *dt* as an aware UTC datetime; naive values are taken as UTC.

    SQLite hands naive datetimes back even when aware ones were stored.
    """
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=_dt.timezone.utc)
    return dt.astimezone(_dt.timezone.utc)


def parse_iso8601(value: Union[str, _dt.datetime]) -> _dt.datetime:
    """Parse *value* into a timezone-aware UTC datetime."""
    if isinstance(value, _dt.datetime):
        return ensure_utc(value)

    if not isinstance(value, str):
        raise TypeError("parse_iso8601 expects str or datetime, got " + type(value).__name__)

    try:
        dt = _isoparse(value)
    except (ValueError, OverflowError) as exc:
        raise ValueError(f"invalid ISO-8601 datetime: {value}") from exc

    return ensure_utc(dt)
