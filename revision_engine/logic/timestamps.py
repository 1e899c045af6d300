"""Timestamp helpers shared by the write paths."""

from __future__ import annotations

from datetime import datetime, timezone


def format_timestamp(dt: datetime | None = None) -> str:
    """Format an RFC3339 UTC timestamp with trailing 'Z'."""
    dt = dt or datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    base = dt.astimezone(timezone.utc).isoformat(timespec="seconds")
    return base.replace("+00:00", "Z")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


__all__ = ["format_timestamp", "utc_now"]
