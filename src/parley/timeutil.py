"""Time values, ISO 8601 codec and clocks."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    text = ensure_utc(value).isoformat()
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def parse_iso(value: str) -> datetime:
    """Parse an ISO 8601 string into an aware UTC datetime.

    Accepts the trailing ``Z`` written by browsers and by :func:`to_iso`.
    Raises ``ValueError`` for anything else that ``fromisoformat`` rejects.
    """
    if not isinstance(value, str):
        raise ValueError(f"Expected ISO 8601 string, got {type(value).__name__}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def coerce_time(value, fallback: Optional[datetime] = None) -> Optional[datetime]:
    """Best-effort conversion used by migration; returns ``fallback`` on failure."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # epoch milliseconds
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return fallback
    if isinstance(value, str):
        try:
            return parse_iso(value)
        except ValueError:
            return fallback
    return fallback


def display_time(value: datetime) -> str:
    return value.astimezone().strftime("%H:%M")


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60.0


class ManualClock:
    """Clock that only moves when told to; handy for hosts replaying input."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = ensure_utc(start) if start else utc_now()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0.0, minutes: float = 0.0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, minutes=minutes)
        return self.now
