"""Utilities for turning wall-clock instants into whole minutes of game time."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

MINUTE = Decimal(60_000)
_ONE_MS = timedelta(milliseconds=1)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    """Return the current instant as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def to_epoch_ms(moment: datetime) -> int:
    """Convert ``moment`` to integer milliseconds since the Unix epoch."""

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // _ONE_MS


def from_epoch_ms(value: int) -> datetime:
    """Inverse of :func:`to_epoch_ms`."""

    return _EPOCH + timedelta(milliseconds=int(value))


def minutes_between(start: datetime, end: datetime) -> int:
    """Return the duration between two instants rounded to the nearest minute.

    Half a minute and above rounds up, so 90.4 seconds is two minutes and
    29.9 seconds is zero.
    """

    millis = Decimal((end - start) // _ONE_MS)
    return int((millis / MINUTE).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def elapsed_seconds(start: datetime, end: datetime) -> int:
    """Return whole seconds elapsed since ``start``; never negative."""

    seconds = int((end - start).total_seconds())
    return seconds if seconds > 0 else 0


def effective_remaining(
    balance: int,
    session_start: Optional[datetime],
    cap: int,
    *,
    at: Optional[datetime] = None,
) -> int:
    """Return the balance a profile effectively has at ``at``.

    Idle profiles report ``balance`` unchanged. For a running session the
    elapsed minutes are clamped to ``[0, cap]`` before being subtracted, and
    the result is floored at zero. The stored balance is never touched.
    """

    if session_start is None:
        return balance
    moment = at or utcnow()
    elapsed = min(max(minutes_between(session_start, moment), 0), cap)
    remaining = balance - elapsed
    return remaining if remaining > 0 else 0


def format_minutes(minutes: int) -> str:
    """Return ``minutes`` as a short human readable string (e.g. ``1 h 5 min``)."""

    if minutes <= 0:
        return "0 min"
    hours, mins = divmod(minutes, 60)
    if hours == 0:
        return f"{mins} min"
    if mins == 0:
        return f"{hours} h"
    return f"{hours} h {mins} min"


def format_seconds(seconds: int) -> str:
    """Return ``seconds`` as ``HH:MM:SS``."""

    hours, remainder = divmod(max(seconds, 0), 3600)
    mins, secs = divmod(remainder, 60)
    return f"{hours:02d}:{mins:02d}:{secs:02d}"


def backup_file_name(moment: Optional[datetime] = None) -> str:
    """Suggested file name for an exported backup."""

    stamp = moment or utcnow()
    return f"game-time-backup_{stamp:%Y-%m-%d}.json"


__all__ = [
    "backup_file_name",
    "effective_remaining",
    "elapsed_seconds",
    "format_minutes",
    "format_seconds",
    "from_epoch_ms",
    "minutes_between",
    "to_epoch_ms",
    "utcnow",
]
