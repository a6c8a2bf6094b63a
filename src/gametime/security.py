"""PIN gate guarding the parent (administrative) mode."""

from __future__ import annotations

import hmac
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .timekeeping import utcnow

_PIN_PATTERN = re.compile(r"[0-9]{4}")


def is_valid_pin(value: object) -> bool:
    """Return ``True`` when ``value`` is exactly four ASCII digits."""

    return isinstance(value, str) and _PIN_PATTERN.fullmatch(value) is not None


class GateFailure(str, Enum):
    """Reasons a PIN verification can be refused."""

    MALFORMED = "malformed"
    MISMATCH = "mismatch"
    LOCKED = "locked"


@dataclass(slots=True)
class GateResult:
    """Observable outcome of :meth:`PinGate.verify`. Never carries the PIN."""

    accepted: bool
    failure: Optional[GateFailure] = None
    lock_seconds_remaining: Optional[int] = None
    attempts_remaining: Optional[int] = None


class PinGate:
    """Count consecutive PIN failures and enforce a timed lockout.

    The gate is ephemeral: it lives for the lifetime of the process and is not
    persisted. Locks expire lazily, on the next check after ``locked_until``.
    """

    def __init__(self, *, max_attempts: int = 5, lockout_seconds: int = 30) -> None:
        self._max_attempts = max_attempts
        self._lockout_window = timedelta(seconds=lockout_seconds)
        self.failed_attempts = 0
        self.locked_until: Optional[datetime] = None
        self.admin_active = False

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def is_locked(self, *, at: Optional[datetime] = None) -> bool:
        """Return ``True`` while the lockout window is open."""

        self._expire(at or utcnow())
        return self.locked_until is not None

    def lock_seconds_remaining(self, *, at: Optional[datetime] = None) -> int:
        now = at or utcnow()
        self._expire(now)
        if self.locked_until is None:
            return 0
        return math.ceil((self.locked_until - now).total_seconds())

    def verify(self, stored_pin: str, candidate: str, *, at: Optional[datetime] = None) -> GateResult:
        """Check ``candidate`` against ``stored_pin`` and update the counters."""

        now = at or utcnow()
        self._expire(now)
        if self.locked_until is not None:
            return GateResult(
                accepted=False,
                failure=GateFailure.LOCKED,
                lock_seconds_remaining=self.lock_seconds_remaining(at=now),
            )
        if not is_valid_pin(candidate):
            return GateResult(
                accepted=False,
                failure=GateFailure.MALFORMED,
                attempts_remaining=self._max_attempts - self.failed_attempts,
            )
        if hmac.compare_digest(candidate.encode("ascii"), stored_pin.encode("ascii")):
            self.failed_attempts = 0
            return GateResult(accepted=True)

        self.failed_attempts += 1
        if self.failed_attempts >= self._max_attempts:
            self.failed_attempts = 0
            self.locked_until = now + self._lockout_window
            return GateResult(
                accepted=False,
                failure=GateFailure.LOCKED,
                lock_seconds_remaining=self.lock_seconds_remaining(at=now),
            )
        return GateResult(
            accepted=False,
            failure=GateFailure.MISMATCH,
            attempts_remaining=self._max_attempts - self.failed_attempts,
        )

    def enter(self) -> None:
        self.admin_active = True

    def exit(self) -> None:
        """Leave administrative mode; an active lockout stays in force."""

        self.admin_active = False
        self.failed_attempts = 0

    def _expire(self, now: datetime) -> None:
        if self.locked_until is not None and now >= self.locked_until:
            self.locked_until = None
            self.failed_attempts = 0


__all__ = ["GateFailure", "GateResult", "PinGate", "is_valid_pin"]
