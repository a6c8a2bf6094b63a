"""Accounting engine coordinating balances, sessions and the PIN gate."""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, Optional, Tuple

from .exceptions import (
    AlreadyRunningError,
    MalformedInputError,
    NoTimeRemainingError,
    PersistenceError,
    PinLockedError,
    PinMismatchError,
    PinUnchangedError,
    ProfileNotFoundError,
)
from .models import (
    AppConfig,
    Profile,
    ProfileStatus,
    TickOutcome,
    TickState,
    UsageLogEntry,
)
from .ops import StructuredLogger
from .persistence import StateStore
from .profiles import ProfileDirectory
from .security import GateFailure, GateResult, PinGate, is_valid_pin
from .settings import Settings
from .timekeeping import (
    effective_remaining,
    elapsed_seconds,
    from_epoch_ms,
    minutes_between,
    to_epoch_ms,
    utcnow,
)

Clock = Callable[[], datetime]


class AccountingEngine:
    """Own the game-time balances of every profile.

    One engine is built at process start and handed to whoever needs it. All
    mutations copy the current snapshot, change the copy, persist it and only
    then swap it in, so a failed write leaves the previous state in place.
    """

    __slots__ = (
        "_store",
        "_settings",
        "_clock",
        "_logger",
        "_gate",
        "_lock",
        "_directory",
        "_config",
        "_degraded",
    )

    def __init__(
        self,
        store: StateStore,
        *,
        settings: Settings | None = None,
        clock: Clock = utcnow,
        logger: StructuredLogger | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._store = store
        self._clock = clock
        self._logger = logger or StructuredLogger()
        self._gate = PinGate(
            max_attempts=self._settings.max_pin_attempts,
            lockout_seconds=self._settings.pin_lockout_seconds,
        )
        self._lock = threading.RLock()
        self._directory = ProfileDirectory(self, max_profiles=self._settings.max_profiles)
        self._degraded = False
        self._config = self._load()

    @classmethod
    def from_settings(cls, settings: Settings | None = None, *, clock: Clock = utcnow) -> "AccountingEngine":
        settings = settings or Settings.from_env()
        logger = StructuredLogger(path=settings.event_log)
        store = StateStore.from_settings(settings, logger=logger)
        return cls(store, settings=settings, clock=clock, logger=logger)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def gate(self) -> PinGate:
        return self._gate

    @property
    def directory(self) -> ProfileDirectory:
        return self._directory

    @property
    def degraded(self) -> bool:
        """True while running on an in-memory default after a failed load."""

        return self._degraded

    @property
    def config(self) -> AppConfig:
        return self._config.copy()

    @property
    def profiles(self) -> Tuple[Profile, ...]:
        return tuple(copy.copy(profile) for profile in self._config.profiles)

    @property
    def selected_profile(self) -> Optional[Profile]:
        selected = self._config.selected_profile_id
        if selected is None:
            return None
        profile = self._config.find(selected)
        return copy.copy(profile) if profile else None

    def get_profile(self, profile_id: str) -> Profile:
        return copy.copy(self._require(self._config, profile_id))

    @property
    def admin_active(self) -> bool:
        return self._gate.admin_active

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    @contextmanager
    def transaction(self) -> Iterator[AppConfig]:
        """Yield a working copy of the config and commit it on success."""

        with self._lock:
            working = self._config.copy()
            yield working
            self._store.save_config(working)
            self._config = working
            self._degraded = False

    def flush(self) -> bool:
        """Best-effort save of the current snapshot (e.g. on suspension)."""

        with self._lock:
            try:
                self._store.save_config(self._config)
            except PersistenceError as exc:
                self._logger.warning("persistence_failure", operation="flush", error=str(exc))
                return False
            return True

    def _load(self) -> AppConfig:
        try:
            return self._store.load_config()
        except PersistenceError as exc:
            self._logger.error("persistence_failure", operation="load_config", error=str(exc))
            self._degraded = True
            return AppConfig()

    def _now(self) -> datetime:
        # stored instants have millisecond resolution
        return from_epoch_ms(to_epoch_ms(self._clock()))

    def _require(self, config: AppConfig, profile_id: str) -> Profile:
        profile = config.find(profile_id)
        if profile is None:
            raise ProfileNotFoundError(f"Profile '{profile_id}' does not exist.")
        return profile

    def _record(self, entry: UsageLogEntry) -> None:
        try:
            self._store.append_log(entry)
        except PersistenceError as exc:
            self._logger.error("persistence_failure", operation="append_log", entry=entry.id, error=str(exc))

    # ------------------------------------------------------------------
    # Balance operations
    # ------------------------------------------------------------------
    def grant(self, profile_id: str, minutes: int) -> UsageLogEntry:
        """Add ``minutes`` to a profile's balance, running or not."""

        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
            raise ValueError("Granted minutes must be a positive whole number.")
        with self._lock:
            now = self._now()
            with self.transaction() as config:
                profile = self._require(config, profile_id)
                profile.remaining_minutes += minutes
            entry = UsageLogEntry.grant(profile_id, minutes, at=now)
            self._record(entry)
        self._logger.log("minutes_granted", profile=profile_id, minutes=minutes, balance=profile.remaining_minutes)
        return entry

    def start_session(self, profile_id: str) -> datetime:
        """Start playing; returns the recorded start instant."""

        with self._lock:
            now = self._now()
            with self.transaction() as config:
                profile = self._require(config, profile_id)
                if profile.is_running:
                    raise AlreadyRunningError(f"Profile '{profile_id}' already has a running session.")
                remaining = effective_remaining(
                    profile.remaining_minutes, None, self._settings.max_session_minutes, at=now
                )
                if remaining <= 0:
                    raise NoTimeRemainingError(f"Profile '{profile_id}' has no time remaining.")
                profile.active_session_start = now
        self._logger.log("session_started", profile=profile_id, balance=profile.remaining_minutes)
        return now

    def stop_session(self, profile_id: str) -> Optional[UsageLogEntry]:
        """Stop a running session and charge it; ``None`` when already idle."""

        with self._lock:
            return self._stop(profile_id, at=self._now(), auto=False)

    def _stop(self, profile_id: str, *, at: datetime, auto: bool) -> Optional[UsageLogEntry]:
        cap = self._settings.max_session_minutes
        if self._require(self._config, profile_id).active_session_start is None:
            return None
        with self.transaction() as config:
            profile = self._require(config, profile_id)
            started = profile.active_session_start
            elapsed = minutes_between(started, at)
            consumed = min(max(elapsed, 0), cap)
            remaining = profile.remaining_minutes - consumed
            profile.remaining_minutes = remaining if remaining > 0 else 0
            profile.active_session_start = None
        entry = UsageLogEntry.consume(profile_id, consumed, started_at=started, ended_at=at, auto=auto)
        self._record(entry)
        self._logger.log(
            "session_stopped",
            profile=profile_id,
            consumed=consumed,
            balance=profile.remaining_minutes,
            auto=auto,
            capped=elapsed > cap,
        )
        return entry

    def reset(self, profile_id: str) -> None:
        """Zero the balance and end any session without a usage-log entry."""

        with self._lock:
            with self.transaction() as config:
                profile = self._require(config, profile_id)
                previous = profile.remaining_minutes
                was_running = profile.is_running
                profile.remaining_minutes = 0
                profile.active_session_start = None
        self._logger.log("balance_reset", profile=profile_id, previous=previous, was_running=was_running)

    def reconcile_tick(self, profile_id: str) -> TickOutcome:
        """Re-evaluate a session from absolute timestamps.

        Safe to call at any cadence: idle profiles are left untouched, and a
        session whose effective balance hit zero or whose raw duration reached
        the cap is stopped and reported as ``auto_stopped``.
        """

        with self._lock:
            profile = self._require(self._config, profile_id)
            started = profile.active_session_start
            if started is None:
                return TickOutcome(profile_id, TickState.IDLE, profile.remaining_minutes)
            now = self._now()
            cap = self._settings.max_session_minutes
            seconds = elapsed_seconds(started, now)
            remaining = effective_remaining(profile.remaining_minutes, started, cap, at=now)
            if remaining > 0 and seconds < cap * 60:
                return TickOutcome(profile_id, TickState.RUNNING, remaining, seconds)
            entry = self._stop(profile_id, at=now, auto=True)
            balance = self._require(self._config, profile_id).remaining_minutes
            return TickOutcome(profile_id, TickState.AUTO_STOPPED, balance, seconds, entry)

    def reconcile_selected(self) -> Optional[TickOutcome]:
        selected = self._config.selected_profile_id
        if selected is None:
            return None
        return self.reconcile_tick(selected)

    def effective_remaining(self, profile_id: str) -> int:
        profile = self._require(self._config, profile_id)
        return effective_remaining(
            profile.remaining_minutes,
            profile.active_session_start,
            self._settings.max_session_minutes,
            at=self._now(),
        )

    def status(self, profile_id: str) -> ProfileStatus:
        profile = self._require(self._config, profile_id)
        now = self._now()
        started = profile.active_session_start
        return ProfileStatus(
            profile_id=profile.id,
            name=profile.name,
            stored_minutes=profile.remaining_minutes,
            remaining_minutes=effective_remaining(
                profile.remaining_minutes, started, self._settings.max_session_minutes, at=now
            ),
            running=started is not None,
            elapsed_seconds=elapsed_seconds(started, now) if started else 0,
            session_started_at=started,
            selected=self._config.selected_profile_id == profile.id,
        )

    # ------------------------------------------------------------------
    # Profile directory
    # ------------------------------------------------------------------
    def add_profile(self, name: str) -> Profile:
        return self._directory.add(name)

    def rename_profile(self, profile_id: str, new_name: str) -> Profile:
        return self._directory.rename(profile_id, new_name)

    def select_profile(self, profile_id: Optional[str]) -> Optional[Profile]:
        return self._directory.select(profile_id)

    # ------------------------------------------------------------------
    # PIN gate
    # ------------------------------------------------------------------
    def verify_pin(self, candidate: str) -> GateResult:
        with self._lock:
            now = self._now()
            was_locked = self._gate.is_locked(at=now)
            result = self._gate.verify(self._config.pin, candidate, at=now)
        if result.failure is GateFailure.LOCKED and not was_locked:
            self._logger.warning("pin_locked", seconds=result.lock_seconds_remaining)
        elif result.failure is not None:
            self._logger.log("pin_rejected", reason=result.failure.value)
        return result

    def _check_pin(self, candidate: str) -> GateResult:
        result = self.verify_pin(candidate)
        if result.accepted:
            return result
        if result.failure is GateFailure.LOCKED:
            raise PinLockedError(result.lock_seconds_remaining or 0)
        if result.failure is GateFailure.MALFORMED:
            raise MalformedInputError("PIN must be exactly four digits.")
        raise PinMismatchError(attempts_remaining=result.attempts_remaining)

    def enter_admin(self, pin: str) -> None:
        """Enter parent mode or raise the gate's failure kind."""

        with self._lock:
            self._check_pin(pin)
            self._gate.enter()
        self._logger.log("admin_entered")

    def exit_admin(self) -> None:
        with self._lock:
            self._gate.exit()

    def change_pin(self, current: str, new: str, confirmation: str) -> None:
        with self._lock:
            self._check_pin(current)
            if not is_valid_pin(new):
                raise MalformedInputError("New PIN must be exactly four digits.")
            if new != confirmation:
                raise PinMismatchError("Confirmation does not match the new PIN.")
            if new == self._config.pin:
                raise PinUnchangedError("New PIN is the same as the current PIN.")
            with self.transaction() as config:
                config.pin = new
        self._logger.log("pin_changed")

    # ------------------------------------------------------------------
    # Logs and backups
    # ------------------------------------------------------------------
    def list_logs(self, limit: int = 10, profile_id: Optional[str] = None) -> Tuple[UsageLogEntry, ...]:
        return self._store.list_logs(limit, profile_id)

    def export_backup(self) -> str:
        with self._lock:
            return self._store.export_backup(at=self._now())

    def import_backup(self, serialized: str | bytes) -> AppConfig:
        """Replace all state with a backup document; nothing changes on error."""

        with self._lock:
            config, _ = self._store.import_backup(serialized)
            self._config = config
            self._degraded = False
        return config.copy()

    def clear_all(self) -> AppConfig:
        with self._lock:
            self._config = self._store.clear_all()
            self._degraded = False
            self._gate.exit()
        return self._config.copy()


__all__ = ["AccountingEngine", "Clock"]
