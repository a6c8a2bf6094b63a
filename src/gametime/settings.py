"""Configuration for the gametime engine, read from the environment."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_SQLITE_FILE_NAME = "gametime.db"
MAX_SESSION_MINUTES = 120
MAX_PROFILES = 2
LOG_RETENTION = 100
MAX_PIN_ATTEMPTS = 5
PIN_LOCKOUT_SECONDS = 30
TICK_SECONDS = 1.0
NAME_MAX_LENGTH = 10


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    value = int(raw)
    if value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {raw!r}.")
    return value


@dataclass(frozen=True, slots=True)
class Settings:
    sqlite_file: str = DEFAULT_SQLITE_FILE_NAME
    max_session_minutes: int = MAX_SESSION_MINUTES
    max_profiles: int = MAX_PROFILES
    log_retention: int = LOG_RETENTION
    max_pin_attempts: int = MAX_PIN_ATTEMPTS
    pin_lockout_seconds: int = PIN_LOCKOUT_SECONDS
    tick_seconds: float = TICK_SECONDS
    event_log: Optional[Path] = None

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.sqlite_file}"

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "Settings":
        """Build settings from ``GAMETIME_*`` variables (and a ``.env`` file)."""

        if dotenv:
            load_dotenv()
        event_log = os.environ.get("GAMETIME_EVENT_LOG")
        tick = os.environ.get("GAMETIME_TICK_SECONDS")
        return cls(
            sqlite_file=os.environ.get("GAMETIME_SQLITE", DEFAULT_SQLITE_FILE_NAME),
            max_session_minutes=_env_int("GAMETIME_MAX_SESSION_MINUTES", MAX_SESSION_MINUTES),
            max_profiles=_env_int("GAMETIME_MAX_PROFILES", MAX_PROFILES),
            log_retention=_env_int("GAMETIME_LOG_RETENTION", LOG_RETENTION),
            max_pin_attempts=_env_int("GAMETIME_MAX_PIN_ATTEMPTS", MAX_PIN_ATTEMPTS),
            pin_lockout_seconds=_env_int("GAMETIME_PIN_LOCKOUT_SECONDS", PIN_LOCKOUT_SECONDS),
            tick_seconds=float(tick) if tick else TICK_SECONDS,
            event_log=Path(event_log) if event_log else None,
        )


__all__ = [
    "DEFAULT_SQLITE_FILE_NAME",
    "LOG_RETENTION",
    "MAX_PIN_ATTEMPTS",
    "MAX_PROFILES",
    "MAX_SESSION_MINUTES",
    "NAME_MAX_LENGTH",
    "PIN_LOCKOUT_SECONDS",
    "Settings",
    "TICK_SECONDS",
]
