"""Domain models used by the gametime package."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

from .settings import NAME_MAX_LENGTH
from .timekeeping import from_epoch_ms, to_epoch_ms

CURRENT_SCHEMA_VERSION = 2
BACKUP_FORMAT_VERSION = CURRENT_SCHEMA_VERSION
DEFAULT_PIN = "0000"


class LogKind(str, Enum):
    """Enumerates the balance movements recorded in the usage log."""

    GRANT = "grant"
    CONSUME = "consume"


class TickState(str, Enum):
    """Outcome of a reconciliation tick for a single profile."""

    IDLE = "idle"
    RUNNING = "running"
    AUTO_STOPPED = "auto_stopped"


def _require(payload: Mapping[str, Any], key: str, kind: type | Tuple[type, ...]) -> Any:
    if key not in payload:
        raise ValueError(f"Missing field '{key}'.")
    value = payload[key]
    # bool is an int subclass; never accept it where a number is expected
    if isinstance(value, bool) and kind is not bool:
        raise ValueError(f"Field '{key}' has an invalid type.")
    if not isinstance(value, kind):
        raise ValueError(f"Field '{key}' has an invalid type.")
    return value


def _optional_instant(value: Any) -> Optional[datetime]:
    # 0 and null both mean "no session", matching the legacy layout
    if value in (None, 0):
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("Instants must be integer epoch milliseconds.")
    return from_epoch_ms(value)


@dataclass(slots=True)
class Profile:
    """One child's allowance state."""

    id: str
    name: str
    remaining_minutes: int = 0
    active_session_start: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self.active_session_start is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "remainingMinutes": self.remaining_minutes,
            "activeSessionStart": (
                to_epoch_ms(self.active_session_start) if self.active_session_start else None
            ),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Profile":
        remaining = _require(payload, "remainingMinutes", int)
        if remaining < 0:
            raise ValueError("remainingMinutes cannot be negative.")
        name = _require(payload, "name", str).strip()
        if not 1 <= len(name) <= NAME_MAX_LENGTH:
            raise ValueError(f"Profile name must be 1-{NAME_MAX_LENGTH} characters.")
        return cls(
            id=_require(payload, "id", str),
            name=name,
            remaining_minutes=remaining,
            active_session_start=_optional_instant(payload.get("activeSessionStart")),
        )


@dataclass(slots=True)
class AppConfig:
    """The single process-wide snapshot of PIN, profiles and selection."""

    pin: str = DEFAULT_PIN
    profiles: List[Profile] = field(default_factory=list)
    selected_profile_id: Optional[str] = None
    schema_version: int = CURRENT_SCHEMA_VERSION

    def find(self, profile_id: str) -> Optional[Profile]:
        for profile in self.profiles:
            if profile.id == profile_id:
                return profile
        return None

    def copy(self) -> "AppConfig":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pin": self.pin,
            "profiles": [profile.to_dict() for profile in self.profiles],
            "selectedProfileId": self.selected_profile_id,
            "schemaVersion": self.schema_version,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AppConfig":
        if not isinstance(payload, Mapping):
            raise ValueError("Config must be a JSON object.")
        raw_profiles = _require(payload, "profiles", list)
        profiles = [Profile.from_dict(item) for item in raw_profiles if isinstance(item, Mapping)]
        if len(profiles) != len(raw_profiles):
            raise ValueError("Every profile must be a JSON object.")
        if len({profile.id for profile in profiles}) != len(profiles):
            raise ValueError("Profile ids must be unique.")
        selected = payload.get("selectedProfileId")
        if selected is not None and selected not in {profile.id for profile in profiles}:
            raise ValueError(f"Selected profile '{selected}' does not exist.")
        return cls(
            pin=_require(payload, "pin", str),
            profiles=profiles,
            selected_profile_id=selected,
            schema_version=_require(payload, "schemaVersion", int),
        )


@dataclass(frozen=True, slots=True)
class UsageLogEntry:
    """Immutable record of a single grant or consumption."""

    id: str
    profile_id: Optional[str]
    started_at: datetime
    ended_at: datetime
    kind: LogKind
    delta_minutes: int
    note: str = ""

    @classmethod
    def grant(cls, profile_id: str, minutes: int, *, at: datetime) -> "UsageLogEntry":
        return cls(
            id=str(uuid4()),
            profile_id=profile_id,
            started_at=at,
            ended_at=at,
            kind=LogKind.GRANT,
            delta_minutes=minutes,
            note=f"Granted +{minutes} min",
        )

    @classmethod
    def consume(
        cls,
        profile_id: str,
        minutes: int,
        *,
        started_at: datetime,
        ended_at: datetime,
        auto: bool = False,
    ) -> "UsageLogEntry":
        note = f"Played -{minutes} min"
        if auto:
            note += " (auto-stopped)"
        return cls(
            id=str(uuid4()),
            profile_id=profile_id,
            started_at=started_at,
            ended_at=ended_at,
            kind=LogKind.CONSUME,
            delta_minutes=-minutes,
            note=note,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "profileId": self.profile_id,
            "startedAt": to_epoch_ms(self.started_at),
            "endedAt": to_epoch_ms(self.ended_at),
            "kind": self.kind.value,
            "deltaMinutes": self.delta_minutes,
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "UsageLogEntry":
        if not isinstance(payload, Mapping):
            raise ValueError("Log entries must be JSON objects.")
        profile_id = payload.get("profileId")
        if profile_id is not None and not isinstance(profile_id, str):
            raise ValueError("Field 'profileId' has an invalid type.")
        note = payload.get("note") or ""
        if not isinstance(note, str):
            raise ValueError("Field 'note' has an invalid type.")
        return cls(
            id=_require(payload, "id", str),
            profile_id=profile_id,
            started_at=from_epoch_ms(_require(payload, "startedAt", int)),
            ended_at=from_epoch_ms(_require(payload, "endedAt", int)),
            kind=LogKind(_require(payload, "kind", str)),
            delta_minutes=_require(payload, "deltaMinutes", int),
            note=note,
        )


@dataclass(slots=True)
class BackupDocument:
    """Transport format for export and import."""

    config: AppConfig
    logs: Tuple[UsageLogEntry, ...]
    exported_at: datetime
    format_version: int = BACKUP_FORMAT_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config": self.config.to_dict(),
            "logs": [entry.to_dict() for entry in self.logs],
            "exportedAt": to_epoch_ms(self.exported_at),
            "formatVersion": self.format_version,
        }


@dataclass(slots=True)
class ProfileStatus:
    """Read-only snapshot used by the presentation layer."""

    profile_id: str
    name: str
    stored_minutes: int
    remaining_minutes: int
    running: bool
    elapsed_seconds: int
    session_started_at: Optional[datetime]
    selected: bool


@dataclass(slots=True)
class TickOutcome:
    """Result of :meth:`~gametime.engine.AccountingEngine.reconcile_tick`."""

    profile_id: str
    state: TickState
    remaining_minutes: int
    elapsed_seconds: int = 0
    entry: Optional[UsageLogEntry] = None

    @property
    def auto_stopped(self) -> bool:
        return self.state is TickState.AUTO_STOPPED


__all__ = [
    "AppConfig",
    "BACKUP_FORMAT_VERSION",
    "BackupDocument",
    "CURRENT_SCHEMA_VERSION",
    "DEFAULT_PIN",
    "LogKind",
    "Profile",
    "ProfileStatus",
    "TickOutcome",
    "TickState",
    "UsageLogEntry",
]
