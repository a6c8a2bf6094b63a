"""gametime package: per-child game time allowances and supervised sessions."""

from .engine import AccountingEngine
from .exceptions import (
    AlreadyRunningError,
    GameTimeError,
    InvalidBackupFormatError,
    LimitExceededError,
    MalformedInputError,
    NoTimeRemainingError,
    PersistenceError,
    PinLockedError,
    PinMismatchError,
    PinUnchangedError,
    ProfileNotFoundError,
    UnsupportedBackupVersionError,
)
from .migrations import migrate
from .models import (
    AppConfig,
    BackupDocument,
    LogKind,
    Profile,
    ProfileStatus,
    TickOutcome,
    TickState,
    UsageLogEntry,
)
from .ops import StructuredLogger
from .persistence import StateStore
from .profiles import ProfileDirectory
from .security import GateFailure, GateResult, PinGate
from .settings import Settings
from .ticker import SessionTicker
from .timekeeping import effective_remaining, minutes_between

__all__ = [
    "AccountingEngine",
    "AlreadyRunningError",
    "AppConfig",
    "BackupDocument",
    "GameTimeError",
    "GateFailure",
    "GateResult",
    "InvalidBackupFormatError",
    "LimitExceededError",
    "LogKind",
    "MalformedInputError",
    "NoTimeRemainingError",
    "PersistenceError",
    "PinGate",
    "PinLockedError",
    "PinMismatchError",
    "PinUnchangedError",
    "Profile",
    "ProfileDirectory",
    "ProfileNotFoundError",
    "ProfileStatus",
    "SessionTicker",
    "Settings",
    "StateStore",
    "StructuredLogger",
    "TickOutcome",
    "TickState",
    "UnsupportedBackupVersionError",
    "UsageLogEntry",
    "effective_remaining",
    "migrate",
    "minutes_between",
]
