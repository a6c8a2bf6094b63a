"""Custom exception hierarchy for the gametime package."""

from __future__ import annotations


class GameTimeError(Exception):
    """Base class for all gametime specific errors."""


class ProfileNotFoundError(GameTimeError):
    """Raised when a profile lookup fails."""


class LimitExceededError(GameTimeError):
    """Raised when adding a profile would exceed the configured maximum."""


class AlreadyRunningError(GameTimeError):
    """Raised when starting a session for a profile that is already playing."""


class NoTimeRemainingError(GameTimeError):
    """Raised when a session is requested with an empty balance."""


class MalformedInputError(GameTimeError, ValueError):
    """Raised when a PIN or profile name fails syntactic validation."""


class PinMismatchError(GameTimeError):
    """Raised when a supplied PIN (or its confirmation) does not match."""

    def __init__(self, message: str = "PIN does not match.", *, attempts_remaining: int | None = None) -> None:
        super().__init__(message)
        self.attempts_remaining = attempts_remaining


class PinLockedError(GameTimeError):
    """Raised while the PIN gate refuses verification after repeated failures."""

    def __init__(self, seconds_remaining: int) -> None:
        super().__init__(f"PIN entry is locked. Try again in {seconds_remaining} seconds.")
        self.seconds_remaining = seconds_remaining


class PinUnchangedError(GameTimeError):
    """Raised when a new PIN is identical to the current one."""


class InvalidBackupFormatError(GameTimeError):
    """Raised when a backup document is malformed or missing required fields."""


class UnsupportedBackupVersionError(GameTimeError):
    """Raised when a backup was produced by a newer format version."""

    def __init__(self, version: int, supported: int) -> None:
        super().__init__(
            f"Backup format version {version} is newer than the supported version {supported}."
        )
        self.version = version
        self.supported = supported


class PersistenceError(GameTimeError):
    """Raised when the underlying store fails to read or write."""
