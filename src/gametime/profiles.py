"""Profile directory: a small, bounded set of child profiles."""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Callable, Optional
from uuid import uuid4

from .exceptions import LimitExceededError, MalformedInputError, ProfileNotFoundError
from .models import Profile
from .settings import MAX_PROFILES, NAME_MAX_LENGTH

if TYPE_CHECKING:  # pragma: no cover
    from .engine import AccountingEngine


def normalize_name(name: object, *, max_length: int = NAME_MAX_LENGTH) -> str:
    """Trim ``name`` and ensure it is between 1 and ``max_length`` characters."""

    if not isinstance(name, str):
        raise MalformedInputError("Profile name must be text.")
    clean = name.strip()
    if not clean:
        raise MalformedInputError("Profile name cannot be empty.")
    if len(clean) > max_length:
        raise MalformedInputError(f"Profile name must be at most {max_length} characters.")
    return clean


class ProfileDirectory:
    """Create, rename and select profiles on behalf of an engine.

    Balances are never touched here; new profiles start at zero and every
    change is committed through the engine's transaction.
    """

    def __init__(
        self,
        engine: "AccountingEngine",
        *,
        max_profiles: int = MAX_PROFILES,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._engine = engine
        self._max_profiles = max_profiles
        self._id_factory = id_factory or (lambda: uuid4().hex)

    @property
    def max_profiles(self) -> int:
        return self._max_profiles

    def add(self, name: str) -> Profile:
        clean = normalize_name(name)
        with self._engine.transaction() as config:
            if len(config.profiles) >= self._max_profiles:
                raise LimitExceededError(f"At most {self._max_profiles} profiles are supported.")
            taken = {profile.id for profile in config.profiles}
            profile_id = self._id_factory()
            while profile_id in taken:
                profile_id = self._id_factory()
            profile = Profile(id=profile_id, name=clean)
            config.profiles.append(profile)
            config.selected_profile_id = profile.id
        self._engine.logger.log("profile_added", profile=profile.id, name=clean)
        return copy.copy(profile)

    def rename(self, profile_id: str, new_name: str) -> Profile:
        clean = normalize_name(new_name)
        with self._engine.transaction() as config:
            profile = config.find(profile_id)
            if profile is None:
                raise ProfileNotFoundError(f"Profile '{profile_id}' does not exist.")
            previous = profile.name
            profile.name = clean
        self._engine.logger.log("profile_renamed", profile=profile_id, old=previous, new=clean)
        return copy.copy(profile)

    def select(self, profile_id: Optional[str]) -> Optional[Profile]:
        """Select ``profile_id``; ``None`` clears the observed profile."""

        with self._engine.transaction() as config:
            profile = None
            if profile_id is not None:
                profile = config.find(profile_id)
                if profile is None:
                    raise ProfileNotFoundError(f"Profile '{profile_id}' does not exist.")
            config.selected_profile_id = profile_id
        return copy.copy(profile) if profile else None


__all__ = ["ProfileDirectory", "normalize_name"]
