"""Schema migrations for the persisted config record and usage log.

Each step upgrades a plain JSON-style mapping by exactly one version. Steps
are pure: they never touch storage and never mutate their input, so they can
be chained and unit-tested on their own.
"""

from __future__ import annotations

import copy
from typing import Any, Callable, Dict, Iterable, List, Mapping

from .models import CURRENT_SCHEMA_VERSION, DEFAULT_PIN

LEGACY_PROFILE_ID = "child-1"
LEGACY_PROFILE_NAME = "Child"

Record = Dict[str, Any]


def _v1_to_v2(record: Mapping[str, Any]) -> Record:
    """Lift the single-balance layout into an explicit one-entry profile list."""

    if isinstance(record.get("profiles"), list):
        # already carries the multi-profile layout
        return copy.deepcopy(dict(record))
    start = record.get("startTimestamp") or 0
    profile = {
        "id": LEGACY_PROFILE_ID,
        "name": LEGACY_PROFILE_NAME,
        "remainingMinutes": int(record.get("remainingMinutes") or 0),
        "activeSessionStart": int(start) if start else None,
    }
    return {
        "pin": record.get("pin") or DEFAULT_PIN,
        "profiles": [profile],
        "selectedProfileId": LEGACY_PROFILE_ID,
        "schemaVersion": 2,
    }


MIGRATIONS: Dict[int, Callable[[Mapping[str, Any]], Record]] = {
    1: _v1_to_v2,
}


def record_version(record: Mapping[str, Any]) -> int:
    """Return the schema version a stored record claims to be."""

    if "schemaVersion" in record:
        return int(record["schemaVersion"])
    if "profiles" in record:
        return CURRENT_SCHEMA_VERSION
    return int(record.get("version") or 1)


def migrate(stored_version: int, record: Mapping[str, Any]) -> Record:
    """Upgrade ``record`` from ``stored_version`` to the current schema.

    Already current records are returned as an unchanged copy, which makes
    re-running the migration a no-op, even when ``stored_version`` is stale.
    """

    if stored_version > CURRENT_SCHEMA_VERSION:
        raise ValueError(
            f"Schema version {stored_version} is newer than supported version {CURRENT_SCHEMA_VERSION}."
        )
    current: Record = copy.deepcopy(dict(record))
    version = stored_version
    while version < CURRENT_SCHEMA_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise ValueError(f"No migration registered for schema version {version}.")
        current = step(current)
        version += 1
    current["schemaVersion"] = CURRENT_SCHEMA_VERSION
    return current


def upgrade_log(entry: Mapping[str, Any]) -> Record:
    """Rename legacy log keys (``start``/``end``/``type``/``amount``)."""

    if "startedAt" in entry:
        return dict(entry)
    return {
        "id": entry.get("id"),
        "profileId": entry.get("profileId"),
        "startedAt": entry.get("start"),
        "endedAt": entry.get("end", entry.get("start")),
        "kind": entry.get("type"),
        "deltaMinutes": entry.get("amount"),
        "note": entry.get("note") or "",
    }


def backfill_logs(entries: Iterable[Mapping[str, Any]], profile_id: str) -> List[Record]:
    """Give every log entry lacking a profile reference ``profile_id``."""

    result: List[Record] = []
    for entry in entries:
        upgraded = upgrade_log(entry)
        if not upgraded.get("profileId"):
            upgraded["profileId"] = profile_id
        result.append(upgraded)
    return result


__all__ = [
    "LEGACY_PROFILE_ID",
    "LEGACY_PROFILE_NAME",
    "MIGRATIONS",
    "backfill_logs",
    "migrate",
    "record_version",
    "upgrade_log",
]
