"""Operational event log for the accounting engine."""

from __future__ import annotations

import json
from collections import deque
from pathlib import Path
from typing import Deque, Optional

from .timekeeping import utcnow


class StructuredLogger:
    """Write JSON lines events describing engine activity.

    Events are kept in a bounded in-memory tail and, when ``path`` is set,
    appended to a file. This is separate from the usage log: it records
    operational facts (resets, lockouts, storage failures) rather than
    balance movements.
    """

    def __init__(self, *, path: Path | None = None, keep: int = 500) -> None:
        self.path = path
        self._entries: Deque[dict] = deque(maxlen=keep)

    def log(self, event_type: str, *, level: str = "info", **fields: object) -> dict:
        entry = {"timestamp": utcnow().isoformat(), "level": level, "event": event_type, **fields}
        self._entries.append(entry)
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, default=str) + "\n")
        return entry

    def warning(self, event_type: str, **fields: object) -> dict:
        return self.log(event_type, level="warning", **fields)

    def error(self, event_type: str, **fields: object) -> dict:
        return self.log(event_type, level="error", **fields)

    def tail(self, limit: int = 50) -> tuple[dict, ...]:
        if limit <= 0:
            return tuple()
        return tuple(self._entries)[-limit:]

    def events(self, event_type: Optional[str] = None) -> tuple[dict, ...]:
        if event_type is None:
            return tuple(self._entries)
        return tuple(entry for entry in self._entries if entry["event"] == event_type)


__all__ = ["StructuredLogger"]
