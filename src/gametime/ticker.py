"""Asyncio driver for the periodic reconciliation tick."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Callable, Optional

from .exceptions import GameTimeError
from .models import TickOutcome

if TYPE_CHECKING:  # pragma: no cover
    from .engine import AccountingEngine


class SessionTicker:
    """Call ``engine.reconcile_selected()`` every ``interval`` seconds.

    Missed or late ticks are harmless: the engine recomputes elapsed time from
    the stored start instant on every call.
    """

    def __init__(
        self,
        engine: "AccountingEngine",
        *,
        interval: float | None = None,
        on_auto_stop: Callable[[TickOutcome], None] | None = None,
    ) -> None:
        self._engine = engine
        self._interval = interval if interval is not None else engine.settings.tick_seconds
        self._on_auto_stop = on_auto_stop
        self._task: Optional[asyncio.Task[None]] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def tick(self) -> Optional[TickOutcome]:
        outcome = self._engine.reconcile_selected()
        self.ticks += 1
        if outcome is not None and outcome.auto_stopped and self._on_auto_stop:
            self._on_auto_stop(outcome)
        return outcome

    async def run(self) -> None:
        while True:
            try:
                self.tick()
            except GameTimeError as exc:
                self._engine.logger.error("tick_failed", error=str(exc))
            await asyncio.sleep(self._interval)

    def start(self) -> asyncio.Task[None]:
        if self.running:
            raise RuntimeError("Ticker is already running.")
        self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


__all__ = ["SessionTicker"]
