from datetime import datetime, timedelta, timezone

import pytest

from gametime.engine import AccountingEngine
from gametime.ops import StructuredLogger
from gametime.persistence import StateStore
from gametime.settings import Settings


class FakeClock:
    """Manually advanced clock injected into the engine."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 4, 15, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(tmp_path) -> StateStore:
    return StateStore(f"sqlite:///{tmp_path / 'gametime.db'}")


@pytest.fixture()
def engine(store, clock) -> AccountingEngine:
    return AccountingEngine(store, settings=Settings(), clock=clock, logger=StructuredLogger())
