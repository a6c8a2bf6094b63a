from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import Session, select

from gametime.exceptions import PersistenceError
from gametime.models import DEFAULT_PIN, AppConfig, LogKind, Profile, UsageLogEntry
from gametime.ops import StructuredLogger
from gametime.persistence import StateRecord, StateStore

START = datetime(2024, 5, 4, 15, 0, tzinfo=timezone.utc)


def _grant(profile_id: str, minutes: int, offset: int) -> UsageLogEntry:
    return UsageLogEntry.grant(profile_id, minutes, at=START + timedelta(minutes=offset))


def test_first_load_seeds_default_config(store) -> None:
    config = store.load_config()

    assert config == AppConfig()
    assert config.pin == DEFAULT_PIN
    with Session(store.engine) as session:
        assert session.get(StateRecord, 1) is not None


def test_save_replaces_single_record(store) -> None:
    config = AppConfig(
        pin="1357",
        profiles=[Profile(id="a", name="Ava", remaining_minutes=12, active_session_start=START)],
        selected_profile_id="a",
    )

    store.save_config(config)
    store.save_config(config)

    assert store.load_config() == config
    with Session(store.engine) as session:
        assert len(session.exec(select(StateRecord)).all()) == 1


def test_corrupt_record_raises_persistence_error(store) -> None:
    with Session(store.engine) as session:
        session.add(StateRecord(schema_version=2, payload="{not json"))
        session.commit()

    with pytest.raises(PersistenceError):
        store.load_config()


def test_list_logs_newest_first_and_filtered(store) -> None:
    store.append_log(_grant("a", 5, 0))
    store.append_log(_grant("b", 10, 1))
    store.append_log(_grant("a", 15, 2))

    newest = store.list_logs(2)
    assert [entry.delta_minutes for entry in newest] == [15, 10]
    only_a = store.list_logs(10, profile_id="a")
    assert [entry.delta_minutes for entry in only_a] == [15, 5]
    assert store.list_logs(0) == ()
    with pytest.raises(ValueError):
        store.list_logs(-1)


def test_append_rotates_oldest_entries() -> None:
    store = StateStore.in_memory(retention=100)
    for offset in range(105):
        store.append_log(_grant("a", offset + 1, offset))

    assert store.count_logs() == 100
    remaining = store.all_logs()
    assert remaining[0].delta_minutes == 6
    assert remaining[-1].delta_minutes == 105


def test_rotation_orders_by_start_time_not_insertion() -> None:
    store = StateStore.in_memory(retention=2)
    store.append_log(_grant("a", 1, 10))
    store.append_log(_grant("a", 2, 0))
    store.append_log(_grant("a", 3, 20))

    assert [entry.delta_minutes for entry in store.all_logs()] == [1, 3]


def test_rotation_failure_is_logged_not_raised(monkeypatch) -> None:
    logger = StructuredLogger()
    store = StateStore.in_memory(logger=logger)

    def broken_rotate() -> int:
        raise PersistenceError("locked")

    monkeypatch.setattr(store, "rotate_logs", broken_rotate)
    store.append_log(_grant("a", 5, 0))

    assert store.count_logs() == 1
    assert logger.events("log_rotation_failed")[0]["error"] == "locked"


def test_log_entries_round_trip_through_storage(store) -> None:
    entry = UsageLogEntry.consume(
        "a", 7, started_at=START, ended_at=START + timedelta(minutes=7), auto=True
    )
    store.append_log(entry)

    (stored,) = store.all_logs()
    assert stored == entry
    assert stored.kind is LogKind.CONSUME


def test_clear_all_reseeds_default(store) -> None:
    store.save_config(AppConfig(pin="9999", profiles=[Profile(id="a", name="Ava", remaining_minutes=3)]))
    store.append_log(_grant("a", 3, 0))

    config = store.clear_all()

    assert config == AppConfig()
    assert store.load_config() == AppConfig()
    assert store.all_logs() == ()
