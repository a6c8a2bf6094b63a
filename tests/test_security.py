from datetime import datetime, timedelta, timezone

import pytest

from gametime.exceptions import (
    MalformedInputError,
    PinLockedError,
    PinMismatchError,
    PinUnchangedError,
)
from gametime.security import GateFailure, PinGate, is_valid_pin

START = datetime(2024, 5, 4, 15, 0, tzinfo=timezone.utc)


def test_pin_syntax() -> None:
    assert is_valid_pin("0000")
    assert is_valid_pin("1234")
    assert not is_valid_pin("123")
    assert not is_valid_pin("12345")
    assert not is_valid_pin("12a4")
    assert not is_valid_pin(" 1234")
    assert not is_valid_pin(1234)


def test_correct_pin_is_accepted_and_resets_attempts() -> None:
    gate = PinGate()
    gate.verify("1234", "0000", at=START)
    gate.verify("1234", "1111", at=START)
    assert gate.failed_attempts == 2

    result = gate.verify("1234", "1234", at=START)

    assert result.accepted
    assert result.failure is None
    assert gate.failed_attempts == 0


def test_mismatch_reports_attempts_remaining() -> None:
    gate = PinGate()

    result = gate.verify("1234", "9999", at=START)

    assert not result.accepted
    assert result.failure is GateFailure.MISMATCH
    assert result.attempts_remaining == 4


def test_malformed_input_does_not_consume_an_attempt() -> None:
    gate = PinGate()

    result = gate.verify("1234", "12", at=START)

    assert result.failure is GateFailure.MALFORMED
    assert gate.failed_attempts == 0


def test_five_failures_lock_the_gate_for_thirty_seconds() -> None:
    gate = PinGate()
    for _ in range(4):
        assert gate.verify("1234", "0000", at=START).failure is GateFailure.MISMATCH

    fifth = gate.verify("1234", "0000", at=START)
    assert fifth.failure is GateFailure.LOCKED
    assert fifth.lock_seconds_remaining == 30
    assert gate.failed_attempts == 0

    sixth = gate.verify("1234", "1234", at=START + timedelta(seconds=10))
    assert not sixth.accepted
    assert sixth.failure is GateFailure.LOCKED
    assert sixth.lock_seconds_remaining == 20
    assert gate.failed_attempts == 0
    assert gate.is_locked(at=START + timedelta(seconds=29))

    after = gate.verify("1234", "1234", at=START + timedelta(seconds=30))
    assert after.accepted
    assert gate.failed_attempts == 0
    assert not gate.is_locked(at=START + timedelta(seconds=30))


def test_engine_enter_admin_maps_failures(engine, clock) -> None:
    with pytest.raises(MalformedInputError):
        engine.enter_admin("12")
    with pytest.raises(PinMismatchError) as mismatch:
        engine.enter_admin("1111")
    assert mismatch.value.attempts_remaining == 4

    for _ in range(3):
        with pytest.raises(PinMismatchError):
            engine.enter_admin("1111")
    with pytest.raises(PinLockedError) as locked:
        engine.enter_admin("1111")
    assert locked.value.seconds_remaining == 30

    clock.advance(seconds=5)
    with pytest.raises(PinLockedError) as still_locked:
        engine.enter_admin("0000")
    assert still_locked.value.seconds_remaining == 25
    assert engine.logger.events("pin_locked")

    clock.advance(seconds=25)
    engine.enter_admin("0000")
    assert engine.admin_active
    engine.exit_admin()
    assert not engine.admin_active


def test_change_pin_validations(engine) -> None:
    with pytest.raises(PinMismatchError):
        engine.change_pin("9999", "4321", "4321")
    with pytest.raises(MalformedInputError):
        engine.change_pin("0000", "43a1", "43a1")
    with pytest.raises(PinMismatchError):
        engine.change_pin("0000", "4321", "4322")
    with pytest.raises(PinUnchangedError):
        engine.change_pin("0000", "0000", "0000")
    assert engine.config.pin == "0000"

    engine.change_pin("0000", "4321", "4321")

    assert engine.config.pin == "4321"
    assert engine.store.load_config().pin == "4321"
    assert engine.verify_pin("4321").accepted
    assert not engine.verify_pin("0000").accepted


class RecordingLock:
    def __init__(self, inner) -> None:
        self.inner = inner
        self.acquired = 0

    def __enter__(self):
        self.acquired += 1
        return self.inner.__enter__()

    def __exit__(self, *exc_info):
        return self.inner.__exit__(*exc_info)


def test_admin_mode_changes_are_serialized(engine, monkeypatch) -> None:
    lock = RecordingLock(engine._lock)
    monkeypatch.setattr(engine, "_lock", lock)

    engine.enter_admin("0000")
    entered = lock.acquired
    engine.exit_admin()

    assert entered >= 1
    assert lock.acquired > entered
    assert not engine.admin_active
