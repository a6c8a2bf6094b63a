from datetime import datetime, timedelta, timezone

from gametime.timekeeping import (
    backup_file_name,
    effective_remaining,
    elapsed_seconds,
    format_minutes,
    format_seconds,
    from_epoch_ms,
    minutes_between,
    to_epoch_ms,
)

START = datetime(2024, 5, 4, 15, 0, tzinfo=timezone.utc)


def test_minutes_between_rounds_to_nearest_minute() -> None:
    assert minutes_between(START, START + timedelta(seconds=90.4)) == 2
    assert minutes_between(START, START + timedelta(seconds=29.9)) == 0
    assert minutes_between(START, START + timedelta(seconds=30)) == 1
    assert minutes_between(START, START + timedelta(seconds=89)) == 1
    assert minutes_between(START, START + timedelta(minutes=45)) == 45


def test_effective_remaining_when_idle_returns_balance() -> None:
    assert effective_remaining(30, None, 120, at=START + timedelta(hours=5)) == 30
    assert effective_remaining(0, None, 120, at=START) == 0


def test_effective_remaining_subtracts_elapsed_minutes() -> None:
    assert effective_remaining(30, START, 120, at=START + timedelta(minutes=10)) == 20
    assert effective_remaining(30, START, 120, at=START + timedelta(seconds=90.4)) == 28


def test_effective_remaining_never_negative_nor_above_balance() -> None:
    assert effective_remaining(30, START, 120, at=START + timedelta(minutes=45)) == 0
    # a clock that moved backwards is treated as no time elapsed
    assert effective_remaining(30, START, 120, at=START - timedelta(minutes=5)) == 30


def test_effective_remaining_clamps_elapsed_to_cap() -> None:
    assert effective_remaining(500, START, 120, at=START + timedelta(hours=10)) == 380


def test_effective_remaining_is_non_increasing_over_time() -> None:
    values = [
        effective_remaining(45, START, 120, at=START + timedelta(seconds=step * 17))
        for step in range(0, 400)
    ]
    assert all(later <= earlier for earlier, later in zip(values, values[1:]))
    assert values[0] == 45
    assert values[-1] == 0


def test_elapsed_seconds_is_floored_and_non_negative() -> None:
    assert elapsed_seconds(START, START + timedelta(seconds=61.9)) == 61
    assert elapsed_seconds(START, START - timedelta(seconds=3)) == 0


def test_epoch_millisecond_conversion() -> None:
    moment = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert to_epoch_ms(moment) == 1_704_067_200_000
    assert from_epoch_ms(1_704_067_200_000) == moment


def test_formatting_helpers() -> None:
    assert format_minutes(0) == "0 min"
    assert format_minutes(45) == "45 min"
    assert format_minutes(120) == "2 h"
    assert format_minutes(65) == "1 h 5 min"
    assert format_seconds(3725) == "01:02:05"
    assert backup_file_name(START) == "game-time-backup_2024-05-04.json"
