import asyncio

from gametime.models import TickState
from gametime.ticker import SessionTicker


def test_tick_reports_auto_stop_to_callback(engine, clock) -> None:
    kid = engine.add_profile("Ava").id
    engine.grant(kid, 2)
    engine.start_session(kid)
    stopped = []
    ticker = SessionTicker(engine, on_auto_stop=stopped.append)

    assert ticker.tick().state is TickState.RUNNING
    # the process was suspended for longer than the balance
    clock.advance(minutes=30)
    outcome = ticker.tick()

    assert outcome.auto_stopped
    assert stopped == [outcome]
    assert outcome.entry.delta_minutes == -30
    assert engine.get_profile(kid).remaining_minutes == 0
    assert ticker.tick().state is TickState.IDLE
    assert len(stopped) == 1


def test_tick_without_selection_does_nothing(engine) -> None:
    ticker = SessionTicker(engine)

    assert ticker.tick() is None
    assert ticker.ticks == 1


def test_background_task_runs_and_stops(engine, clock) -> None:
    kid = engine.add_profile("Ava").id
    engine.grant(kid, 1)
    engine.start_session(kid)
    clock.advance(minutes=5)
    stopped = []

    async def scenario() -> None:
        ticker = SessionTicker(engine, interval=0.01, on_auto_stop=stopped.append)
        ticker.start()
        assert ticker.running
        for _ in range(100):
            if stopped:
                break
            await asyncio.sleep(0.01)
        await ticker.stop()
        assert not ticker.running

    asyncio.run(scenario())

    assert len(stopped) == 1
    assert not engine.get_profile(kid).is_running
