import math

import pytest

from timer_app.timer.clock import MS_PER_MINUTE
from timer_app.timer.intervals import IntervalTimer
from timer_app.timer.models import IntervalType, TimerMode, TransitionPhase

WORK = 25 * MS_PER_MINUTE
BREAK = 5 * MS_PER_MINUTE


def make(clock, tickers, **kwargs):
    return IntervalTimer(clock=clock, ticker_factory=tickers, **kwargs)


def run_phase(clock, timer, duration):
    clock.advance(duration)
    timer.tick()


def test_start_begins_with_work(clock, tickers):
    iv = make(clock, tickers)
    assert iv.start("  Deep work  ", 3)
    assert iv.current_interval == IntervalType.WORK
    assert iv.interval_count == 0
    assert iv.time_left == WORK
    assert iv.session_name == "Deep work"
    assert iv.target_loop_count == 3
    assert iv.state.session_start_time == clock()
    assert iv.description == "Work 1/3"


@pytest.mark.parametrize("loops", [0, -1, 1.5, math.nan, math.inf, 10**400])
def test_start_rejects_invalid_loop_count(clock, tickers, loops):
    iv = make(clock, tickers)
    assert iv.start(target_loops=loops) is False
    assert iv.is_idle
    assert tickers.tickers == []


def test_start_rejects_invalid_durations(clock, tickers):
    iv = make(clock, tickers, work_duration_ms=math.nan)
    assert iv.start() is False
    assert iv.is_idle


def test_session_name_truncated(clock, tickers):
    iv = make(clock, tickers)
    iv.start("x" * 80)
    assert iv.session_name == "x" * 50


def test_loop_arithmetic_completes_after_target(clock, tickers, feedback):
    sessions, finished, phases = [], [], []
    iv = make(
        clock,
        tickers,
        feedback=feedback,
        on_session_complete=lambda *args: sessions.append(args),
        on_timer_complete=lambda: finished.append(True),
        on_phase_change=lambda interval, count: phases.append((interval, count)),
    )
    iv.start("Focus", 2)

    run_phase(clock, iv, WORK)
    run_phase(clock, iv, BREAK)
    run_phase(clock, iv, WORK)
    run_phase(clock, iv, BREAK)

    assert phases == [
        (IntervalType.BREAK, 0),
        (IntervalType.WORK, 1),
        (IntervalType.BREAK, 1),
    ]
    assert sessions == [(2 * (WORK + BREAK), 2, "Focus", 2)]
    assert finished == [True]
    assert iv.interval_count == 2
    assert not iv.is_active
    assert iv.time_left == 0
    assert not tickers.running

    clock.advance(WORK)
    iv.tick()
    assert iv.current_interval == IntervalType.BREAK
    assert len(sessions) == 1


def test_without_target_runs_until_killed(clock, tickers):
    iv = make(clock, tickers)
    iv.start()
    for _ in range(10):
        run_phase(clock, iv, WORK)
        run_phase(clock, iv, BREAK)
    assert iv.is_active
    assert iv.interval_count == 10
    assert iv.current_interval == IntervalType.WORK


def test_switch_rearms_polling_with_fresh_phase(clock, tickers):
    iv = make(clock, tickers)
    iv.start()
    first = tickers.latest
    clock.advance(WORK)
    first.fire()
    assert not first.running
    assert tickers.latest is not first
    assert tickers.latest.running
    assert iv.current_interval == IntervalType.BREAK
    assert iv.time_left == BREAK
    assert iv.state.interval_start_time == clock()


def test_reentrant_tick_at_boundary_decides_once(clock, tickers):
    phases = []
    reentered = []

    def on_update(left):
        if left == 0 and not reentered:
            reentered.append(True)
            iv.tick()

    iv = make(clock, tickers, on_update=on_update, on_phase_change=lambda i, c: phases.append((i, c)))
    iv.start()
    clock.advance(WORK)
    iv.tick()
    assert reentered == [True]
    assert phases == [(IntervalType.BREAK, 0)]
    assert iv.current_interval == IntervalType.BREAK
    assert len(tickers.running) == 1


def test_overlapping_ticks_at_final_boundary_complete_once(clock, tickers):
    sessions = []
    reentered = []

    def on_update(left):
        if left == 0 and not reentered:
            reentered.append(True)
            iv.tick()

    iv = make(clock, tickers, on_update=on_update, on_session_complete=lambda *a: sessions.append(a))
    iv.start(target_loops=1)
    run_phase(clock, iv, WORK)
    reentered.clear()
    run_phase(clock, iv, BREAK)
    assert len(sessions) == 1
    assert sessions[0][1] == 1


def test_held_guard_defers_to_next_tick(clock, tickers):
    iv = make(clock, tickers)
    iv.start()
    clock.advance(WORK)
    with iv.guard.hold() as acquired:
        assert acquired
        iv.tick()
        assert iv.current_interval == IntervalType.WORK
        assert iv.is_active
        assert tickers.latest.running
    assert iv.transition_phase == TransitionPhase.IDLE
    tickers.latest.fire()
    assert iv.current_interval == IntervalType.BREAK


def test_guard_released_after_callback_failure(clock, tickers):
    def broken(*_args):
        raise RuntimeError("boom")

    iv = make(clock, tickers, on_session_complete=broken, on_timer_complete=broken, on_phase_change=broken)
    iv.start(target_loops=1)
    run_phase(clock, iv, WORK)
    run_phase(clock, iv, BREAK)
    assert not iv.guard.locked
    assert not iv.is_active
    assert iv.last_completion.failures == ["session_complete", "timer_complete"]


def test_pause_time_excluded_from_session_duration(clock, tickers):
    sessions = []
    iv = make(clock, tickers, on_session_complete=lambda *a: sessions.append(a))
    iv.start(target_loops=1)
    clock.advance(10 * MS_PER_MINUTE)
    iv.pause()
    assert iv.time_left == WORK - 10 * MS_PER_MINUTE
    clock.advance(60 * MS_PER_MINUTE)
    iv.resume()
    assert iv.state.total_paused_time == 60 * MS_PER_MINUTE
    run_phase(clock, iv, 15 * MS_PER_MINUTE)
    assert iv.current_interval == IntervalType.BREAK
    run_phase(clock, iv, BREAK)
    assert sessions[0][0] == WORK + BREAK


def test_pause_resume_conserves_phase_time(clock, tickers):
    iv = make(clock, tickers)
    iv.start()
    clock.advance(7 * MS_PER_MINUTE)
    iv.tick()
    before = iv.time_left
    iv.pause()
    clock.advance(3 * MS_PER_MINUTE)
    iv.resume()
    iv.tick()
    assert iv.time_left == before


def test_kill_reports_session_progress(clock, tickers):
    iv = make(clock, tickers)
    iv.start("Reading", 4)
    run_phase(clock, iv, WORK)
    run_phase(clock, iv, BREAK)
    clock.advance(MS_PER_MINUTE)
    result = iv.kill()
    assert result.mode == TimerMode.INTERVALS
    assert result.duration_ms == WORK + BREAK + MS_PER_MINUTE
    assert result.interval_count == 1
    assert result.session_name == "Reading"
    assert result.target_loop_count == 4
    assert iv.is_idle
    assert iv.interval_count == 0


def test_kill_while_paused_stops_at_pause(clock, tickers):
    iv = make(clock, tickers)
    iv.start()
    clock.advance(5 * MS_PER_MINUTE)
    iv.pause()
    clock.advance(30 * MS_PER_MINUTE)
    assert iv.kill().duration_ms == 5 * MS_PER_MINUTE


def test_set_durations(clock, tickers):
    iv = make(clock, tickers)
    assert iv.set_durations(1000, 500)
    assert iv.set_durations(-1, 500) is False
    iv.start()
    assert iv.time_left == 1000
    assert iv.set_durations(2000, 500) is False
    run_phase(clock, iv, 1000)
    assert iv.time_left == 500


def test_progress_within_phase(clock, tickers):
    iv = make(clock, tickers)
    assert iv.progress == 0
    iv.start()
    clock.advance(WORK / 5)
    iv.tick()
    assert iv.progress == pytest.approx(0.2)


def test_restore_active_uses_persisted_session_start(clock, tickers):
    iv = make(clock, tickers)
    iv.start("Deep", 3)
    started = clock()
    run_phase(clock, iv, WORK)
    run_phase(clock, iv, BREAK)
    clock.advance(2 * MS_PER_MINUTE)
    data = iv.snapshot().to_dict()

    clock.advance(3 * MS_PER_MINUTE)
    restored = make(clock, tickers)
    assert restored.restore(data)
    assert restored.is_active
    assert restored.current_interval == IntervalType.WORK
    assert restored.interval_count == 1
    assert restored.time_left == WORK - 5 * MS_PER_MINUTE
    assert restored.state.session_start_time == started
    assert restored.session_name == "Deep"
    assert restored.target_loop_count == 3


def test_restore_without_session_start_approximates(clock, tickers):
    iv = make(clock, tickers)
    iv.start()
    run_phase(clock, iv, WORK)
    run_phase(clock, iv, BREAK)
    clock.advance(MS_PER_MINUTE)
    data = iv.snapshot().to_dict()
    data.pop("session_start_time")
    restored = make(clock, tickers)
    assert restored.restore(data)
    assert restored.state.session_start_time == clock() - (MS_PER_MINUTE + WORK + BREAK)


def test_restore_expired_phase_is_stopped_without_effects(clock, tickers):
    sessions, finished = [], []
    iv = make(clock, tickers)
    iv.start(target_loops=1)
    run_phase(clock, iv, WORK)
    data = iv.snapshot().to_dict()
    clock.advance(BREAK + 1)
    restored = make(
        clock,
        tickers,
        on_session_complete=lambda *a: sessions.append(a),
        on_timer_complete=lambda: finished.append(True),
    )
    assert restored.restore(data) is False
    assert restored.is_idle
    assert restored.time_left == 0
    assert sessions == [] and finished == []


def test_restore_paused_session_keeps_pause_accounting(clock, tickers):
    sessions = []
    iv = make(clock, tickers)
    iv.start(target_loops=1)
    clock.advance(10 * MS_PER_MINUTE)
    iv.pause()
    data = iv.snapshot().to_dict()
    clock.advance(20 * MS_PER_MINUTE)

    restored = make(clock, tickers, on_session_complete=lambda *a: sessions.append(a))
    assert restored.restore(data)
    assert restored.is_paused
    assert restored.time_left == WORK - 10 * MS_PER_MINUTE
    restored.resume()
    assert restored.state.total_paused_time == 20 * MS_PER_MINUTE
    run_phase(clock, restored, 15 * MS_PER_MINUTE)
    run_phase(clock, restored, BREAK)
    assert sessions[0][0] == WORK + BREAK
