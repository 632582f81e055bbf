from timer_app.timer.models import (
    IntervalSnapshot,
    IntervalState,
    IntervalType,
    Lap,
    SessionRecord,
    StopwatchSnapshot,
    TimerMode,
)


def test_session_record_from_row():
    row = ("abc", "Intervals", 90_000.0, 1.0, 3, "Deep", 3, 0, None, 0.0, 1)
    record = SessionRecord.from_row(row)
    assert record.mode == TimerMode.INTERVALS
    assert record.interval_count == 3
    assert record.session_name == "Deep"
    assert record.completed is True


def test_session_record_from_row_handles_nulls():
    row = ("abc", "Stopwatch", None, None, None, None, None, None, None, None, 0)
    record = SessionRecord.from_row(row)
    assert record.duration_ms == 0.0
    assert record.session_name == ""
    assert record.lap_count == 0
    assert record.target_loop_count is None
    assert record.completed is False


def test_interval_state_phase_views():
    state = IntervalState(work_duration=100, break_duration=20, start_time=5.0, paused_elapsed=3.0)
    assert state.phase_duration == 100
    assert state.interval_start_time == 5.0
    assert state.base_paused_elapsed == 3.0
    state.current_interval = IntervalType.BREAK
    assert state.phase_duration == 20


def test_snapshot_dicts_are_plain_data():
    sw = StopwatchSnapshot(is_active=True, is_paused=False, saved_at=10.0, start_time=1.0, laps=[Lap(1, 5.0, 5.0, 6.0)])
    assert sw.to_dict()["laps"] == [{"id": 1, "time": 5.0, "recorded_at": 6.0}]
    assert sw.to_dict()["mode"] == "Stopwatch"

    iv = IntervalSnapshot(
        is_active=False,
        is_paused=True,
        saved_at=10.0,
        current_interval=IntervalType.BREAK,
        interval_count=2,
        work_duration=100,
        break_duration=20,
    )
    data = iv.to_dict()
    assert data["current_interval"] == "break"
    assert data["mode"] == "Intervals"
    assert data["target_loops"] is None
