import math

import pytest

from conftest import FakeNotifier, FakeSound, FakeVibrator
from timer_app.timer.completion import CompletionSettings
from timer_app.timer.countdown import CountdownTimer
from timer_app.timer.feedback import FeedbackBundle
from timer_app.timer.models import SoundType, TimerMode


def make(clock, tickers, **kwargs):
    return CountdownTimer(clock=clock, ticker_factory=tickers, **kwargs)


@pytest.mark.parametrize("bad", [-5, 0, math.nan, math.inf, -math.inf, "10", True, 10**400])
def test_start_rejects_invalid_duration(clock, tickers, bad):
    cd = make(clock, tickers)
    assert cd.start(bad) is False
    assert cd.is_active is False
    assert cd.total_duration == 0
    assert tickers.tickers == []


def test_rejected_start_keeps_previous_total(clock, tickers):
    cd = make(clock, tickers)
    cd.start(30_000)
    clock.advance(1000)
    cd.pause()
    assert cd.start(math.nan) is False
    assert cd.total_duration == 30_000
    assert cd.is_paused


def test_start_rejected_while_running(clock, tickers):
    cd = make(clock, tickers)
    assert cd.start(60_000)
    assert cd.start(10_000) is False
    assert cd.total_duration == 60_000


def test_tick_counts_down(clock, tickers):
    updates = []
    cd = make(clock, tickers, on_update=updates.append)
    cd.start(10_000)
    clock.advance(2500)
    tickers.latest.fire()
    assert cd.time_left == 7500
    assert cd.progress == 0.25
    assert updates == [7500]


def test_completion_fires_exactly_once(clock, tickers, feedback):
    sessions, finished = [], []
    cd = make(
        clock,
        tickers,
        feedback=feedback,
        on_session_complete=lambda *args: sessions.append(args),
        on_timer_complete=lambda: finished.append(True),
    )
    cd.start(5000)
    ticker = tickers.latest
    clock.advance(5001)
    ticker.fire()
    for _ in range(5):
        clock.advance(100)
        ticker.fire()
        cd.tick()
        ticker.callback()

    assert sessions == [(5000, 0, None, None)]
    assert finished == [True]
    assert cd.has_completed
    assert not cd.is_active
    assert cd.time_left == 0
    assert not ticker.running
    assert feedback.sound.calls == [(SoundType.BEEP, 70)]
    assert feedback.notifier.calls == [("Timer completed!", "Countdown", 5)]


def test_completion_failures_do_not_block_callbacks(clock, tickers):
    finished = []
    bundle = FeedbackBundle(FakeSound(fail=True), FakeVibrator(fail=True), FakeNotifier(fail=True))

    def broken_session(*_args):
        raise RuntimeError("history store offline")

    cd = make(
        clock,
        tickers,
        feedback=bundle,
        on_session_complete=broken_session,
        on_timer_complete=lambda: finished.append(True),
    )
    cd.start(1000)
    clock.advance(1000)
    cd.tick()
    assert finished == [True]
    assert not cd.is_active
    assert cd.last_completion.failures == ["sound", "vibration", "notification", "session_complete"]


def test_disabled_feedback_is_skipped(clock, tickers, feedback):
    settings = CompletionSettings(sound_enabled=False, vibration_enabled=False, notifications_enabled=False)
    cd = make(clock, tickers, feedback=feedback, settings=settings)
    cd.start(1000)
    clock.advance(1000)
    cd.tick()
    assert feedback.sound.calls == []
    assert feedback.vibrator.calls == []
    assert feedback.notifier.calls == []


def test_pause_resume_conserves_time_left(clock, tickers):
    cd = make(clock, tickers)
    cd.start(60_000)
    clock.advance(15_000)
    cd.tick()
    before = cd.time_left
    cd.pause()
    clock.advance(120_000)
    assert cd.time_left == before
    cd.resume()
    cd.tick()
    assert cd.time_left == before


def test_kill_reports_elapsed_capped_at_total(clock, tickers):
    cd = make(clock, tickers)
    cd.start(10_000)
    clock.advance(4000)
    result = cd.kill()
    assert result.mode == TimerMode.COUNTDOWN
    assert result.duration_ms == 4000
    assert result.target_duration_ms == 10_000
    assert cd.total_duration == 0


def test_preset_and_start_hms(clock, tickers):
    cd = make(clock, tickers)
    assert cd.set_preset(2)
    assert cd.start()
    assert cd.total_duration == 120_000
    assert cd.set_preset(3) is False
    cd.reset()
    assert cd.set_preset(-1) is False
    assert cd.start_hms(1, 2, 3)
    assert cd.total_duration == 3_723_000


def test_restart_after_completion_completes_again(clock, tickers):
    finished = []
    cd = make(clock, tickers, on_timer_complete=lambda: finished.append(True))
    cd.start(1000)
    clock.advance(1000)
    cd.tick()
    assert cd.start(1000)
    assert not cd.has_completed
    clock.advance(1000)
    cd.tick()
    assert finished == [True, True]


def test_restore_expired_countdown_is_stopped_without_effects(clock, tickers, feedback):
    sessions, finished = [], []
    cd = make(clock, tickers)
    cd.start(10_000)
    clock.advance(3000)
    data = cd.snapshot().to_dict()

    clock.advance(60_000)
    restored = make(
        clock,
        tickers,
        feedback=feedback,
        on_session_complete=lambda *a: sessions.append(a),
        on_timer_complete=lambda: finished.append(True),
    )
    assert restored.restore(data) is False
    assert restored.is_idle
    assert restored.time_left == 0
    assert sessions == [] and finished == []
    assert feedback.sound.calls == []


def test_restore_running_countdown_fast_forwards(clock, tickers):
    cd = make(clock, tickers)
    cd.start(10_000)
    clock.advance(3000)
    data = cd.snapshot().to_dict()
    clock.advance(2000)
    restored = make(clock, tickers)
    assert restored.restore(data)
    assert restored.is_active
    assert restored.time_left == 5000
    assert restored.selected_duration == 10_000


def test_restore_paused_countdown(clock, tickers):
    cd = make(clock, tickers)
    cd.start(10_000)
    clock.advance(4000)
    cd.pause()
    data = cd.snapshot().to_dict()
    clock.advance(3_600_000)
    restored = make(clock, tickers)
    assert restored.restore(data)
    assert restored.is_paused
    assert restored.time_left == 6000


@pytest.mark.parametrize("raw", [None, "not json", {"mode": "Countdown"}, {"mode": "Nope", "saved_at": 1}, 42])
def test_restore_malformed_snapshot_degrades_to_stopped(clock, tickers, raw):
    cd = make(clock, tickers)
    assert cd.restore(raw) is False
    assert cd.is_idle
    assert cd.time_left == 0
