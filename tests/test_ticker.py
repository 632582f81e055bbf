import threading
import time

from timer_app.timer.countdown import CountdownTimer
from timer_app.timer.ticker import Ticker


def test_ticker_calls_until_cancelled():
    calls = []
    ticker = Ticker(lambda: calls.append(time.monotonic()), interval_ms=10)
    ticker.start()
    time.sleep(0.2)
    ticker.stop()
    count = len(calls)
    assert count > 0
    assert not ticker.running
    time.sleep(0.1)
    assert len(calls) == count


def test_ticker_survives_callback_errors():
    calls = []

    def flaky():
        calls.append(1)
        raise RuntimeError("tick failed")

    ticker = Ticker(flaky, interval_ms=10)
    ticker.start()
    time.sleep(0.1)
    ticker.stop()
    assert len(calls) > 1


def test_cancel_from_inside_callback_does_not_deadlock():
    done = threading.Event()
    holder = {}

    def once():
        holder["ticker"].stop()
        done.set()

    holder["ticker"] = Ticker(once, interval_ms=10)
    holder["ticker"].start()
    assert done.wait(1)
    assert not holder["ticker"].running


def test_countdown_completes_on_real_ticker():
    finished = threading.Event()
    sessions = []
    countdown = CountdownTimer(
        poll_interval_ms=10,
        on_session_complete=lambda *a: sessions.append(a),
        on_timer_complete=finished.set,
    )
    assert countdown.start(50)
    assert finished.wait(2)
    time.sleep(0.05)
    assert len(sessions) == 1
    assert not countdown.is_active
    assert not countdown.polling
