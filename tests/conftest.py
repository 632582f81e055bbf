import sys
from pathlib import Path

import pytest

# Ensure the timer package is importable during tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from timer_app.timer.completion import CompletionSettings
from timer_app.timer.feedback import FeedbackBundle

START_MS = 1_700_000_000_000.0


class FakeClock:
    def __init__(self, now: float = START_MS) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms
        return self.now


class ManualTicker:
    """Stands in for ``Ticker``: fires only when the test says so."""

    def __init__(self, callback) -> None:
        self.callback = callback
        self.running = False
        self.started = 0

    def start(self) -> None:
        self.running = True
        self.started += 1

    def cancel(self) -> None:
        self.running = False

    def stop(self, timeout: float = 1.0) -> None:
        self.cancel()

    def fire(self) -> None:
        if self.running:
            self.callback()


class TickerRecorder:
    def __init__(self) -> None:
        self.tickers = []

    def __call__(self, callback) -> ManualTicker:
        ticker = ManualTicker(callback)
        self.tickers.append(ticker)
        return ticker

    @property
    def latest(self) -> ManualTicker:
        return self.tickers[-1]

    @property
    def running(self):
        return [t for t in self.tickers if t.running]


class FakeSound:
    def __init__(self, fail: bool = False) -> None:
        self.calls = []
        self.fail = fail

    def play(self, sound_type, volume) -> None:
        self.calls.append((sound_type, volume))
        if self.fail:
            raise RuntimeError("audio device busy")


class FakeVibrator:
    def __init__(self, fail: bool = False) -> None:
        self.calls = []
        self.fail = fail

    def vibrate(self, pattern) -> None:
        self.calls.append(pattern)
        if self.fail:
            raise RuntimeError("no motor")


class FakeNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.calls = []
        self.fail = fail

    def show_timer_complete(self, message, mode, duration_seconds) -> None:
        self.calls.append((message, mode, duration_seconds))
        if self.fail:
            raise RuntimeError("notification daemon missing")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tickers():
    return TickerRecorder()


@pytest.fixture
def feedback():
    return FeedbackBundle(sound=FakeSound(), vibrator=FakeVibrator(), notifier=FakeNotifier())


@pytest.fixture
def settings():
    return CompletionSettings()
