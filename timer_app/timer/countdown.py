"""Fixed-duration countdown with exactly-once completion."""
from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from .base import BaseTimer
from .clock import MS_PER_HOUR, MS_PER_MINUTE, MS_PER_SECOND, Clock, now_ms
from .completion import (
    CompletionCallbacks,
    CompletionRequest,
    CompletionSettings,
    SessionCompleteCallback,
    handle_session_complete,
)
from .feedback import FeedbackBundle
from .models import CountdownSnapshot, CountdownState, KillResult, TimerMode
from .restore import coerce_snapshot, restore_countdown
from .ticker import DEFAULT_POLL_INTERVAL_MS, TickerFactory
from .validation import is_valid_duration

LOGGER = logging.getLogger(__name__)

DEFAULT_COUNTDOWN_MS = 5 * MS_PER_MINUTE


class CountdownTimer(BaseTimer):
    """Counts down from a duration fixed at ``start()``.

    Reaching zero stops the timer first and then hands the full duration to
    the completion handler. ``has_completed`` keeps later ticks of the same
    run from completing it again.
    """

    mode = TimerMode.COUNTDOWN
    state: CountdownState

    def __init__(
        self,
        clock: Clock = now_ms,
        ticker_factory: Optional[TickerFactory] = None,
        poll_interval_ms: float = DEFAULT_POLL_INTERVAL_MS,
        on_update: Optional[Callable[[float], None]] = None,
        on_state_change: Optional[Callable[[], None]] = None,
        settings: Optional[CompletionSettings] = None,
        feedback: Optional[FeedbackBundle] = None,
        on_session_complete: Optional[SessionCompleteCallback] = None,
        on_timer_complete: Optional[Callable[[], None]] = None,
        default_duration_ms: float = DEFAULT_COUNTDOWN_MS,
    ) -> None:
        super().__init__(clock, ticker_factory, poll_interval_ms, on_update, on_state_change)
        self.settings = settings or CompletionSettings()
        self.feedback = feedback or FeedbackBundle()
        self.on_session_complete = on_session_complete
        self.on_timer_complete = on_timer_complete
        self.selected_duration = default_duration_ms
        self.last_completion = None

    def _new_state(self) -> CountdownState:
        return CountdownState()

    @property
    def time_left(self) -> float:
        return self.state.time_left

    @property
    def total_duration(self) -> float:
        return self.state.total_duration

    @property
    def has_completed(self) -> bool:
        return self.state.has_completed

    @property
    def progress(self) -> float:
        total = self.state.total_duration
        if total <= 0:
            return 0.0
        return min(1.0, max(0.0, (total - self.state.time_left) / total))

    def set_preset(self, minutes: float) -> bool:
        """Select the duration used by the next argument-less ``start()``."""
        if not is_valid_duration(minutes):
            LOGGER.error("Invalid countdown preset: %r minutes", minutes)
            return False
        duration = float(minutes) * MS_PER_MINUTE
        with self._mutex:
            if self.state.is_active:
                LOGGER.warning("Cannot change the countdown preset while it is running")
                return False
            self.selected_duration = duration
        return True

    def start(self, duration_ms: Optional[float] = None) -> bool:
        duration = self.selected_duration if duration_ms is None else duration_ms
        if not is_valid_duration(duration):
            LOGGER.error("Invalid countdown duration: %r", duration)
            return False
        with self._mutex:
            if self.state.is_active:
                LOGGER.warning("Countdown is already running")
                return False
            self.selected_duration = float(duration)
            self.state = CountdownState(total_duration=float(duration), time_left=float(duration))
            self._begin(self.clock())
            LOGGER.info("Countdown started for %.0fms", duration)
        self._emit_state_change()
        return True

    def start_hms(self, hours: int = 0, minutes: int = 0, seconds: int = 0) -> bool:
        return self.start(hours * MS_PER_HOUR + minutes * MS_PER_MINUTE + seconds * MS_PER_SECOND)

    def _toggle_start(self) -> bool:
        return self.start()

    def _on_tick(self, now: float, generation: int) -> bool:
        elapsed = max(0.0, now - self.state.start_time)
        self.state.time_left = max(0.0, self.state.total_duration - elapsed)
        self._publish(self.state.time_left)
        if self.state.time_left > 0 or self.state.has_completed:
            return False
        self.state.has_completed = True
        total = self.state.total_duration
        self._stop_after_completion()
        LOGGER.info("Countdown of %.0fms completed", total)
        self.last_completion = handle_session_complete(
            CompletionRequest(mode=self.mode, duration_ms=total, settings=self.settings),
            self.feedback,
            CompletionCallbacks(self.on_session_complete, self.on_timer_complete),
        )
        return True

    def _stop_after_completion(self) -> None:
        self._disarm_polling()
        self.state.is_active = False
        self.state.is_paused = False
        self.state.start_time = None
        self.state.paused_elapsed = 0.0

    def _capture_pause(self, now: float) -> None:
        super()._capture_pause(now)
        self.state.time_left = max(0.0, self.state.total_duration - self.state.paused_elapsed)

    def _kill_result(self, now: float, elapsed: float) -> KillResult:
        total = self.state.total_duration
        return KillResult(mode=self.mode, duration_ms=min(elapsed, total), target_duration_ms=total)

    def snapshot(self) -> CountdownSnapshot:
        with self._mutex:
            return CountdownSnapshot(
                is_active=self.state.is_active,
                is_paused=self.state.is_paused,
                saved_at=self.clock(),
                total_duration=self.state.total_duration,
                start_time=self.state.start_time,
                paused_elapsed=self.state.paused_elapsed,
            )

    def _restore(self, snapshot: Any, now: float) -> bool:
        parsed = coerce_snapshot(snapshot, self.mode)
        if parsed is None:
            self.state = CountdownState()
            return False
        self.state = restore_countdown(parsed, now)
        if self.state.total_duration > 0:
            self.selected_duration = self.state.total_duration
        LOGGER.info("Restored countdown with %.0fms left", self.state.time_left)
        return not self.is_idle
