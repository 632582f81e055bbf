"""Open-ended stopwatch with lap recording."""
from __future__ import annotations

import logging
from typing import Any, List, Optional

from .base import BaseTimer
from .clock import MS_PER_MINUTE
from .models import KillResult, Lap, StopwatchSnapshot, StopwatchState, TimerMode
from .restore import coerce_snapshot, restore_stopwatch

LOGGER = logging.getLogger(__name__)


class StopwatchTimer(BaseTimer):
    """Counts up until killed or reset. Laps are kept most recent first."""

    mode = TimerMode.STOPWATCH
    state: StopwatchState

    def _new_state(self) -> StopwatchState:
        return StopwatchState()

    @property
    def elapsed(self) -> float:
        return self.state.elapsed

    @property
    def laps(self) -> List[Lap]:
        return list(self.state.laps)

    @property
    def best_lap(self) -> Optional[Lap]:
        if not self.state.laps:
            return None
        return min(self.state.laps, key=lambda lap: lap.split_ms)

    @property
    def progress(self) -> float:
        """Position of the seconds hand within the current minute."""
        return (self.state.elapsed % MS_PER_MINUTE) / MS_PER_MINUTE

    def start(self) -> bool:
        with self._mutex:
            if self.state.is_active:
                LOGGER.warning("Stopwatch is already running")
                return False
            self.state = StopwatchState()
            self._begin(self.clock())
            LOGGER.info("Stopwatch started")
        self._emit_state_change()
        return True

    def _toggle_start(self) -> bool:
        return self.start()

    def add_lap(self) -> Optional[Lap]:
        with self._mutex:
            if not self.state.is_active or self.state.start_time is None:
                LOGGER.warning("Laps can only be recorded while the stopwatch is running")
                return None
            now = self.clock()
            elapsed = max(0.0, now - self.state.start_time)
            previous = self.state.laps[0].time_ms if self.state.laps else 0.0
            lap = Lap(
                id=len(self.state.laps) + 1,
                time_ms=elapsed,
                split_ms=elapsed - previous,
                recorded_at=now,
            )
            self.state.laps.insert(0, lap)
            self.state.elapsed = elapsed
            LOGGER.debug("Lap %s at %.0fms (split %.0fms)", lap.id, lap.time_ms, lap.split_ms)
        self._publish(elapsed)
        return lap

    def _on_tick(self, now: float, generation: int) -> bool:
        self.state.elapsed = max(0.0, now - self.state.start_time)
        self._publish(self.state.elapsed)
        return False

    def _capture_pause(self, now: float) -> None:
        super()._capture_pause(now)
        self.state.elapsed = self.state.paused_elapsed

    def _kill_result(self, now: float, elapsed: float) -> KillResult:
        return KillResult(mode=self.mode, duration_ms=elapsed, laps=list(self.state.laps))

    def snapshot(self) -> StopwatchSnapshot:
        with self._mutex:
            return StopwatchSnapshot(
                is_active=self.state.is_active,
                is_paused=self.state.is_paused,
                saved_at=self.clock(),
                start_time=self.state.start_time,
                paused_elapsed=self.state.paused_elapsed,
                laps=list(self.state.laps),
            )

    def _restore(self, snapshot: Any, now: float) -> bool:
        parsed = coerce_snapshot(snapshot, self.mode)
        if parsed is None:
            self.state = StopwatchState()
            return False
        self.state = restore_stopwatch(parsed, now)
        LOGGER.info("Restored stopwatch at %.0fms", self.state.elapsed)
        return not self.is_idle
