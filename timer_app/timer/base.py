"""Mode-agnostic timer bookkeeping shared by stopwatch, countdown and intervals."""
from __future__ import annotations

import functools
import logging
import threading
from typing import Any, Callable, Optional

from .clock import Clock, now_ms
from .models import KillResult, TimerMode, TimerState
from .ticker import DEFAULT_POLL_INTERVAL_MS, Ticker, TickerFactory

LOGGER = logging.getLogger(__name__)


class BaseTimer:
    """Start/pause/resume/kill arithmetic and polling ownership.

    Elapsed time is always derived from absolute clock readings: while active
    ``start_time`` is a (possibly rebased) start and ``elapsed = now -
    start_time``; while paused ``paused_elapsed`` holds the frozen value.

    Every armed ticker carries the generation it was armed in. ``kill()``,
    ``reset()``, ``restore()`` and a fresh ``start()`` bump the generation, so
    a tick that was already in flight when polling was cancelled finds itself
    stale and leaves the state alone.

    Invalid calls (pausing an idle timer, starting a running one) are logged
    and reported through the return value; they never raise.
    """

    mode: TimerMode

    def __init__(
        self,
        clock: Clock = now_ms,
        ticker_factory: Optional[TickerFactory] = None,
        poll_interval_ms: float = DEFAULT_POLL_INTERVAL_MS,
        on_update: Optional[Callable[[float], None]] = None,
        on_state_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self.clock = clock
        self.poll_interval_ms = poll_interval_ms
        self.on_update = on_update
        self.on_state_change = on_state_change
        self._ticker_factory = ticker_factory or self._default_ticker
        self._ticker: Optional[Ticker] = None
        self._generation = 0
        self._mutex = threading.RLock()
        self.state = self._new_state()

    # ---- hooks for the concrete modes ----

    def _new_state(self) -> TimerState:
        return TimerState()

    def _on_tick(self, now: float, generation: int) -> bool:
        """Handle one poll; return True when the tick changed lifecycle state."""
        raise NotImplementedError

    def _capture_pause(self, now: float) -> None:
        if self.state.start_time is not None:
            self.state.paused_elapsed = max(0.0, now - self.state.start_time)

    def _on_resume(self, now: float) -> None:
        pass

    def _kill_result(self, now: float, elapsed: float) -> KillResult:
        return KillResult(mode=self.mode, duration_ms=elapsed)

    def _toggle_start(self) -> bool:
        raise NotImplementedError

    def _restore(self, snapshot: Any, now: float) -> bool:
        raise NotImplementedError

    def snapshot(self):
        raise NotImplementedError

    @property
    def progress(self) -> float:
        raise NotImplementedError

    # ---- read-only views ----

    @property
    def is_active(self) -> bool:
        return self.state.is_active

    @property
    def is_paused(self) -> bool:
        return self.state.is_paused

    @property
    def is_idle(self) -> bool:
        return not self.state.is_active and not self.state.is_paused

    @property
    def start_time(self) -> Optional[float]:
        return self.state.start_time

    @property
    def paused_elapsed(self) -> float:
        return self.state.paused_elapsed

    @property
    def polling(self) -> bool:
        return self._ticker is not None and self._ticker.running

    def current_elapsed(self) -> float:
        """Elapsed time read straight from the clock rather than the last tick."""
        with self._mutex:
            if self.state.is_active and self.state.start_time is not None:
                return max(0.0, self.clock() - self.state.start_time)
            return self.state.paused_elapsed

    # ---- lifecycle ----

    def pause(self) -> bool:
        with self._mutex:
            if not self.state.is_active:
                LOGGER.warning("Cannot pause %s: timer is not running", self.mode.value)
                return False
            now = self.clock()
            self._disarm_polling()
            self._capture_pause(now)
            self.state.start_time = None
            self.state.is_active = False
            self.state.is_paused = True
            LOGGER.debug("Paused %s with %.0fms elapsed", self.mode.value, self.state.paused_elapsed)
        self._emit_state_change()
        return True

    def resume(self) -> bool:
        with self._mutex:
            if not self.state.is_paused:
                LOGGER.warning("Cannot resume %s: timer is not paused", self.mode.value)
                return False
            now = self.clock()
            self.state.start_time = now - self.state.paused_elapsed
            self.state.paused_elapsed = 0.0
            self.state.is_active = True
            self.state.is_paused = False
            self._on_resume(now)
            self._arm_polling()
            LOGGER.debug("Resumed %s", self.mode.value)
        self._emit_state_change()
        return True

    def toggle(self) -> bool:
        if self.state.is_active:
            return self.pause()
        if self.state.is_paused:
            return self.resume()
        return self._toggle_start()

    def kill(self) -> KillResult:
        """Stop the timer and hand back whatever it had accrued."""
        with self._mutex:
            if self.is_idle:
                LOGGER.warning("Cannot kill %s: timer is not active", self.mode.value)
                return KillResult(mode=self.mode)
            now = self.clock()
            if self.state.is_paused:
                elapsed = self.state.paused_elapsed
            elif self.state.start_time is not None:
                elapsed = max(0.0, now - self.state.start_time)
            else:
                elapsed = 0.0
            result = self._kill_result(now, elapsed)
            self._disarm_polling()
            self._generation += 1
            self.state = self._new_state()
            LOGGER.info("Killed %s after %.0fms", self.mode.value, result.duration_ms)
        self._emit_state_change()
        return result

    def reset(self) -> None:
        with self._mutex:
            self._disarm_polling()
            self._generation += 1
            self.state = self._new_state()
            LOGGER.debug("Reset %s", self.mode.value)
        self._emit_state_change()

    teardown = reset

    def restore(self, snapshot: Any) -> bool:
        """Adopt a persisted snapshot; malformed input leaves the timer stopped."""
        with self._mutex:
            self._disarm_polling()
            self._generation += 1
            try:
                restored = self._restore(snapshot, self.clock())
            except Exception:
                LOGGER.exception("Failed to restore %s, falling back to a stopped timer", self.mode.value)
                self.state = self._new_state()
                restored = False
            if self.state.is_active:
                self._arm_polling()
        self._emit_state_change()
        return restored

    def tick(self) -> None:
        """Run one poll immediately, as the ticker would."""
        self._poll(self._generation)

    # ---- internals ----

    def _begin(self, now: float) -> None:
        self.state.start_time = now
        self.state.paused_elapsed = 0.0
        self.state.is_active = True
        self.state.is_paused = False
        self._generation += 1
        self._arm_polling()

    def _poll(self, generation: int) -> None:
        with self._mutex:
            if generation != self._generation or not self.state.is_active or self.state.start_time is None:
                return
            changed = self._on_tick(self.clock(), generation)
        if changed:
            self._emit_state_change()

    def _default_ticker(self, callback: Callable[[], None]) -> Ticker:
        return Ticker(callback, self.poll_interval_ms, name=f"{self.mode.value.lower()}-tick")

    def _arm_polling(self) -> None:
        self._disarm_polling()
        self._ticker = self._ticker_factory(functools.partial(self._poll, self._generation))
        self._ticker.start()

    def _disarm_polling(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    def _publish(self, value: float) -> None:
        self._safe_call(self.on_update, "update", value)

    def _emit_state_change(self) -> None:
        self._safe_call(self.on_state_change, "state change")

    def _safe_call(self, callback: Optional[Callable[..., None]], label: str, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            LOGGER.exception("%s %s callback failed", self.mode.value, label)
