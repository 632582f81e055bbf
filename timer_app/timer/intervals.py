"""Work/break interval sessions."""
from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Tuple

from .base import BaseTimer
from .clock import MS_PER_MINUTE, Clock, now_ms
from .completion import (
    CompletionCallbacks,
    CompletionRequest,
    CompletionSettings,
    SessionCompleteCallback,
    calculate_session_duration,
    handle_session_complete,
)
from .feedback import FeedbackBundle
from .models import IntervalSnapshot, IntervalState, IntervalType, KillResult, TimerMode, TransitionPhase
from .restore import coerce_snapshot, restore_intervals
from .state_machine import (
    IntervalPosition,
    TransitionGuard,
    calculate_interval_progress,
    calculate_next_interval,
    describe_interval,
    get_next_duration,
    is_valid_interval_config,
    should_complete_session,
)
from .ticker import DEFAULT_POLL_INTERVAL_MS, TickerFactory
from .validation import is_valid_loop_count, validate_session_name

LOGGER = logging.getLogger(__name__)

PhaseChangeCallback = Callable[[IntervalType, int], None]
# generation, phase, cycle count, phase start
BoundaryMarker = Tuple[int, IntervalType, int, Optional[float]]


class IntervalTimer(BaseTimer):
    """Alternating work and break phases with an optional loop target.

    When a phase runs out the tick cancels polling and then decides, under the
    transition guard, between completing the session and switching to the
    next phase. A tick that cannot take the guard re-arms polling and leaves
    the decision to the next tick. A tick whose boundary was already handled
    (by a re-entrant tick from inside a callback, say) does nothing.

    Besides the phase-local ``start_time``/``paused_elapsed`` the session keeps
    ``session_start_time`` and ``total_paused_time`` so the reported session
    duration excludes pauses.
    """

    mode = TimerMode.INTERVALS
    state: IntervalState

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
        on_phase_change: Optional[PhaseChangeCallback] = None,
        work_duration_ms: float = 25 * MS_PER_MINUTE,
        break_duration_ms: float = 5 * MS_PER_MINUTE,
    ) -> None:
        self.work_duration = work_duration_ms
        self.break_duration = break_duration_ms
        super().__init__(clock, ticker_factory, poll_interval_ms, on_update, on_state_change)
        self.settings = settings or CompletionSettings()
        self.feedback = feedback or FeedbackBundle()
        self.on_session_complete = on_session_complete
        self.on_timer_complete = on_timer_complete
        self.on_phase_change = on_phase_change
        self.guard = TransitionGuard()
        self.last_completion = None

    def _new_state(self) -> IntervalState:
        return IntervalState(work_duration=self.work_duration, break_duration=self.break_duration)

    # ---- read-only views ----

    @property
    def time_left(self) -> float:
        return self.state.time_left

    @property
    def current_interval(self) -> IntervalType:
        return self.state.current_interval

    @property
    def interval_count(self) -> int:
        return self.state.interval_count

    @property
    def session_name(self) -> Optional[str]:
        return self.state.session_name

    @property
    def target_loop_count(self) -> Optional[int]:
        return self.state.target_loop_count

    @property
    def transition_phase(self) -> TransitionPhase:
        return self.guard.phase

    @property
    def description(self) -> str:
        return describe_interval(self.state.current_interval, self.state.interval_count, self.state.target_loop_count)

    @property
    def progress(self) -> float:
        if self.is_idle:
            return 0.0
        phase = self.state.phase_duration
        return calculate_interval_progress(phase - self.state.time_left, phase)

    # ---- configuration ----

    def set_durations(self, work_duration_ms: float, break_duration_ms: float) -> bool:
        if not is_valid_interval_config(work_duration_ms, break_duration_ms):
            LOGGER.error("Invalid interval durations: work=%r break=%r", work_duration_ms, break_duration_ms)
            return False
        with self._mutex:
            if not self.is_idle:
                LOGGER.warning("Cannot change interval durations during a session")
                return False
            self.work_duration = float(work_duration_ms)
            self.break_duration = float(break_duration_ms)
            self.state.work_duration = self.work_duration
            self.state.break_duration = self.break_duration
        return True

    # ---- lifecycle ----

    def start(self, session_name: Optional[str] = None, target_loops: Optional[int] = None) -> bool:
        if not is_valid_interval_config(self.work_duration, self.break_duration):
            LOGGER.error("Invalid interval durations: work=%r break=%r", self.work_duration, self.break_duration)
            return False
        if not is_valid_loop_count(target_loops):
            LOGGER.error("Invalid loop count: %r", target_loops)
            return False
        with self._mutex:
            if self.state.is_active:
                LOGGER.warning("Interval session is already running")
                return False
            now = self.clock()
            self.state = IntervalState(
                target_loop_count=int(target_loops) if target_loops is not None else None,
                session_name=validate_session_name(session_name),
                work_duration=self.work_duration,
                break_duration=self.break_duration,
                session_start_time=now,
                time_left=self.work_duration,
            )
            self._begin(now)
            LOGGER.info("Interval session started (%s)", self.description)
        self._emit_state_change()
        return True

    def _toggle_start(self) -> bool:
        return self.start()

    def _capture_pause(self, now: float) -> None:
        super()._capture_pause(now)
        self.state.paused_at = now
        self.state.time_left = max(0.0, self.state.phase_duration - self.state.paused_elapsed)

    def _on_resume(self, now: float) -> None:
        if self.state.paused_at is not None:
            self.state.total_paused_time += max(0.0, now - self.state.paused_at)
        self.state.paused_at = None

    def _kill_result(self, now: float, elapsed: float) -> KillResult:
        duration = 0.0
        if self.state.session_start_time is not None:
            end = now
            if self.state.is_paused and self.state.paused_at is not None:
                end = self.state.paused_at
            duration = calculate_session_duration(self.state.session_start_time, end, self.state.total_paused_time)
        return KillResult(
            mode=self.mode,
            duration_ms=duration,
            interval_count=self.state.interval_count,
            session_name=self.state.session_name,
            target_loop_count=self.state.target_loop_count,
        )

    # ---- ticking ----

    def _marker(self) -> BoundaryMarker:
        return (self._generation, self.state.current_interval, self.state.interval_count, self.state.start_time)

    def _on_tick(self, now: float, generation: int) -> bool:
        elapsed = max(0.0, now - self.state.start_time)
        self.state.time_left = max(0.0, self.state.phase_duration - elapsed)
        marker = self._marker()
        self._publish(self.state.time_left)
        if self.state.time_left > 0 or self._marker() != marker:
            return False
        return self._handle_boundary(now, marker)

    def _handle_boundary(self, now: float, marker: BoundaryMarker) -> bool:
        self._disarm_polling()
        switched = False
        with self.guard.hold() as acquired:
            if not acquired:
                LOGGER.warning("Transition already in progress, deferring to the next tick")
                if self.state.is_active and self._generation == marker[0]:
                    self._arm_polling()
                return False
            if self._marker() != marker or not self.state.is_active:
                return False
            position = IntervalPosition(self.state.current_interval, self.state.interval_count)
            if should_complete_session(position, self.state.target_loop_count):
                self.guard.phase = TransitionPhase.COMPLETING
                self._complete_session(now)
            else:
                self.guard.phase = TransitionPhase.SWITCHING
                self._switch_interval(now)
                switched = True
        if switched:
            self._safe_call(
                self.on_phase_change, "phase change", self.state.current_interval, self.state.interval_count
            )
        return True

    def _complete_session(self, now: float) -> None:
        count = self.state.interval_count + 1
        duration = 0.0
        if self.state.session_start_time is not None:
            duration = calculate_session_duration(self.state.session_start_time, now, self.state.total_paused_time)
        name = self.state.session_name
        target = self.state.target_loop_count

        self.state.is_active = False
        self.state.is_paused = False
        self.state.start_time = None
        self.state.paused_elapsed = 0.0
        self.state.time_left = 0.0
        self.state.interval_count = count
        LOGGER.info("Interval session complete after %s cycles (%.0fms)", count, duration)

        self.last_completion = handle_session_complete(
            CompletionRequest(
                mode=self.mode,
                duration_ms=duration,
                interval_count=count,
                session_name=name,
                target_loop_count=target,
                settings=self.settings,
            ),
            self.feedback,
            CompletionCallbacks(self.on_session_complete, self.on_timer_complete),
        )

    def _switch_interval(self, now: float) -> None:
        position = IntervalPosition(self.state.current_interval, self.state.interval_count)
        next_duration = get_next_duration(position, self.state.work_duration, self.state.break_duration)
        nxt = calculate_next_interval(position.type, position.count)
        self.state.current_interval = nxt.type
        self.state.interval_count = nxt.count
        self.state.start_time = now
        self.state.paused_elapsed = 0.0
        self.state.time_left = next_duration
        LOGGER.info("Interval switched to %s", self.description)
        self._arm_polling()

    # ---- persistence ----

    def snapshot(self) -> IntervalSnapshot:
        with self._mutex:
            return IntervalSnapshot(
                is_active=self.state.is_active,
                is_paused=self.state.is_paused,
                saved_at=self.clock(),
                current_interval=self.state.current_interval,
                interval_count=self.state.interval_count,
                work_duration=self.state.work_duration,
                break_duration=self.state.break_duration,
                interval_start_time=self.state.interval_start_time,
                paused_elapsed=self.state.base_paused_elapsed,
                target_loops=self.state.target_loop_count,
                session_name=self.state.session_name,
                session_start_time=self.state.session_start_time,
                total_paused_time=self.state.total_paused_time,
                paused_at=self.state.paused_at,
            )

    def _restore(self, snapshot: Any, now: float) -> bool:
        parsed = coerce_snapshot(snapshot, self.mode)
        if parsed is None:
            self.state = self._new_state()
            return False
        self.state = restore_intervals(parsed, now)
        self.work_duration = self.state.work_duration
        self.break_duration = self.state.break_duration
        LOGGER.info("Restored interval session (%s, %.0fms left)", self.description, self.state.time_left)
        return not self.is_idle
