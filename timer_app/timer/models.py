"""Data models for the timer engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .clock import MS_PER_MINUTE

SNAPSHOT_VERSION = 1


class TimerMode(str, Enum):
    STOPWATCH = "Stopwatch"
    COUNTDOWN = "Countdown"
    INTERVALS = "Intervals"


class IntervalType(str, Enum):
    WORK = "work"
    BREAK = "break"


class TransitionPhase(str, Enum):
    IDLE = "idle"
    COMPLETING = "completing"
    SWITCHING = "switching"


class SoundType(str, Enum):
    BEEP = "beep"
    BELL = "bell"
    CHIME = "chime"
    DIGITAL = "digital"
    TICK = "tick"


class VibrationPattern(str, Enum):
    SHORT = "short"
    LONG = "long"
    PULSE = "pulse"


@dataclass
class TimerState:
    """Mode-agnostic bookkeeping shared by every engine."""

    is_active: bool = False
    is_paused: bool = False
    start_time: Optional[float] = None
    paused_elapsed: float = 0.0


@dataclass
class Lap:
    id: int
    time_ms: float
    split_ms: float
    recorded_at: float = 0.0


@dataclass
class StopwatchState(TimerState):
    elapsed: float = 0.0
    laps: List[Lap] = field(default_factory=list)


@dataclass
class CountdownState(TimerState):
    total_duration: float = 0.0
    time_left: float = 0.0
    has_completed: bool = False


@dataclass
class IntervalState(TimerState):
    """Work/break session state.

    ``start_time`` marks the start of the current phase and ``paused_elapsed``
    the time spent in the current phase when the session was paused; the
    ``interval_start_time``/``base_paused_elapsed`` properties expose them under
    their interval names.
    """

    current_interval: IntervalType = IntervalType.WORK
    interval_count: int = 0
    target_loop_count: Optional[int] = None
    session_name: Optional[str] = None
    work_duration: float = 25 * MS_PER_MINUTE
    break_duration: float = 5 * MS_PER_MINUTE
    session_start_time: Optional[float] = None
    total_paused_time: float = 0.0
    paused_at: Optional[float] = None
    time_left: float = 0.0

    @property
    def interval_start_time(self) -> Optional[float]:
        return self.start_time

    @property
    def base_paused_elapsed(self) -> float:
        return self.paused_elapsed

    @property
    def phase_duration(self) -> float:
        if self.current_interval == IntervalType.WORK:
            return self.work_duration
        return self.break_duration


@dataclass
class KillResult:
    """What a killed timer had accrued, handed to the history subsystem."""

    mode: TimerMode
    duration_ms: float = 0.0
    interval_count: int = 0
    session_name: Optional[str] = None
    target_loop_count: Optional[int] = None
    target_duration_ms: float = 0.0
    laps: List[Lap] = field(default_factory=list)


@dataclass
class StopwatchSnapshot:
    is_active: bool
    is_paused: bool
    saved_at: float
    start_time: Optional[float] = None
    paused_elapsed: float = 0.0
    laps: List[Lap] = field(default_factory=list)
    version: int = SNAPSHOT_VERSION
    mode: TimerMode = TimerMode.STOPWATCH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "version": self.version,
            "is_active": self.is_active,
            "is_paused": self.is_paused,
            "saved_at": self.saved_at,
            "start_time": self.start_time,
            "paused_elapsed": self.paused_elapsed,
            "laps": [
                {"id": lap.id, "time": lap.time_ms, "recorded_at": lap.recorded_at}
                for lap in self.laps
            ],
        }


@dataclass
class CountdownSnapshot:
    is_active: bool
    is_paused: bool
    saved_at: float
    total_duration: float
    start_time: Optional[float] = None
    paused_elapsed: float = 0.0
    version: int = SNAPSHOT_VERSION
    mode: TimerMode = TimerMode.COUNTDOWN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "version": self.version,
            "is_active": self.is_active,
            "is_paused": self.is_paused,
            "saved_at": self.saved_at,
            "start_time": self.start_time,
            "total_duration": self.total_duration,
            "paused_elapsed": self.paused_elapsed,
        }


@dataclass
class IntervalSnapshot:
    is_active: bool
    is_paused: bool
    saved_at: float
    current_interval: IntervalType
    interval_count: int
    work_duration: float
    break_duration: float
    interval_start_time: Optional[float] = None
    paused_elapsed: float = 0.0
    target_loops: Optional[int] = None
    session_name: Optional[str] = None
    session_start_time: Optional[float] = None
    total_paused_time: float = 0.0
    paused_at: Optional[float] = None
    version: int = SNAPSHOT_VERSION
    mode: TimerMode = TimerMode.INTERVALS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "version": self.version,
            "is_active": self.is_active,
            "is_paused": self.is_paused,
            "saved_at": self.saved_at,
            "current_interval": self.current_interval.value,
            "interval_count": self.interval_count,
            "target_loops": self.target_loops,
            "session_name": self.session_name,
            "work_duration": self.work_duration,
            "break_duration": self.break_duration,
            "interval_start_time": self.interval_start_time,
            "paused_elapsed": self.paused_elapsed,
            "session_start_time": self.session_start_time,
            "total_paused_time": self.total_paused_time,
            "paused_at": self.paused_at,
        }


@dataclass
class SessionRecord:
    """A finished session as kept in history."""

    id: str
    mode: TimerMode
    duration_ms: float
    recorded_at: float
    interval_count: int = 0
    session_name: str = ""
    target_loop_count: Optional[int] = None
    lap_count: int = 0
    best_lap_ms: Optional[float] = None
    target_duration_ms: float = 0.0
    completed: bool = False

    @classmethod
    def from_row(cls, row: tuple) -> "SessionRecord":
        return cls(
            id=row[0],
            mode=TimerMode(row[1]),
            duration_ms=row[2] or 0.0,
            recorded_at=row[3] or 0.0,
            interval_count=row[4] if len(row) > 4 and row[4] is not None else 0,
            session_name=row[5] if len(row) > 5 and row[5] is not None else "",
            target_loop_count=row[6] if len(row) > 6 else None,
            lap_count=row[7] if len(row) > 7 and row[7] is not None else 0,
            best_lap_ms=row[8] if len(row) > 8 else None,
            target_duration_ms=row[9] if len(row) > 9 and row[9] is not None else 0.0,
            completed=bool(row[10]) if len(row) > 10 else False,
        )


@dataclass
class ModeStats:
    """Aggregated history statistics per timer mode."""

    mode: str
    session_count: int
    total_ms: float
    avg_ms: float
    completed_count: int
