"""Snapshot sanitising and state reconstruction after a restart.

Snapshots arrive as plain dictionaries (from sqlite JSON) or as the snapshot
dataclasses themselves. Everything is validated before use: an unusable
snapshot yields ``None`` here and a stopped timer in the engines.

Completion effects never fire from this module. A countdown or interval whose
remaining time ran out while the process was not observing it comes back
stopped.
"""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from numbers import Real
from typing import Any, List, Optional, Union

from .clock import MS_PER_HOUR, MS_PER_MINUTE
from .models import (
    SNAPSHOT_VERSION,
    CountdownSnapshot,
    CountdownState,
    IntervalSnapshot,
    IntervalState,
    IntervalType,
    Lap,
    StopwatchSnapshot,
    StopwatchState,
    TimerMode,
)
from .validation import validate_session_name

LOGGER = logging.getLogger(__name__)

Snapshot = Union[StopwatchSnapshot, CountdownSnapshot, IntervalSnapshot]

MIN_TIMESTAMP_MS = 946684800000  # 2000-01-01
MAX_TIMESTAMP_MS = 4102444800000  # 2100-01-01
MAX_SAFE_DURATION_MS = 24 * MS_PER_HOUR
MAX_SAFE_LOOP_COUNT = 1000
MAX_SAFE_LAP_COUNT = 10000
MAX_STRING_LENGTH = 500
DEFAULT_STATE_MAX_AGE_MS = 24 * MS_PER_HOUR


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, Real):
        return False
    try:
        return math.isfinite(float(value))
    except OverflowError:
        return False


def sanitize_number(value: Any, minimum: float, maximum: float, default: float) -> float:
    if not _is_number(value):
        return default
    return max(minimum, min(maximum, float(value)))


def is_valid_timestamp(value: Any) -> bool:
    return _is_number(value) and MIN_TIMESTAMP_MS <= float(value) <= MAX_TIMESTAMP_MS


def _timestamp(value: Any) -> Optional[float]:
    return float(value) if is_valid_timestamp(value) else None


def _string(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value[:MAX_STRING_LENGTH]


def _flag(value: Any) -> bool:
    return value is True or (isinstance(value, int) and not isinstance(value, bool) and value == 1)


def _duration(value: Any, default: float = 0.0) -> float:
    return sanitize_number(value, 0.0, MAX_SAFE_DURATION_MS, default)


def _target_loops(value: Any) -> Optional[int]:
    if value is None:
        return None
    if not _is_number(value):
        LOGGER.warning("Ignoring unusable loop target %r, session runs until stopped", value)
        return None
    return int(sanitize_number(value, 1, MAX_SAFE_LOOP_COUNT, 1))


def _sanitize_laps(raw_laps: Any) -> List[Lap]:
    if not isinstance(raw_laps, list):
        return []
    laps: List[Lap] = []
    for item in raw_laps[:MAX_SAFE_LAP_COUNT]:
        if not isinstance(item, dict):
            continue
        lap_id = item.get("id")
        if not _is_number(lap_id) or float(lap_id) < 1:
            lap_id = len(laps) + 1
        laps.append(
            Lap(
                id=int(lap_id),
                time_ms=_duration(item.get("time")),
                split_ms=0.0,
                recorded_at=_timestamp(item.get("recorded_at")) or 0.0,
            )
        )
    return _recompute_splits(laps)


def _recompute_splits(laps: List[Lap]) -> List[Lap]:
    """Order laps most-recent-first and derive splits from absolute times."""

    chronological = sorted(laps, key=lambda lap: (lap.time_ms, lap.id))
    previous = 0.0
    for lap in chronological:
        lap.split_ms = max(0.0, lap.time_ms - previous)
        previous = lap.time_ms
    return list(reversed(chronological))


def sanitize_snapshot(raw: Any) -> Optional[Snapshot]:
    """Validate a raw snapshot dictionary; ``None`` when it is unusable."""

    if not isinstance(raw, dict):
        LOGGER.warning("Ignoring snapshot of type %s", type(raw).__name__)
        return None
    try:
        mode = TimerMode(raw.get("mode"))
    except ValueError:
        LOGGER.warning("Ignoring snapshot with unknown mode %r", raw.get("mode"))
        return None
    saved_at = _timestamp(raw.get("saved_at"))
    if saved_at is None:
        LOGGER.warning("Ignoring %s snapshot without a valid save time", mode.value)
        return None

    is_active = _flag(raw.get("is_active"))
    is_paused = _flag(raw.get("is_paused")) and not is_active
    start_time = _timestamp(raw.get("start_time"))
    paused_elapsed = _duration(raw.get("paused_elapsed"))
    version = int(sanitize_number(raw.get("version"), 1, 100, SNAPSHOT_VERSION))

    if mode == TimerMode.STOPWATCH:
        return StopwatchSnapshot(
            is_active=is_active,
            is_paused=is_paused,
            saved_at=saved_at,
            start_time=start_time,
            paused_elapsed=paused_elapsed,
            laps=_sanitize_laps(raw.get("laps")),
            version=version,
        )

    if mode == TimerMode.COUNTDOWN:
        return CountdownSnapshot(
            is_active=is_active,
            is_paused=is_paused,
            saved_at=saved_at,
            total_duration=_duration(raw.get("total_duration")),
            start_time=start_time,
            paused_elapsed=paused_elapsed,
            version=version,
        )

    try:
        current_interval = IntervalType(raw.get("current_interval"))
    except ValueError:
        current_interval = IntervalType.WORK
    name = _string(raw.get("session_name"))
    return IntervalSnapshot(
        is_active=is_active,
        is_paused=is_paused,
        saved_at=saved_at,
        current_interval=current_interval,
        interval_count=int(sanitize_number(raw.get("interval_count"), 0, MAX_SAFE_LOOP_COUNT, 0)),
        work_duration=_duration(raw.get("work_duration"), 25 * MS_PER_MINUTE),
        break_duration=_duration(raw.get("break_duration"), 5 * MS_PER_MINUTE),
        interval_start_time=_timestamp(raw.get("interval_start_time")),
        paused_elapsed=paused_elapsed,
        target_loops=_target_loops(raw.get("target_loops")),
        session_name=validate_session_name(name),
        session_start_time=_timestamp(raw.get("session_start_time")),
        total_paused_time=_duration(raw.get("total_paused_time")),
        paused_at=_timestamp(raw.get("paused_at")),
        version=version,
    )


def coerce_snapshot(raw: Any, mode: Optional[TimerMode] = None) -> Optional[Snapshot]:
    """Accept a snapshot object, a dictionary or a JSON string."""

    if isinstance(raw, (StopwatchSnapshot, CountdownSnapshot, IntervalSnapshot)):
        raw = raw.to_dict()
    elif isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            LOGGER.warning("Ignoring snapshot that is not valid JSON")
            return None
    snapshot = sanitize_snapshot(raw)
    if snapshot is not None and mode is not None and snapshot.mode != mode:
        LOGGER.warning("Ignoring %s snapshot offered to the %s timer", snapshot.mode.value, mode.value)
        return None
    return snapshot


def is_snapshot_too_old(snapshot: Snapshot, now: float, max_age_ms: float = DEFAULT_STATE_MAX_AGE_MS) -> bool:
    """Older than ``max_age_ms``, or saved in the future (clock moved backwards)."""

    age = now - snapshot.saved_at
    return age > max_age_ms or age < 0


@dataclass
class ResumeValidation:
    can_resume: bool
    reason: Optional[str] = None
    is_completed: bool = False
    remaining_ms: Optional[float] = None


def _frozen_elapsed(start_time: Optional[float], paused_elapsed: float, is_active: bool, now: float) -> Optional[float]:
    if is_active:
        if start_time is None:
            return None
        return now - start_time + paused_elapsed
    return (now - start_time if start_time is not None else 0.0) + paused_elapsed


def validate_resume(snapshot: Snapshot, now: float, max_age_ms: float = DEFAULT_STATE_MAX_AGE_MS) -> ResumeValidation:
    """Decide whether a saved timer can be picked up where it left off."""

    if is_snapshot_too_old(snapshot, now, max_age_ms):
        if now < snapshot.saved_at:
            return ResumeValidation(False, "System time was changed (went backwards)")
        return ResumeValidation(False, f"Timer is more than {max_age_ms / MS_PER_HOUR:g} hours old")
    if not snapshot.is_active and not snapshot.is_paused:
        return ResumeValidation(False, "Timer was not running")

    if isinstance(snapshot, StopwatchSnapshot):
        return ResumeValidation(True)

    if isinstance(snapshot, CountdownSnapshot):
        elapsed = _frozen_elapsed(snapshot.start_time, snapshot.paused_elapsed, snapshot.is_active, now)
        if elapsed is None:
            return ResumeValidation(False, "No start time recorded")
        remaining = snapshot.total_duration - elapsed
        if remaining <= 0:
            return ResumeValidation(False, "Timer already completed", is_completed=True, remaining_ms=0.0)
        return ResumeValidation(True, remaining_ms=remaining)

    elapsed = _frozen_elapsed(snapshot.interval_start_time, snapshot.paused_elapsed, snapshot.is_active, now)
    if elapsed is None:
        return ResumeValidation(False, "No interval start time recorded")
    phase = snapshot.work_duration if snapshot.current_interval == IntervalType.WORK else snapshot.break_duration
    remaining = phase - elapsed
    if remaining <= 0:
        if (
            snapshot.current_interval == IntervalType.BREAK
            and snapshot.target_loops is not None
            and snapshot.interval_count + 1 >= snapshot.target_loops
        ):
            return ResumeValidation(False, "Session already completed", is_completed=True, remaining_ms=0.0)
        return ResumeValidation(True, remaining_ms=0.0)
    return ResumeValidation(True, remaining_ms=remaining)


def restore_stopwatch(snapshot: StopwatchSnapshot, now: float) -> StopwatchState:
    state = StopwatchState(laps=list(snapshot.laps))
    if snapshot.is_active and snapshot.start_time is not None:
        elapsed = max(0.0, now - snapshot.start_time + snapshot.paused_elapsed)
        state.is_active = True
        state.start_time = now - elapsed
        state.elapsed = elapsed
    elif snapshot.is_paused:
        elapsed = _frozen_elapsed(snapshot.start_time, snapshot.paused_elapsed, False, now) or 0.0
        state.is_paused = True
        state.paused_elapsed = max(0.0, elapsed)
        state.elapsed = state.paused_elapsed
    else:
        return StopwatchState()
    return state


def restore_countdown(snapshot: CountdownSnapshot, now: float) -> CountdownState:
    total = snapshot.total_duration
    if total <= 0:
        return CountdownState()
    if snapshot.is_active and snapshot.start_time is not None:
        elapsed = max(0.0, now - snapshot.start_time + snapshot.paused_elapsed)
        remaining = total - elapsed
        if remaining <= 0:
            LOGGER.info("Countdown finished while not observed, restoring stopped")
            return CountdownState()
        return CountdownState(
            is_active=True, start_time=now - elapsed, total_duration=total, time_left=remaining
        )
    if snapshot.is_paused:
        elapsed = max(0.0, _frozen_elapsed(snapshot.start_time, snapshot.paused_elapsed, False, now) or 0.0)
        remaining = total - elapsed
        if remaining <= 0:
            return CountdownState()
        return CountdownState(is_paused=True, paused_elapsed=elapsed, total_duration=total, time_left=remaining)
    return CountdownState()


def restore_intervals(snapshot: IntervalSnapshot, now: float) -> IntervalState:
    """Rebuild phase, cycle count and remaining time for an interval session.

    ``session_start_time`` is taken from the snapshot when present. Older
    snapshots lack it, in which case it is reconstructed from the completed
    cycles and phase durations; that figure ignores earlier pauses.
    """

    stopped = IntervalState(work_duration=snapshot.work_duration, break_duration=snapshot.break_duration)
    if snapshot.work_duration <= 0 or snapshot.break_duration <= 0:
        return IntervalState()

    state = IntervalState(
        current_interval=snapshot.current_interval,
        interval_count=snapshot.interval_count,
        target_loop_count=snapshot.target_loops,
        session_name=snapshot.session_name,
        work_duration=snapshot.work_duration,
        break_duration=snapshot.break_duration,
        total_paused_time=snapshot.total_paused_time,
    )
    phase = state.phase_duration

    if snapshot.is_active and snapshot.interval_start_time is not None:
        elapsed = max(0.0, now - snapshot.interval_start_time + snapshot.paused_elapsed)
        remaining = phase - elapsed
        if remaining <= 0:
            LOGGER.info("Interval phase finished while not observed, restoring stopped")
            return stopped
        state.is_active = True
        state.start_time = now - elapsed
        state.time_left = remaining
        reference = now
    elif snapshot.is_paused:
        elapsed = max(0.0, _frozen_elapsed(snapshot.interval_start_time, snapshot.paused_elapsed, False, now) or 0.0)
        remaining = phase - elapsed
        if remaining <= 0:
            return stopped
        state.is_paused = True
        state.paused_elapsed = elapsed
        state.time_left = remaining
        state.paused_at = snapshot.paused_at if snapshot.paused_at is not None else snapshot.saved_at
        reference = state.paused_at
    else:
        return stopped

    if snapshot.session_start_time is not None:
        state.session_start_time = snapshot.session_start_time
    else:
        cycle = snapshot.work_duration + snapshot.break_duration
        state.session_start_time = reference - (elapsed + snapshot.interval_count * cycle)
        LOGGER.debug("Snapshot has no session start, approximated from %s completed cycles", snapshot.interval_count)
    return state
