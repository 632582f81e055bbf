"""Pure work/break transition rules and the transition guard."""
from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from .models import IntervalType, TransitionPhase
from .validation import is_valid_duration, is_valid_loop_count


@dataclass(frozen=True)
class IntervalPosition:
    type: IntervalType
    count: int


def get_next_interval(current: IntervalPosition) -> IntervalPosition:
    """work -> break keeps the count, break -> work completes a cycle."""

    if current.type == IntervalType.WORK:
        return IntervalPosition(IntervalType.BREAK, current.count)
    return IntervalPosition(IntervalType.WORK, current.count + 1)


def should_complete_session(current: IntervalPosition, target_loop_count: Optional[int]) -> bool:
    """True when ending ``current`` would begin a work phase past the target.

    Evaluated as the phase ends. Without a target the session never completes
    on its own.
    """

    if target_loop_count is None:
        return False
    return current.type == IntervalType.BREAK and current.count + 1 >= target_loop_count


def phase_duration(interval: IntervalType, work_duration: float, break_duration: float) -> float:
    return work_duration if interval == IntervalType.WORK else break_duration


def get_next_duration(current: IntervalPosition, work_duration: float, break_duration: float) -> float:
    return phase_duration(get_next_interval(current).type, work_duration, break_duration)


def calculate_next_interval(current_interval: IntervalType, current_count: int) -> IntervalPosition:
    return get_next_interval(IntervalPosition(current_interval, current_count))


def calculate_interval_progress(elapsed: float, duration: float) -> float:
    if duration <= 0:
        return 1.0
    return min(1.0, max(0.0, elapsed / duration))


def describe_interval(current_interval: IntervalType, current_count: int, target_loop_count: Optional[int] = None) -> str:
    """Short label such as ``Work 2/4`` or ``Break 1``."""

    label = "Work" if current_interval == IntervalType.WORK else "Break"
    number = current_count + 1
    if target_loop_count is not None:
        return f"{label} {number}/{target_loop_count}"
    return f"{label} {number}"


def is_valid_interval_config(work_duration: float, break_duration: float, target_loop_count: Optional[int] = None) -> bool:
    return (
        is_valid_duration(work_duration)
        and is_valid_duration(break_duration)
        and is_valid_loop_count(target_loop_count)
    )


class TransitionGuard:
    """Try-lock serialising completion checks and phase switches.

    ``hold()`` never blocks: a caller that finds the guard taken gets ``False``
    and is expected to retry on its next tick.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.phase = TransitionPhase.IDLE

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self) -> Iterator[bool]:
        acquired = self._lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                self.phase = TransitionPhase.IDLE
                self._lock.release()
