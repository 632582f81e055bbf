"""Fan-out of a finished session to feedback and recording callbacks."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .feedback import FeedbackBundle
from .models import SoundType, TimerMode, VibrationPattern

LOGGER = logging.getLogger(__name__)

SessionCompleteCallback = Callable[[float, int, Optional[str], Optional[int]], None]
TimerCompleteCallback = Callable[[], None]


@dataclass(frozen=True)
class CompletionSettings:
    sound_enabled: bool = True
    sound_type: SoundType = SoundType.BEEP
    sound_volume: int = 70
    vibration_enabled: bool = True
    vibration_pattern: VibrationPattern = VibrationPattern.SHORT
    notifications_enabled: bool = True
    notification_message: str = "Timer completed!"


@dataclass(frozen=True)
class CompletionRequest:
    mode: TimerMode
    duration_ms: float
    interval_count: int = 0
    session_name: Optional[str] = None
    target_loop_count: Optional[int] = None
    settings: CompletionSettings = field(default_factory=CompletionSettings)


@dataclass
class CompletionCallbacks:
    on_session_complete: Optional[SessionCompleteCallback] = None
    on_timer_complete: Optional[TimerCompleteCallback] = None


@dataclass
class CompletionResult:
    completed: bool = True
    failures: List[str] = field(default_factory=list)


def handle_session_complete(
    request: CompletionRequest,
    feedback: Optional[FeedbackBundle] = None,
    callbacks: Optional[CompletionCallbacks] = None,
) -> CompletionResult:
    """Run sound, vibration, notification, session and timer callbacks in order.

    Every step is isolated: a failing step is logged and recorded in
    ``failures`` and the remaining steps still run.
    """

    feedback = feedback or FeedbackBundle()
    callbacks = callbacks or CompletionCallbacks()
    settings = request.settings
    result = CompletionResult()

    def _step(name: str, action: Callable[[], None]) -> None:
        try:
            action()
        except Exception:
            LOGGER.exception("%s completion step '%s' failed", request.mode.value, name)
            result.failures.append(name)

    if settings.sound_enabled and feedback.sound is not None:
        _step("sound", lambda: feedback.sound.play(settings.sound_type, settings.sound_volume))

    if settings.vibration_enabled and feedback.vibrator is not None:
        _step("vibration", lambda: feedback.vibrator.vibrate(settings.vibration_pattern))

    if settings.notifications_enabled and feedback.notifier is not None:
        _step(
            "notification",
            lambda: feedback.notifier.show_timer_complete(
                settings.notification_message, request.mode.value, int(request.duration_ms // 1000)
            ),
        )

    if callbacks.on_session_complete is not None and request.duration_ms > 0:
        _step(
            "session_complete",
            lambda: callbacks.on_session_complete(
                request.duration_ms, request.interval_count, request.session_name, request.target_loop_count
            ),
        )

    if callbacks.on_timer_complete is not None:
        _step("timer_complete", callbacks.on_timer_complete)

    if result.failures:
        LOGGER.warning("%s completion finished with failures: %s", request.mode.value, ", ".join(result.failures))
    return result


def calculate_session_duration(session_start_time: float, current_time: float, total_paused_time: float) -> float:
    return max(0.0, current_time - session_start_time - total_paused_time)


def is_valid_session(duration_ms: float, interval_count: int) -> bool:
    """Whether an interval session is worth keeping in history."""

    return duration_ms > 0 and interval_count > 0
