"""Feedback collaborators triggered when a session completes.

The engine only knows the three protocols below; concrete players are
injected through a :class:`FeedbackBundle` so tests can pass fakes.
"""
from __future__ import annotations

import logging
import platform
import subprocess
import sys
from dataclasses import dataclass
from typing import Optional, Protocol

from .models import SoundType, VibrationPattern

LOGGER = logging.getLogger(__name__)

# Number of terminal bells rung per sound type.
_BELL_COUNT = {
    SoundType.BEEP: 1,
    SoundType.BELL: 2,
    SoundType.CHIME: 3,
    SoundType.DIGITAL: 2,
    SoundType.TICK: 1,
}


class SoundPlayer(Protocol):
    def play(self, sound_type: SoundType, volume: int) -> None: ...


class Vibrator(Protocol):
    def vibrate(self, pattern: VibrationPattern) -> None: ...


class Notifier(Protocol):
    def show_timer_complete(self, message: str, mode: str, duration_seconds: int) -> None: ...


@dataclass(frozen=True)
class FeedbackBundle:
    sound: Optional[SoundPlayer] = None
    vibrator: Optional[Vibrator] = None
    notifier: Optional[Notifier] = None


class TerminalBellPlayer:
    """Ring the terminal bell; volume 0 stays silent."""

    def __init__(self, stream=None) -> None:
        self.stream = stream or sys.stdout

    def play(self, sound_type: SoundType, volume: int) -> None:
        if volume <= 0:
            return
        self.stream.write("\a" * _BELL_COUNT.get(SoundType(sound_type), 1))
        self.stream.flush()


class LoggingVibrator:
    """Desktop machines have no vibration motor, so the pattern is only logged."""

    def vibrate(self, pattern: VibrationPattern) -> None:
        LOGGER.info("Vibration requested with pattern %s", VibrationPattern(pattern).value)


def _applescript_text(text: str) -> str:
    return str(text).replace("\\", "\\\\").replace('"', '\\"')


class DesktopNotifier:
    """Native notifications through ``notify-send`` or ``osascript``.

    The command is spawned and not waited on.
    """

    def __init__(self, system: Optional[str] = None) -> None:
        self.system = system or platform.system()

    def show_timer_complete(self, message: str, mode: str, duration_seconds: int) -> None:
        title = f"{mode} Timer Complete!"
        body = message
        if duration_seconds > 0:
            minutes, seconds = divmod(int(duration_seconds), 60)
            body = f"{message} ({minutes}m {seconds}s)" if minutes else f"{message} ({seconds}s)"
        command = self._command(title, body)
        if command is None:
            LOGGER.debug("No native notifications on %s", self.system)
            return
        try:
            subprocess.Popen(command, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except (FileNotFoundError, OSError) as exc:
            LOGGER.debug("Native notification unavailable: %s", exc)

    def _command(self, title: str, body: str) -> Optional[list]:
        if self.system == "Darwin":
            script = f'display notification "{_applescript_text(body)}" with title "{_applescript_text(title)}"'
            return ["osascript", "-e", script]
        if self.system == "Linux":
            return ["notify-send", title, body]
        return None


def default_feedback() -> FeedbackBundle:
    return FeedbackBundle(sound=TerminalBellPlayer(), vibrator=LoggingVibrator(), notifier=DesktopNotifier())
