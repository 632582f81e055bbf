"""Controllers wiring the timer engines to configuration, storage and exports."""
from __future__ import annotations

import logging
import math
import threading
import tomllib
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Union

from .clock import MS_PER_HOUR, MS_PER_MINUTE, Clock, now_ms
from .completion import CompletionSettings, is_valid_session
from .countdown import CountdownTimer
from .feedback import FeedbackBundle
from .intervals import IntervalTimer
from .models import SessionRecord, SoundType, TimerMode, VibrationPattern
from .restore import coerce_snapshot, validate_resume
from .stopwatch import StopwatchTimer
from .storage import Storage
from .ticker import TickerFactory

if TYPE_CHECKING:
    from reports.history_export import HistoryExporter

LOGGER = logging.getLogger(__name__)

Engine = Union[StopwatchTimer, CountdownTimer, IntervalTimer]

CONFIG_DIR = Path.home() / ".flow_timer"
CONFIG_FILE = CONFIG_DIR / "config.toml"
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "default_config.toml"


def _enum_value(value, enum_cls, default):
    try:
        return enum_cls(value).value
    except (TypeError, ValueError):
        LOGGER.warning("Unknown %s %r, using %s", enum_cls.__name__, value, default)
        return default


def _positive(value, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number) or number <= 0:
        return default
    return number


def _quote(text: str) -> str:
    return '"' + str(text).replace("\\", "\\\\").replace('"', '\\"') + '"'


@dataclass
class AppConfig:
    sound_enabled: bool = True
    sound_type: str = SoundType.BEEP.value
    sound_volume: int = 70
    vibration_enabled: bool = True
    vibration_pattern: str = VibrationPattern.SHORT.value
    notifications_enabled: bool = True
    notification_message: str = "Timer completed!"
    poll_interval_ms: float = 100.0
    default_countdown_minutes: float = 5.0
    default_work_minutes: float = 25.0
    default_break_minutes: float = 5.0
    state_max_age_hours: float = 24.0
    snapshot_debounce_ms: float = 500.0
    export_path: str = "timer_history.xlsx"
    max_history_records: int = 100

    @classmethod
    def from_toml(cls, data: dict) -> "AppConfig":
        try:
            volume = int(float(data.get("sound_volume", 70)))
        except (TypeError, ValueError, OverflowError):
            volume = 70
        try:
            debounce = max(0.0, float(data.get("snapshot_debounce_ms", 500)))
        except (TypeError, ValueError):
            debounce = 500.0
        return cls(
            sound_enabled=bool(data.get("sound_enabled", True)),
            sound_type=_enum_value(data.get("sound_type", "beep"), SoundType, SoundType.BEEP.value),
            sound_volume=max(0, min(100, volume)),
            vibration_enabled=bool(data.get("vibration_enabled", True)),
            vibration_pattern=_enum_value(
                data.get("vibration_pattern", "short"), VibrationPattern, VibrationPattern.SHORT.value
            ),
            notifications_enabled=bool(data.get("notifications_enabled", True)),
            notification_message=str(data.get("notification_message") or "Timer completed!"),
            poll_interval_ms=_positive(data.get("poll_interval_ms", 100), 100.0),
            default_countdown_minutes=_positive(data.get("default_countdown_minutes", 5), 5.0),
            default_work_minutes=_positive(data.get("default_work_minutes", 25), 25.0),
            default_break_minutes=_positive(data.get("default_break_minutes", 5), 5.0),
            state_max_age_hours=_positive(data.get("state_max_age_hours", 24), 24.0),
            snapshot_debounce_ms=debounce,
            export_path=str(data.get("export_path", "timer_history.xlsx")),
            max_history_records=int(_positive(data.get("max_history_records", 100), 100)),
        )

    def to_toml(self) -> str:
        lines = [
            f"sound_enabled = {str(bool(self.sound_enabled)).lower()}",
            f"sound_type = {_quote(self.sound_type)}",
            f"sound_volume = {int(self.sound_volume)}",
            f"vibration_enabled = {str(bool(self.vibration_enabled)).lower()}",
            f"vibration_pattern = {_quote(self.vibration_pattern)}",
            f"notifications_enabled = {str(bool(self.notifications_enabled)).lower()}",
            f"notification_message = {_quote(self.notification_message)}",
            f"poll_interval_ms = {self.poll_interval_ms:g}",
            f"default_countdown_minutes = {self.default_countdown_minutes:g}",
            f"default_work_minutes = {self.default_work_minutes:g}",
            f"default_break_minutes = {self.default_break_minutes:g}",
            f"state_max_age_hours = {self.state_max_age_hours:g}",
            f"snapshot_debounce_ms = {self.snapshot_debounce_ms:g}",
            f"export_path = {_quote(self.export_path)}",
            f"max_history_records = {int(self.max_history_records)}",
        ]
        return "\n".join(lines) + "\n"

    def completion_settings(self) -> CompletionSettings:
        return CompletionSettings(
            sound_enabled=self.sound_enabled,
            sound_type=SoundType(self.sound_type),
            sound_volume=self.sound_volume,
            vibration_enabled=self.vibration_enabled,
            vibration_pattern=VibrationPattern(self.vibration_pattern),
            notifications_enabled=self.notifications_enabled,
            notification_message=self.notification_message,
        )


class ConfigManager:
    def __init__(self, config_file: Path = CONFIG_FILE) -> None:
        self.config_file = Path(config_file)
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        self.config = self._load()

    def _load(self) -> AppConfig:
        if self.config_file.exists():
            try:
                with open(self.config_file, "rb") as fh:
                    return AppConfig.from_toml(tomllib.load(fh))
            except tomllib.TOMLDecodeError:
                LOGGER.warning("Config file %s is not valid TOML, using defaults", self.config_file)
        with open(DEFAULT_CONFIG_PATH, "rb") as fh:
            data = tomllib.load(fh)
            config = AppConfig.from_toml(data)
            self.save(config)
            return config

    def save(self, config: Optional[AppConfig] = None) -> None:
        cfg = config or self.config
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        self.config_file.write_text(cfg.to_toml(), encoding="utf-8")
        LOGGER.info("Saved configuration to %s", self.config_file)

    def update_settings(self, **changes) -> bool:
        """Apply and persist setting changes; invalid values reject the whole update."""
        current = asdict(self.config)
        for key, value in changes.items():
            if key not in current:
                LOGGER.error("Unknown setting %s", key)
                return False
        if "sound_volume" in changes:
            volume = changes["sound_volume"]
            if isinstance(volume, bool) or not isinstance(volume, (int, float)) or not math.isfinite(volume):
                LOGGER.error("Invalid sound volume: %r", volume)
                return False
        current.update(changes)
        self.config = AppConfig.from_toml(current)
        self.save()
        return True


class TimerController:
    """Owns one engine per mode, records finished sessions and persists snapshots.

    Snapshot writes follow engine state changes after ``snapshot_debounce_ms``;
    ``flush()`` writes anything pending immediately.
    """

    def __init__(
        self,
        storage: Storage,
        config_manager: ConfigManager,
        exporter: Optional[HistoryExporter] = None,
        feedback: Optional[FeedbackBundle] = None,
        clock: Clock = now_ms,
        ticker_factory: Optional[TickerFactory] = None,
        on_timer_complete: Optional[Callable[[TimerMode], None]] = None,
    ) -> None:
        self.storage = storage
        self.config_manager = config_manager
        self.exporter = exporter
        self.clock = clock
        self.on_timer_complete = on_timer_complete
        self._pending: Dict[TimerMode, threading.Timer] = {}
        self._pending_lock = threading.Lock()
        self._closed = False

        cfg = config_manager.config
        settings = cfg.completion_settings()
        common = dict(clock=clock, ticker_factory=ticker_factory, poll_interval_ms=cfg.poll_interval_ms)
        self.stopwatch = StopwatchTimer(
            on_state_change=lambda: self._schedule_persist(TimerMode.STOPWATCH), **common
        )
        self.countdown = CountdownTimer(
            on_state_change=lambda: self._schedule_persist(TimerMode.COUNTDOWN),
            settings=settings,
            feedback=feedback,
            on_session_complete=self._record_completion(TimerMode.COUNTDOWN),
            on_timer_complete=lambda: self._timer_complete(TimerMode.COUNTDOWN),
            default_duration_ms=cfg.default_countdown_minutes * MS_PER_MINUTE,
            **common,
        )
        self.intervals = IntervalTimer(
            on_state_change=lambda: self._schedule_persist(TimerMode.INTERVALS),
            settings=settings,
            feedback=feedback,
            on_session_complete=self._record_completion(TimerMode.INTERVALS),
            on_timer_complete=lambda: self._timer_complete(TimerMode.INTERVALS),
            work_duration_ms=cfg.default_work_minutes * MS_PER_MINUTE,
            break_duration_ms=cfg.default_break_minutes * MS_PER_MINUTE,
            **common,
        )
        self.active_mode: Optional[TimerMode] = None

    def engine(self, mode: TimerMode) -> Engine:
        return {
            TimerMode.STOPWATCH: self.stopwatch,
            TimerMode.COUNTDOWN: self.countdown,
            TimerMode.INTERVALS: self.intervals,
        }[TimerMode(mode)]

    # ---- restore & persistence ----

    def restore_all(self) -> Dict[TimerMode, bool]:
        """Restore every mode from its stored snapshot; stale snapshots are discarded."""
        max_age = self.config_manager.config.state_max_age_hours * MS_PER_HOUR
        now = self.clock()
        restored: Dict[TimerMode, bool] = {}
        for mode in TimerMode:
            raw = self.storage.load_snapshot(mode)
            if raw is None:
                restored[mode] = False
                continue
            try:
                snapshot = coerce_snapshot(raw, mode)
                verdict = validate_resume(snapshot, now, max_age) if snapshot is not None else None
            except Exception:
                LOGGER.exception("Unreadable %s snapshot", mode.value)
                snapshot, verdict = None, None
            if verdict is None or not verdict.can_resume:
                reason = verdict.reason if verdict is not None else "unusable snapshot"
                LOGGER.info("Discarding %s snapshot: %s", mode.value, reason)
                self.storage.clear_snapshot(mode)
                restored[mode] = False
                continue
            restored[mode] = self.engine(mode).restore(snapshot)
        self.active_mode = self.storage.get_active_mode()
        if self.active_mode is not None and not restored.get(self.active_mode):
            self.active_mode = None
            self.storage.save_active_mode(None)
        return restored

    def persist(self, mode: TimerMode) -> None:
        mode = TimerMode(mode)
        engine = self.engine(mode)
        if engine.is_idle:
            self.storage.clear_snapshot(mode)
            if self.active_mode == mode:
                self.active_mode = None
                self.storage.save_active_mode(None)
            return
        self.storage.save_snapshot(mode, engine.snapshot().to_dict())
        if self.active_mode != mode:
            self.active_mode = mode
            self.storage.save_active_mode(mode)

    def _schedule_persist(self, mode: TimerMode) -> None:
        if self._closed:
            return
        delay_ms = self.config_manager.config.snapshot_debounce_ms
        if delay_ms <= 0:
            self._persist_quietly(mode)
            return
        with self._pending_lock:
            pending = self._pending.pop(mode, None)
            if pending is not None:
                pending.cancel()
            timer = threading.Timer(delay_ms / 1000.0, self._run_pending, args=(mode,))
            timer.daemon = True
            self._pending[mode] = timer
        timer.start()

    def _run_pending(self, mode: TimerMode) -> None:
        with self._pending_lock:
            self._pending.pop(mode, None)
        self._persist_quietly(mode)

    def _persist_quietly(self, mode: TimerMode) -> None:
        try:
            self.persist(mode)
        except Exception:
            LOGGER.exception("Failed to persist %s snapshot", mode.value)

    def flush(self) -> None:
        with self._pending_lock:
            pending = list(self._pending.items())
            self._pending.clear()
        for mode, timer in pending:
            timer.cancel()
            self._persist_quietly(mode)

    # ---- history ----

    def _record_completion(self, mode: TimerMode):
        def _record(duration_ms: float, interval_count: int, session_name=None, target_loop_count=None) -> None:
            if mode == TimerMode.INTERVALS and not is_valid_session(duration_ms, interval_count):
                LOGGER.info("Skipping interval session without a finished cycle")
                return
            self.storage.add_session(
                mode,
                duration_ms,
                interval_count=interval_count,
                session_name=session_name,
                target_loop_count=target_loop_count,
                target_duration_ms=duration_ms if mode == TimerMode.COUNTDOWN else 0.0,
                completed=True,
            )

        return _record

    def _timer_complete(self, mode: TimerMode) -> None:
        if self.on_timer_complete is not None:
            self.on_timer_complete(mode)

    def finish(self, mode: TimerMode) -> Optional[SessionRecord]:
        """Kill the mode's timer and keep what it accrued in history."""
        result = self.engine(mode).kill()
        record = self.storage.add_killed_session(result)
        self.flush()
        return record

    def history(self, mode: Optional[TimerMode] = None, limit: Optional[int] = None) -> List[SessionRecord]:
        return self.storage.get_sessions(mode, limit)

    def delete_session(self, session_id: str) -> bool:
        return self.storage.delete_session(session_id)

    def clear_history(self, mode: Optional[TimerMode] = None) -> int:
        return self.storage.clear_history(mode)

    def export_history(self, path: Optional[Path] = None) -> Path:
        exporter = self.exporter
        if path is not None or exporter is None:
            from reports.history_export import HistoryExporter

            exporter = HistoryExporter(Path(path or self.config_manager.config.export_path))
        return exporter.export(self.storage.get_sessions(), self.storage.get_statistics_by_mode())

    def backup_database(self) -> Path:
        return self.storage.backup_database()

    def shutdown(self) -> None:
        """Write pending snapshots and stop polling; saved state survives for the next run."""
        self.flush()
        self._closed = True
        for mode in TimerMode:
            self.engine(mode).teardown()
