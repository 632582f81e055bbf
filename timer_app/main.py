"""Application entry point for Flow Timer (terminal edition)."""
from __future__ import annotations

import argparse
import logging
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from timer_app.timer import __version__
from timer_app.timer.clock import MS_PER_MINUTE, MS_PER_SECOND
from timer_app.timer.controllers import CONFIG_DIR, CONFIG_FILE, ConfigManager, TimerController
from timer_app.timer.feedback import FeedbackBundle, default_feedback
from timer_app.timer.models import TimerMode
from timer_app.timer.storage import Storage

LOG_DIR = CONFIG_DIR / "logs"
LOG_FILE = LOG_DIR / "app.log"
DB_PATH = CONFIG_DIR / "data.db"

LOGGER = logging.getLogger(__name__)


def configure_logging(verbose: bool = False) -> None:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(LOG_FILE, maxBytes=1024 * 1024, backupCount=3)
    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[handler, console],
    )
    logging.info("Flow Timer v%s starting", __version__)


def parse_duration(text: str) -> float:
    """``25`` (minutes), ``MM:SS`` or ``HH:MM:SS`` to milliseconds."""
    parts = text.strip().split(":")
    if len(parts) > 3 or not all(part.strip() for part in parts):
        raise argparse.ArgumentTypeError(f"invalid duration: {text!r}")
    try:
        numbers = [float(part) for part in parts]
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid duration: {text!r}") from None
    if len(numbers) == 1:
        return numbers[0] * MS_PER_MINUTE
    seconds = 0.0
    for number in numbers:
        seconds = seconds * 60 + number
    return seconds * MS_PER_SECOND


def _clock_text(ms: float) -> str:
    total = int(max(ms, 0) // 1000)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:d}:{minutes:02d}:{seconds:02d}" if hours else f"{minutes:02d}:{seconds:02d}"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="flow-timer",
        description="Stopwatch, countdown and work/break interval timer for the terminal",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  flow-timer stopwatch
  flow-timer countdown 10            # 10 minutes
  flow-timer countdown 1:30          # 1 minute 30 seconds
  flow-timer intervals --work 50 --break 10 --loops 3 --name "Deep work"
  flow-timer history --mode Intervals
  flow-timer history --clear --mode Stopwatch
  flow-timer export --path ~/timer_history.xlsx

Ctrl+C stops the running timer and records it in history.
""",
    )
    parser.add_argument("--db", type=Path, default=DB_PATH, help="SQLite database path")
    parser.add_argument("--config", type=Path, default=CONFIG_FILE, help="TOML config file")
    parser.add_argument("--no-notify", action="store_true", help="Disable sound and notifications")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to the console")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("stopwatch", help="Count up until stopped")

    countdown = sub.add_parser("countdown", help="Count down from a duration")
    countdown.add_argument("duration", type=parse_duration, nargs="?", help="Minutes, MM:SS or HH:MM:SS")

    intervals = sub.add_parser("intervals", help="Alternate work and break phases")
    intervals.add_argument("--work", type=float, default=None, metavar="MINS", help="Work phase in minutes")
    intervals.add_argument("--break", type=float, default=None, dest="break_", metavar="MINS", help="Break phase in minutes")
    intervals.add_argument("--loops", type=int, default=None, metavar="N", help="Stop after N work/break cycles")
    intervals.add_argument("--name", default=None, help="Session name")

    history = sub.add_parser("history", help="List recorded sessions")
    history.add_argument("--mode", choices=[m.value for m in TimerMode], default=None)
    history.add_argument("--limit", type=int, default=20)
    history.add_argument("--delete", metavar="ID", default=None, help="Delete one recorded session")
    history.add_argument("--clear", action="store_true", help="Delete recorded sessions (only --mode, if given)")

    export = sub.add_parser("export", help="Export history to Excel")
    export.add_argument("--path", type=Path, default=None)

    return parser.parse_args(argv)


def command_mode(command: str) -> Optional[TimerMode]:
    try:
        return TimerMode(command.capitalize())
    except ValueError:
        return None


def build_controller(args: argparse.Namespace, done: threading.Event) -> TimerController:
    config_manager = ConfigManager(args.config)
    storage = Storage(args.db, max_history_records=config_manager.config.max_history_records)
    feedback = FeedbackBundle() if args.no_notify else default_feedback()
    watched = command_mode(args.command)

    def _timer_complete(mode: TimerMode) -> None:
        # restored timers of other modes keep running in the background
        if mode == watched:
            done.set()

    return TimerController(storage, config_manager, feedback=feedback, on_timer_complete=_timer_complete)


def _status_line(controller: TimerController, mode: TimerMode) -> str:
    if mode == TimerMode.STOPWATCH:
        return f"Stopwatch {_clock_text(controller.stopwatch.current_elapsed())}"
    if mode == TimerMode.COUNTDOWN:
        engine = controller.countdown
        left = max(0.0, engine.total_duration - engine.current_elapsed())
        return f"Countdown {_clock_text(left)} left ({engine.progress:.0%})"
    engine = controller.intervals
    left = max(0.0, engine.state.phase_duration - engine.current_elapsed())
    return f"{engine.description} {_clock_text(left)} left"


def _start(controller: TimerController, args: argparse.Namespace) -> Optional[TimerMode]:
    mode = command_mode(args.command)
    engine = controller.engine(mode)
    if not engine.is_idle:
        print(f"Resuming saved {mode.value.lower()}")
        if engine.is_paused:
            engine.resume()
        return mode
    if mode == TimerMode.STOPWATCH:
        started = controller.stopwatch.start()
    elif mode == TimerMode.COUNTDOWN:
        started = controller.countdown.start(args.duration)
        if not started:
            print("Enter a valid duration", file=sys.stderr)
    else:
        cfg = controller.config_manager.config
        work = (args.work if args.work is not None else cfg.default_work_minutes) * MS_PER_MINUTE
        rest = (args.break_ if args.break_ is not None else cfg.default_break_minutes) * MS_PER_MINUTE
        if not controller.intervals.set_durations(work, rest):
            print("Enter valid work and break durations", file=sys.stderr)
            return None
        started = controller.intervals.start(args.name, args.loops)
        if not started:
            print("Enter a valid loop count", file=sys.stderr)
    return mode if started else None


def run_timer(controller: TimerController, args: argparse.Namespace, done: threading.Event) -> int:
    mode = _start(controller, args)
    if mode is None:
        return 2
    engine = controller.engine(mode)
    try:
        while not done.wait(1.0):
            if engine.is_idle:
                break
            print(f"\r{_status_line(controller, mode)}   ", end="", flush=True)
    except KeyboardInterrupt:
        record = controller.finish(mode)
        print()
        if record is not None:
            print(f"Recorded {mode.value.lower()} session of {_clock_text(record.duration_ms)}")
        return 0
    print()
    print(f"{mode.value} complete!")
    return 0


def show_history(controller: TimerController, args: argparse.Namespace) -> int:
    mode = TimerMode(args.mode) if args.mode else None
    if args.delete:
        if not controller.delete_session(args.delete):
            print(f"No session with id {args.delete}", file=sys.stderr)
            return 1
        print("Session deleted")
        return 0
    if args.clear:
        removed = controller.clear_history(mode)
        print(f"Removed {removed} sessions")
        return 0
    records = controller.history(mode, args.limit)
    if not records:
        print("No sessions recorded yet")
        return 0
    for record in records:
        extra = ""
        if record.mode == TimerMode.INTERVALS:
            target = f"/{record.target_loop_count}" if record.target_loop_count else ""
            extra = f" cycles {record.interval_count}{target}"
        elif record.mode == TimerMode.STOPWATCH and record.lap_count:
            extra = f" laps {record.lap_count}"
        name = f" [{record.session_name}]" if record.session_name else ""
        status = "done" if record.completed else "stopped"
        print(f"{record.id}  {record.mode.value:<10} {_clock_text(record.duration_ms):>8} {status:<8}{extra}{name}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)
    done = threading.Event()
    controller = build_controller(args, done)
    controller.restore_all()
    try:
        if args.command == "history":
            return show_history(controller, args)
        if args.command == "export":
            path = controller.export_history(args.path)
            print(f"Exported history to {path}")
            return 0
        return run_timer(controller, args, done)
    finally:
        controller.shutdown()


if __name__ == "__main__":
    sys.exit(main())
