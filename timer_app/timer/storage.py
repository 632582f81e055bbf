"""SQLite-backed persistence for timer snapshots and session history."""
from __future__ import annotations

import json
import logging
import shutil
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .clock import now_ms
from .models import KillResult, ModeStats, SessionRecord, TimerMode

LOGGER = logging.getLogger(__name__)

MAX_SNAPSHOT_BYTES = 100 * 1024
DEFAULT_MAX_HISTORY_RECORDS = 100

_SESSION_COLUMNS = (
    "id, mode, duration_ms, recorded_at, interval_count, session_name, target_loop_count, "
    "lap_count, best_lap_ms, target_duration_ms, completed"
)


class Storage:
    """Wrapper around SQLite holding one snapshot per mode and the session history."""

    def __init__(self, db_path: Path, max_history_records: int = DEFAULT_MAX_HISTORY_RECORDS) -> None:
        self.db_path = Path(db_path)
        self.max_history_records = max_history_records
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _get_conn(self) -> Iterable[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            LOGGER.exception("Database operation failed")
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._get_conn() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS timer_snapshots (
                    mode TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    saved_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS app_state (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    mode TEXT NOT NULL,
                    duration_ms REAL NOT NULL DEFAULT 0,
                    recorded_at REAL NOT NULL
                )
                """
            )
        self._ensure_columns()

    def _ensure_columns(self) -> None:
        """Add newly introduced columns for existing installations."""

        def _add_column(name: str, ddl: str, table: str = "sessions") -> None:
            with self._get_conn() as conn:
                cur = conn.cursor()
                cur.execute(f"PRAGMA table_info({table})")
                cols = [row[1] for row in cur.fetchall()]
                if name not in cols:
                    cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}")
                    LOGGER.info("Added column %s to %s", name, table)

        _add_column("interval_count", "INTEGER NOT NULL DEFAULT 0")
        _add_column("session_name", "TEXT")
        _add_column("target_loop_count", "INTEGER")
        _add_column("lap_count", "INTEGER NOT NULL DEFAULT 0")
        _add_column("best_lap_ms", "REAL")
        _add_column("target_duration_ms", "REAL NOT NULL DEFAULT 0")
        _add_column("completed", "INTEGER NOT NULL DEFAULT 0")

    # ---- snapshots ----

    def save_snapshot(self, mode: TimerMode, snapshot: Dict[str, Any]) -> bool:
        payload = json.dumps(snapshot)
        if len(payload.encode("utf-8")) > MAX_SNAPSHOT_BYTES:
            LOGGER.warning("%s snapshot exceeds %s bytes, not saved", TimerMode(mode).value, MAX_SNAPSHOT_BYTES)
            return False
        with self._get_conn() as conn:
            cur = conn.cursor()
            cur.execute(
                "INSERT OR REPLACE INTO timer_snapshots (mode, payload, saved_at) VALUES (?, ?, ?)",
                (TimerMode(mode).value, payload, snapshot.get("saved_at") or now_ms()),
            )
        LOGGER.debug("Saved %s snapshot", TimerMode(mode).value)
        return True

    def load_snapshot(self, mode: TimerMode) -> Optional[Dict[str, Any]]:
        with self._get_conn() as conn:
            cur = conn.cursor()
            cur.execute("SELECT payload FROM timer_snapshots WHERE mode = ?", (TimerMode(mode).value,))
            row = cur.fetchone()
        if not row:
            return None
        try:
            data = json.loads(row[0])
        except ValueError:
            LOGGER.warning("Discarding corrupted %s snapshot", TimerMode(mode).value)
            self.clear_snapshot(mode)
            return None
        if not isinstance(data, dict):
            self.clear_snapshot(mode)
            return None
        return data

    def clear_snapshot(self, mode: Optional[TimerMode] = None) -> None:
        with self._get_conn() as conn:
            cur = conn.cursor()
            if mode is None:
                cur.execute("DELETE FROM timer_snapshots")
            else:
                cur.execute("DELETE FROM timer_snapshots WHERE mode = ?", (TimerMode(mode).value,))

    def save_active_mode(self, mode: Optional[TimerMode]) -> None:
        with self._get_conn() as conn:
            cur = conn.cursor()
            if mode is None:
                cur.execute("DELETE FROM app_state WHERE key = 'active_mode'")
            else:
                cur.execute(
                    "INSERT OR REPLACE INTO app_state (key, value) VALUES ('active_mode', ?)",
                    (TimerMode(mode).value,),
                )

    def get_active_mode(self) -> Optional[TimerMode]:
        with self._get_conn() as conn:
            cur = conn.cursor()
            cur.execute("SELECT value FROM app_state WHERE key = 'active_mode'")
            row = cur.fetchone()
        if not row:
            return None
        try:
            return TimerMode(row[0])
        except ValueError:
            LOGGER.warning("Unknown active mode %r in app state", row[0])
            return None

    # ---- history ----

    def add_session(
        self,
        mode: TimerMode,
        duration_ms: float,
        interval_count: int = 0,
        session_name: Optional[str] = None,
        target_loop_count: Optional[int] = None,
        lap_count: int = 0,
        best_lap_ms: Optional[float] = None,
        target_duration_ms: float = 0.0,
        completed: bool = False,
        recorded_at: Optional[float] = None,
    ) -> Optional[SessionRecord]:
        if duration_ms <= 0:
            LOGGER.debug("Skipping %s session with no duration", TimerMode(mode).value)
            return None
        record = SessionRecord(
            id=str(uuid.uuid4()),
            mode=TimerMode(mode),
            duration_ms=float(duration_ms),
            recorded_at=recorded_at if recorded_at is not None else now_ms(),
            interval_count=interval_count,
            session_name=session_name or "",
            target_loop_count=target_loop_count,
            lap_count=lap_count,
            best_lap_ms=best_lap_ms,
            target_duration_ms=target_duration_ms,
            completed=completed,
        )
        with self._get_conn() as conn:
            cur = conn.cursor()
            cur.execute(
                f"INSERT INTO sessions ({_SESSION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.mode.value,
                    record.duration_ms,
                    record.recorded_at,
                    record.interval_count,
                    record.session_name,
                    record.target_loop_count,
                    record.lap_count,
                    record.best_lap_ms,
                    record.target_duration_ms,
                    1 if record.completed else 0,
                ),
            )
            self._prune(cur, record.mode)
        LOGGER.info("Recorded %s session of %.0fms", record.mode.value, record.duration_ms)
        return record

    def add_killed_session(self, result: KillResult) -> Optional[SessionRecord]:
        best = min((lap.split_ms for lap in result.laps), default=None)
        return self.add_session(
            result.mode,
            result.duration_ms,
            interval_count=result.interval_count,
            session_name=result.session_name,
            target_loop_count=result.target_loop_count,
            lap_count=len(result.laps),
            best_lap_ms=best,
            target_duration_ms=result.target_duration_ms,
            completed=False,
        )

    def _prune(self, cur: sqlite3.Cursor, mode: TimerMode) -> None:
        cur.execute(
            """
            DELETE FROM sessions WHERE mode = ? AND id NOT IN (
                SELECT id FROM sessions WHERE mode = ? ORDER BY recorded_at DESC LIMIT ?
            )
            """,
            (mode.value, mode.value, self.max_history_records),
        )
        if cur.rowcount and cur.rowcount > 0:
            LOGGER.debug("Pruned %s old %s sessions", cur.rowcount, mode.value)

    def get_sessions(self, mode: Optional[TimerMode] = None, limit: Optional[int] = None) -> List[SessionRecord]:
        sql = f"SELECT {_SESSION_COLUMNS} FROM sessions"
        params: List[object] = []
        if mode is not None:
            sql += " WHERE mode = ?"
            params.append(TimerMode(mode).value)
        sql += " ORDER BY recorded_at DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self._get_conn() as conn:
            cur = conn.cursor()
            cur.execute(sql, params)
            return [SessionRecord.from_row(row) for row in cur.fetchall()]

    def delete_session(self, session_id: str) -> bool:
        with self._get_conn() as conn:
            cur = conn.cursor()
            cur.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            deleted = cur.rowcount > 0
        if deleted:
            LOGGER.info("Deleted session %s", session_id)
        return deleted

    def clear_history(self, mode: Optional[TimerMode] = None) -> int:
        with self._get_conn() as conn:
            cur = conn.cursor()
            if mode is None:
                cur.execute("DELETE FROM sessions")
            else:
                cur.execute("DELETE FROM sessions WHERE mode = ?", (TimerMode(mode).value,))
            removed = cur.rowcount
        LOGGER.info("Cleared %s sessions from history", removed)
        return removed

    def get_statistics_by_mode(self) -> List[ModeStats]:
        with self._get_conn() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT mode, COUNT(*) as session_count,
                       SUM(duration_ms) as total_ms,
                       AVG(duration_ms) as avg_ms,
                       SUM(completed) as completed_count
                FROM sessions
                GROUP BY mode
                ORDER BY total_ms DESC
                """
            )
            rows = cur.fetchall()
            return [
                ModeStats(
                    mode=row[0],
                    session_count=row[1] or 0,
                    total_ms=row[2] or 0.0,
                    avg_ms=row[3] or 0.0,
                    completed_count=row[4] or 0,
                )
                for row in rows
            ]

    def backup_database(self) -> Path:
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        target = self.db_path.with_name(f"{self.db_path.stem}-backup-{timestamp}{self.db_path.suffix}")
        shutil.copy2(self.db_path, target)
        LOGGER.info("Database backed up to %s", target)
        return target
