"""Excel export of timer session history."""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable

import pandas as pd

from timer_app.timer.models import ModeStats, SessionRecord

LOGGER = logging.getLogger(__name__)

SESSION_COLUMNS = [
    "SessionId",
    "Mode",
    "RecordedAt",
    "DurationMinutes",
    "IntervalCount",
    "SessionName",
    "TargetLoops",
    "LapCount",
    "BestLapSeconds",
    "TargetMinutes",
    "Completed",
]
STATS_COLUMNS = ["Mode", "Sessions", "TotalMinutes", "AverageMinutes", "Completed"]


class HistoryExporter:
    def __init__(self, export_path: Path):
        self.export_path = Path(export_path)
        self.export_path.parent.mkdir(parents=True, exist_ok=True)

    def export(self, sessions: Iterable[SessionRecord], stats: Iterable[ModeStats]) -> Path:
        """Write sessions and per-mode stats, merging with a previous export by session id."""
        rows = [
            (
                record.id,
                record.mode.value,
                datetime.fromtimestamp(record.recorded_at / 1000.0),
                round(record.duration_ms / 60000.0, 2),
                record.interval_count,
                record.session_name,
                record.target_loop_count,
                record.lap_count,
                round(record.best_lap_ms / 1000.0, 2) if record.best_lap_ms is not None else None,
                round(record.target_duration_ms / 60000.0, 2),
                bool(record.completed),
            )
            for record in sessions
        ]
        sessions_df = pd.DataFrame(rows, columns=SESSION_COLUMNS)

        existing = None
        if self.export_path.exists():
            try:
                existing = pd.read_excel(self.export_path, sheet_name="Sessions")
            except Exception:
                LOGGER.warning("Existing Excel file unreadable, recreating: %s", self.export_path)

        if existing is not None and not existing.empty:
            combined = pd.concat([existing, sessions_df], ignore_index=True)
            combined.drop_duplicates(subset=["SessionId"], keep="last", inplace=True)
            sessions_df = combined
        sessions_df = sessions_df.sort_values("RecordedAt", ascending=False)

        stats_df = pd.DataFrame(
            [
                (
                    stat.mode,
                    stat.session_count,
                    round(stat.total_ms / 60000.0, 2),
                    round(stat.avg_ms / 60000.0, 2),
                    stat.completed_count,
                )
                for stat in stats
            ],
            columns=STATS_COLUMNS,
        )

        with pd.ExcelWriter(self.export_path, engine="openpyxl", mode="w") as writer:
            sessions_df.to_excel(writer, sheet_name="Sessions", index=False)
            stats_df.to_excel(writer, sheet_name="Stats", index=False)
            meta_df = pd.DataFrame([[datetime.now(), len(sessions_df)]], columns=["ExportedAt", "RowCount"])
            meta_df.to_excel(writer, sheet_name="Meta", index=False)
        LOGGER.info("Exported %s sessions to %s", len(sessions_df), self.export_path)
        return self.export_path
