"""Clock source shared by every timer mode."""
from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], float]

MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND
MS_PER_HOUR = 60 * MS_PER_MINUTE


def now_ms() -> float:
    """Wall-clock milliseconds since the epoch.

    Wall time rather than ``time.monotonic`` because snapshots are compared
    against it after the process restarts.
    """

    return time.time() * 1000.0
