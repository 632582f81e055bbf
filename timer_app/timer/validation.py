"""Input validation shared by the timer engines."""
from __future__ import annotations

import logging
import math
from numbers import Real
from typing import Any, Optional

LOGGER = logging.getLogger(__name__)

MAX_SESSION_NAME_LENGTH = 50


def is_valid_duration(value: Any) -> bool:
    """A duration must be a finite, strictly positive real number."""

    if isinstance(value, bool) or not isinstance(value, Real):
        return False
    try:
        value = float(value)
    except OverflowError:
        return False
    return math.isfinite(value) and value > 0


def is_valid_loop_count(value: Any) -> bool:
    """``None`` means "run until killed"; otherwise a positive whole number."""

    if value is None:
        return True
    if not is_valid_duration(value):
        return False
    return float(value).is_integer()


def validate_session_name(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    trimmed = str(name).strip()
    if not trimmed:
        return None
    if len(trimmed) > MAX_SESSION_NAME_LENGTH:
        LOGGER.warning("Session name exceeds %s characters, truncating", MAX_SESSION_NAME_LENGTH)
        return trimmed[:MAX_SESSION_NAME_LENGTH]
    return trimmed
