"""
Duration phrases such as ``within 30s`` or ``after 2 minutes``.
"""

import math
from typing import Optional

# Longer unit spellings come first so alternation never stops early.
UNIT_PATTERN = r"(seconds|second|secs|sec|s|minutes|minute|mins|min|m)"
AMOUNT_PATTERN = r"(\d+(?:\.\d+)?)"
DURATION_PATTERN = AMOUNT_PATTERN + r"\s*" + UNIT_PATTERN

MIN_TIMEOUT_SECONDS = 1
MAX_TIMEOUT_SECONDS = 600

_UNIT_MULTIPLIERS = {
    "s": 1,
    "sec": 1,
    "secs": 1,
    "second": 1,
    "seconds": 1,
    "m": 60,
    "min": 60,
    "mins": 60,
    "minute": 60,
    "minutes": 60,
}


def duration_to_seconds(amount: str, unit: str) -> float:
    """Convert a captured amount and unit into seconds."""
    multiplier = _UNIT_MULTIPLIERS.get(unit.lower())
    if multiplier is None:
        raise ValueError(f"Unknown duration unit: {unit}")
    return float(amount) * multiplier


def to_timeout_seconds(seconds: float) -> Optional[int]:
    """
    Round half-up and clamp a timeout into [1, 600] seconds.

    Non-finite or non-positive values mean "no timeout" and return None.
    """
    if not math.isfinite(seconds) or seconds <= 0:
        return None
    rounded = int(math.floor(seconds + 0.5))
    return max(MIN_TIMEOUT_SECONDS, min(MAX_TIMEOUT_SECONDS, rounded))


def to_delay_seconds(seconds: float) -> Optional[float]:
    """Click delays keep their computed value; non-positive means no delay."""
    if not math.isfinite(seconds) or seconds <= 0:
        return None
    return seconds
