"""Small numeric and time helpers shared across services."""

import math
from datetime import datetime, timezone
from typing import Any


def clamp01(value: Any, default: float = 0.0) -> float:
    """Coerce to float and clamp into [0, 1]; unparseable input becomes `default`."""
    try:
        x = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(x):
        return default
    return max(0.0, min(1.0, x))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def utcnow() -> datetime:
    """Naive UTC now, matching the naive DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
