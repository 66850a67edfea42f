"""Boundary validation shared by the scoring, allocation and analytics engines.

Everything that enters the core goes through one of these checks first, so the
engines themselves can assume well-formed input. Failures raise
:class:`ValidationError` synchronously; nothing here logs or retries.
"""

from __future__ import annotations
import math
from typing import Any, Optional


class ValidationError(ValueError):
    """Malformed or incomplete input to one of the engines.

    ``field`` names the offending input when there is a single one.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


def require_finite(value: Any, field: str) -> float:
    """Coerce to float and reject NaN/inf and non-numeric values (bools included)."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number, got bool", field=field)
    try:
        x = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number, got {value!r}", field=field) from None
    if not math.isfinite(x):
        raise ValidationError(f"{field} must be finite, got {x}", field=field)
    return x


def require_non_negative(value: Any, field: str) -> float:
    x = require_finite(value, field)
    if x < 0:
        raise ValidationError(f"{field} must be >= 0, got {x}", field=field)
    return x


def require_score(value: Any, field: str = "risk_score") -> int:
    """Risk scores are integers in [0, 100], inclusive."""
    if isinstance(value, bool) or not isinstance(value, int):
        # accept integral floats coming from JSON payloads (e.g. 50.0)
        if isinstance(value, float) and math.isfinite(value) and value.is_integer():
            value = int(value)
        else:
            raise ValidationError(f"{field} must be an integer, got {value!r}", field=field)
    if not 0 <= value <= 100:
        raise ValidationError(f"{field} must be within [0, 100], got {value}", field=field)
    return value


__all__ = [
    "ValidationError",
    "require_finite",
    "require_non_negative",
    "require_score",
]
