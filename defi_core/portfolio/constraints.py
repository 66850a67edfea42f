"""Allocation percentage checks and integer normalization."""

from typing import List, Sequence, Tuple

from defi_core.portfolio import PROTOCOLS
from defi_core.validation import ValidationError, require_finite


def validate_allocation(
    percentages: Sequence[float],
    tolerance: float = 0.01,
) -> List[str]:
    """Check that a (lending, lp, farm) allocation is usable.

    Args:
        percentages: Three percentages in protocol order
        tolerance: Allowed deviation of the total from 100

    Returns:
        List of violation messages, empty if all pass
    """
    if len(percentages) != len(PROTOCOLS):
        return [f"Expected {len(PROTOCOLS)} percentages, got {len(percentages)}"]

    violations = []
    for name, pct in zip(PROTOCOLS, percentages):
        try:
            x = require_finite(pct, name)
        except ValidationError as e:
            violations.append(str(e))
            continue
        if x < 0:
            violations.append(f"{name} allocation {x:.2f}% is negative")

    if violations:
        return violations

    total = sum(float(p) for p in percentages)
    if abs(total - 100.0) > tolerance:
        violations.append(f"Allocation sums to {total:.4f}%, expected 100%")
    return violations


def require_allocation(percentages: Sequence[float], field: str = "allocation") -> Tuple[float, float, float]:
    """Raise ValidationError on the first violation; return the percentages as floats."""
    violations = validate_allocation(percentages)
    if violations:
        raise ValidationError(f"Invalid {field}: {'; '.join(violations)}", field=field)
    lending, lp, farm = (float(p) for p in percentages)
    return lending, lp, farm


def normalize_percentages(weights: Sequence[float]) -> Tuple[int, int, int]:
    """Turn non-negative weights into integer percentages summing to exactly 100.

    Each bucket is floored; whatever rounding remainder is left goes to the
    lending bucket (index 0), the lowest-risk destination.
    """
    if len(weights) != len(PROTOCOLS):
        raise ValidationError(f"Expected {len(PROTOCOLS)} weights, got {len(weights)}", field="weights")
    clean = [require_finite(w, name) for name, w in zip(PROTOCOLS, weights)]
    if any(w < 0 for w in clean):
        raise ValidationError("Weights must be non-negative", field="weights")
    total = sum(clean)
    if total <= 0:
        raise ValidationError("Weights must not all be zero", field="weights")

    floored = [int(w * 100.0 / total) for w in clean]
    floored[0] += 100 - sum(floored)
    lending, lp, farm = floored
    return lending, lp, farm


__all__ = ["validate_allocation", "require_allocation", "normalize_percentages"]
