"""Portfolio valuation snapshots and the ordering contract of the analytics engine.

The analytics engine works on NEWEST-FIRST histories (index 0 is the most
recent snapshot). Callers holding oldest-first data pass
``order="oldest_first"`` and :func:`normalize_history` reverses it once at the
boundary. Snapshots are immutable; the history is append-only upstream.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Tuple

import pandas as pd

from defi_core.portfolio import PROTOCOLS
from defi_core.validation import ValidationError, require_non_negative

NEWEST_FIRST = "newest_first"
OLDEST_FIRST = "oldest_first"


def coerce_timestamp(value: Any) -> datetime:
    """datetime, epoch seconds or an ISO string -> timezone-aware datetime."""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid snapshot timestamp {value!r}", field="timestamp")
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, (int, float)):
        try:
            ts = datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise ValidationError(f"Invalid snapshot timestamp {value!r}", field="timestamp") from None
    elif isinstance(value, str):
        try:
            parsed = pd.Timestamp(value)
        except (ValueError, TypeError):
            raise ValidationError(f"Invalid snapshot timestamp {value!r}", field="timestamp") from None
        if pd.isna(parsed):
            raise ValidationError(f"Invalid snapshot timestamp {value!r}", field="timestamp")
        ts = parsed.to_pydatetime()
    else:
        raise ValidationError(f"Invalid snapshot timestamp {value!r}", field="timestamp")
    # naive timestamps are taken as UTC so every history compares consistently
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass(frozen=True)
class PortfolioSnapshot:
    timestamp: datetime
    total_value: float
    protocol_values: Tuple[float, float, float] = (0.0, 0.0, 0.0)

    def __post_init__(self):
        object.__setattr__(self, "timestamp", coerce_timestamp(self.timestamp))
        object.__setattr__(self, "total_value", require_non_negative(self.total_value, "total_value"))
        values = tuple(self.protocol_values)
        if len(values) != len(PROTOCOLS):
            raise ValidationError(
                f"protocol_values needs {len(PROTOCOLS)} entries, got {len(values)}",
                field="protocol_values",
            )
        object.__setattr__(
            self,
            "protocol_values",
            tuple(require_non_negative(v, f"protocol_values.{name}") for name, v in zip(PROTOCOLS, values)),
        )

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PortfolioSnapshot":
        """Build from an API/store row: ``{timestamp, totalValue, perProtocolValue}``."""
        if not isinstance(payload, Mapping):
            raise ValidationError("snapshot must be an object", field="snapshot")
        ts = payload.get("timestamp", payload.get("snapshot_date"))
        total = payload.get("totalValue", payload.get("total_value"))
        if ts is None or total is None:
            raise ValidationError("snapshot needs timestamp and totalValue", field="snapshot")
        values = payload.get("perProtocolValue", payload.get("protocol_values", (0.0, 0.0, 0.0)))
        if isinstance(values, Mapping):
            values = tuple(values.get(name, 0.0) for name in PROTOCOLS)
        if not isinstance(values, (list, tuple)):
            raise ValidationError("perProtocolValue must be a list or object", field="protocol_values")
        return cls(timestamp=ts, total_value=total, protocol_values=tuple(values))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "totalValue": self.total_value,
            "perProtocolValue": list(self.protocol_values),
        }


def normalize_history(
    snapshots: Iterable[Any],
    order: str = NEWEST_FIRST,
) -> Tuple[PortfolioSnapshot, ...]:
    """Validate a snapshot sequence and return it newest-first.

    Args:
        snapshots: PortfolioSnapshot objects or dict payloads
        order: Declared order of ``snapshots``: "newest_first" or "oldest_first"

    Raises:
        ValidationError: unknown order, malformed snapshot, or timestamps that
            are not strictly monotonic in the declared order.
    """
    if order not in (NEWEST_FIRST, OLDEST_FIRST):
        raise ValidationError(f"Unknown history order '{order}'", field="order")
    if snapshots is None:
        raise ValidationError("history must be a sequence of snapshots", field="history")

    items = []
    for i, s in enumerate(snapshots):
        if isinstance(s, PortfolioSnapshot):
            items.append(s)
        elif isinstance(s, Mapping):
            items.append(PortfolioSnapshot.from_dict(s))
        else:
            raise ValidationError(f"history[{i}] is not a snapshot", field="history")

    if order == OLDEST_FIRST:
        items.reverse()

    for i in range(1, len(items)):
        if not items[i - 1].timestamp > items[i].timestamp:
            # report the pair as the caller laid it out
            if order == OLDEST_FIRST:
                pos, first, second = len(items) - i, items[i], items[i - 1]
            else:
                pos, first, second = i, items[i - 1], items[i]
            raise ValidationError(
                f"history is not strictly {order.replace('_', '-')} at position {pos}: "
                f"{first.timestamp.isoformat()} then {second.timestamp.isoformat()}",
                field="history",
            )
    return tuple(items)


def history_frame(history: Iterable[PortfolioSnapshot]) -> pd.DataFrame:
    """Newest-first history as a DataFrame with ``total`` plus one column per protocol."""
    rows = [
        {"timestamp": s.timestamp, "total": s.total_value, **dict(zip(PROTOCOLS, s.protocol_values))}
        for s in history
    ]
    if not rows:
        return pd.DataFrame(columns=["total", *PROTOCOLS], dtype=float)
    return pd.DataFrame(rows).set_index("timestamp")


__all__ = [
    "NEWEST_FIRST",
    "OLDEST_FIRST",
    "coerce_timestamp",
    "PortfolioSnapshot",
    "normalize_history",
    "history_frame",
]
