"""Drift check between the current and the target protocol allocation, plus
the advisory schedule, market and profile rules.

The advisor only recommends; submitting the rebalance transaction is the
caller's job.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from defi_core.allocation import (
    AllocationStrategy,
    ProtocolAPYs,
    allocation_template,
    expected_apy,
    generate_allocation_strategy,
)
from defi_core.portfolio import BASIS_POINTS, PROTOCOLS
from defi_core.portfolio.constraints import require_allocation
from defi_core.portfolio.snapshots import PortfolioSnapshot, coerce_timestamp
from defi_core.risk_profile import RiskProfile
from defi_core.utils import get_logger
from defi_core.validation import ValidationError, require_non_negative, require_score

log = get_logger(__name__)

# vault contract REBALANCE_THRESHOLD, in basis points of BASIS_POINTS
REBALANCE_THRESHOLD_BPS = 500
HIGH_URGENCY_DRIFT = 20.0
# keeps an exactly-at-threshold drift inclusive when it was computed from floats
_DRIFT_EPSILON = 1e-9


def threshold_from_bps(bps: float) -> float:
    """Basis points of 10000 -> percentage points (500 -> 5.0)."""
    return require_non_negative(bps, "threshold_bps") / BASIS_POINTS * 100.0


DEFAULT_THRESHOLD_PCT = threshold_from_bps(REBALANCE_THRESHOLD_BPS)


@dataclass(frozen=True)
class Allocation:
    lending: float
    lp: float
    farm: float

    def __post_init__(self):
        pcts = require_allocation((self.lending, self.lp, self.farm))
        for name, pct in zip(PROTOCOLS, pcts):
            object.__setattr__(self, name, pct)

    @classmethod
    def coerce(cls, value: Any, field: str = "allocation") -> "Allocation":
        """Accept an Allocation, an AllocationStrategy, a mapping or a 3-sequence."""
        if isinstance(value, Allocation):
            return value
        if isinstance(value, AllocationStrategy):
            return cls(*value.as_tuple())
        if isinstance(value, Mapping):
            keys = {"lending": ("lending", "lendingPct"), "lp": ("lp", "lpPct"), "farm": ("farm", "farmPct")}
            picked = []
            for name in PROTOCOLS:
                hit = next((value[k] for k in keys[name] if k in value), None)
                if hit is None:
                    raise ValidationError(f"{field} is missing '{name}'", field=field)
                picked.append(hit)
            return cls(*picked)
        if isinstance(value, (list, tuple)) and len(value) == len(PROTOCOLS):
            return cls(*value)
        raise ValidationError(f"{field} must be an allocation, mapping or 3-sequence", field=field)

    def as_tuple(self) -> Tuple[float, float, float]:
        return self.lending, self.lp, self.farm

    def to_dict(self) -> Dict[str, float]:
        return dict(zip(PROTOCOLS, self.as_tuple()))


def current_allocation_from_snapshot(snapshot: Any) -> Allocation:
    """Protocol shares of the snapshot's total value, in percent.

    Shares come from the per-protocol values so they always sum to 100 even
    when the reported total includes undeployed funds.
    """
    if isinstance(snapshot, Mapping):
        snapshot = PortfolioSnapshot.from_dict(snapshot)
    deployed = sum(snapshot.protocol_values)
    if deployed <= 0:
        raise ValidationError("Cannot derive an allocation from a portfolio with no deployed value",
                              field="snapshot")
    return Allocation(*(v / deployed * 100.0 for v in snapshot.protocol_values))


@dataclass(frozen=True)
class RebalanceRecommendation:
    should_rebalance: bool
    current_allocation: Allocation
    target_allocation: Allocation
    drift_pct: Tuple[float, float, float]
    threshold_pct: float
    max_drift: float
    urgency: str
    reason: str

    def rebalance_deltas(self, total_value: float) -> Dict[str, float]:
        """Value to move per protocol to reach the target; positive means deposit.

        ``total_value`` is the deployed value (the sum of protocol positions);
        idle funds are not part of the allocation being corrected.
        """
        total = require_non_negative(total_value, "total_value")
        return {
            name: (target - current) / 100.0 * total
            for name, current, target in zip(
                PROTOCOLS, self.current_allocation.as_tuple(), self.target_allocation.as_tuple()
            )
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shouldRebalance": self.should_rebalance,
            "currentAllocation": self.current_allocation.to_dict(),
            "targetAllocation": self.target_allocation.to_dict(),
            "driftPct": dict(zip(PROTOCOLS, self.drift_pct)),
            "thresholdPct": self.threshold_pct,
            "maxDrift": self.max_drift,
            "urgency": self.urgency,
            "reason": self.reason,
        }


def recommend_rebalance(
    current: Any,
    target: Any,
    threshold_pct: float = DEFAULT_THRESHOLD_PCT,
) -> RebalanceRecommendation:
    """
    Compare current and target allocations protocol by protocol.

    drift_i = |current_i - target_i|; rebalancing is recommended when any
    drift is greater than OR EQUAL to ``threshold_pct`` (inclusive boundary).

    Args:
        current: Allocation derived from the latest snapshot
        target: Target allocation (AllocationStrategy, Allocation, mapping or 3-sequence)
        threshold_pct: Drift threshold in percentage points (default 5.0 = 500 bps)

    Raises:
        ValidationError: an allocation does not hold three non-negative
            percentages summing to 100, or the threshold is negative.
    """
    try:
        cur = Allocation.coerce(current, field="current_allocation")
        tgt = Allocation.coerce(target, field="target_allocation")
        threshold = require_non_negative(threshold_pct, "threshold_pct")
    except ValidationError as e:
        log.warning("Rejected rebalance request: %s", e)
        raise

    drift = tuple(abs(c - t) for c, t in zip(cur.as_tuple(), tgt.as_tuple()))
    max_drift = max(drift)
    should = any(d >= threshold - _DRIFT_EPSILON for d in drift)

    if should:
        worst = PROTOCOLS[drift.index(max_drift)]
        urgency = "high" if max_drift > HIGH_URGENCY_DRIFT else "medium"
        reason = (f"Portfolio allocation has drifted {max_drift:.1f} points from target "
                  f"({worst}), at or above the {threshold:.1f} point threshold")
    else:
        urgency = "low"
        reason = f"All protocols are within {threshold:.1f} points of target"

    rec = RebalanceRecommendation(
        should_rebalance=should,
        current_allocation=cur,
        target_allocation=tgt,
        drift_pct=drift,
        threshold_pct=threshold,
        max_drift=max_drift,
        urgency=urgency,
        reason=reason,
    )
    log.debug("Rebalance check drift=%s threshold=%.2f -> %s", drift, threshold, should)
    return rec


# ============================================================================
# Advisory rules: schedule, market opportunity, profile fit
# ============================================================================

URGENCY_RANK = {"high": 3, "medium": 2, "low": 1}
DEFAULT_FREQUENCY_DAYS = 30
OVERDUE_DAYS = 60
# expected-APY gain, in percentage points
MIN_APY_IMPROVEMENT = 1.0
HIGH_APY_IMPROVEMENT = 3.0
CONSERVATIVE_MAX_FARM = 20.0
AGGRESSIVE_MAX_LENDING = 50.0


@dataclass(frozen=True)
class RebalanceSignal:
    rule: str
    should_rebalance: bool
    urgency: str
    reason: str
    new_allocation: Optional[Allocation] = None
    expected_improvement: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule,
            "shouldRebalance": self.should_rebalance,
            "urgency": self.urgency,
            "reason": self.reason,
            "newAllocation": self.new_allocation.to_dict() if self.new_allocation else None,
            "expectedImprovement": self.expected_improvement,
        }


def schedule_signal(last_rebalance: Any, now: Any, frequency_days: float = DEFAULT_FREQUENCY_DAYS) -> RebalanceSignal:
    """Due once ``frequency_days`` have passed; high urgency past 60 days."""
    frequency = require_non_negative(frequency_days, "frequency_days")
    if last_rebalance is None:
        return RebalanceSignal("schedule", False, "low", "No previous rebalance on record")
    days = (coerce_timestamp(now) - coerce_timestamp(last_rebalance)).total_seconds() / 86400.0
    if days < frequency:
        return RebalanceSignal("schedule", False, "low", f"Next scheduled rebalance in {frequency - days:.1f} days")
    return RebalanceSignal(
        "schedule",
        True,
        "high" if days > OVERDUE_DAYS else "medium",
        f"It has been {int(days)} days since last rebalance",
    )


def drift_signal(recommendation: RebalanceRecommendation) -> RebalanceSignal:
    return RebalanceSignal(
        "drift",
        recommendation.should_rebalance,
        recommendation.urgency,
        recommendation.reason,
        new_allocation=recommendation.target_allocation if recommendation.should_rebalance else None,
    )


def market_opportunity_signal(current: Any, risk_score: int, apys: Any) -> RebalanceSignal:
    """
    Compare the current weighted APY with the expected APY of the target
    allocation at today's rates.

    improvement = target expected APY - sum(current_pct / 100 * apy); it
    triggers above 1 point and is high urgency above 3 points.
    """
    cur = Allocation.coerce(current, field="current_allocation")
    optimal = generate_allocation_strategy(risk_score, apys)
    rates = apys if isinstance(apys, ProtocolAPYs) else ProtocolAPYs.from_mapping(apys)
    improvement = optimal.expected_apy - expected_apy(cur.as_tuple(), rates)
    if improvement <= MIN_APY_IMPROVEMENT:
        return RebalanceSignal("market", False, "low", "No significant market opportunity")
    return RebalanceSignal(
        "market",
        True,
        "high" if improvement > HIGH_APY_IMPROVEMENT else "medium",
        f"Market conditions present {improvement:.2f}% APY improvement opportunity",
        new_allocation=Allocation.coerce(optimal),
        expected_improvement=improvement,
    )


def profile_mismatch_signal(profile: Any, current: Any) -> RebalanceSignal:
    """Flag holdings that contradict the investor's profile."""
    try:
        prof = RiskProfile(profile)
    except ValueError:
        raise ValidationError(f"Unknown risk profile '{profile}'", field="risk_profile") from None
    cur = Allocation.coerce(current, field="current_allocation")
    target = Allocation.coerce(allocation_template(prof))
    if prof is RiskProfile.CONSERVATIVE and cur.farm > CONSERVATIVE_MAX_FARM:
        return RebalanceSignal("profile", True, "high",
                               "High-risk allocation detected for conservative profile", new_allocation=target)
    if prof is RiskProfile.AGGRESSIVE and cur.lending > AGGRESSIVE_MAX_LENDING:
        return RebalanceSignal("profile", True, "medium",
                               "Low-yield allocation detected for aggressive profile", new_allocation=target)
    return RebalanceSignal("profile", False, "low", "Performance is within expected parameters")


def select_decision(signals: Iterable[RebalanceSignal]) -> RebalanceSignal:
    """Highest-urgency triggered signal; the earliest one wins a tie."""
    active = [s for s in signals if s.should_rebalance]
    if not active:
        return RebalanceSignal("none", False, "low", "Portfolio is optimally balanced")
    return max(active, key=lambda s: URGENCY_RANK[s.urgency])


@dataclass(frozen=True)
class RebalanceAdvice:
    decision: RebalanceSignal
    signals: Tuple[RebalanceSignal, ...]

    def to_dict(self) -> Dict[str, Any]:
        out = self.decision.to_dict()
        out["signals"] = [s.to_dict() for s in self.signals]
        return out


def advise_rebalance(
    current: Any,
    risk_score: int,
    apys: Any,
    last_rebalance: Any = None,
    now: Any = None,
    frequency_days: float = DEFAULT_FREQUENCY_DAYS,
    threshold_pct: float = DEFAULT_THRESHOLD_PCT,
) -> RebalanceAdvice:
    """
    Run every rule over explicit inputs and pick one decision.

    Rules are evaluated in order schedule, drift, market, profile. The drift
    rule is exactly :func:`recommend_rebalance`; the others are advisory and
    never change its result.

    Args:
        current: Current allocation (Allocation, mapping or 3-sequence)
        risk_score: Investor's score in [0, 100]
        apys: Current protocol APYs
        last_rebalance: When the portfolio was last rebalanced, or None
        now: Evaluation time (default: current UTC time)
        frequency_days: Scheduled rebalance interval
        threshold_pct: Drift threshold in percentage points
    """
    try:
        score = require_score(risk_score)
        target = generate_allocation_strategy(score, apys)
        signals = (
            schedule_signal(last_rebalance, now if now is not None else datetime.now(timezone.utc), frequency_days),
            drift_signal(recommend_rebalance(current, target, threshold_pct)),
            market_opportunity_signal(current, score, apys),
            profile_mismatch_signal(target.risk_profile, current),
        )
    except ValidationError as e:
        log.warning("Rejected rebalance advice request: %s", e)
        raise
    decision = select_decision(signals)
    log.debug("Rebalance advice rule=%s urgency=%s", decision.rule, decision.urgency)
    return RebalanceAdvice(decision, signals)


__all__ = [
    "REBALANCE_THRESHOLD_BPS",
    "DEFAULT_THRESHOLD_PCT",
    "threshold_from_bps",
    "Allocation",
    "current_allocation_from_snapshot",
    "RebalanceRecommendation",
    "recommend_rebalance",
    "RebalanceSignal",
    "schedule_signal",
    "drift_signal",
    "market_opportunity_signal",
    "profile_mismatch_signal",
    "select_decision",
    "RebalanceAdvice",
    "advise_rebalance",
]
