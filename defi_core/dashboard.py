"""Per-user dashboard payload: every engine result for one user in one call."""

from __future__ import annotations
from typing import Any, Dict, Iterable, Mapping, Optional

from defi_core.allocation import ProtocolAPYs, generate_allocation_strategy
from defi_core.analytics import (
    DEFAULT_RISK_FREE_RATE,
    PERIODS_PER_YEAR,
    VAR_95_Z,
    benchmark_comparison,
    compute_performance_metrics,
    portfolio_totals,
    protocol_breakdown,
)
from defi_core.portfolio.snapshots import NEWEST_FIRST, normalize_history
from defi_core.rebalance import DEFAULT_THRESHOLD_PCT, current_allocation_from_snapshot, recommend_rebalance
from defi_core.risk_profile import RiskAssessment
from defi_core.utils import get_logger

log = get_logger(__name__)


def build_dashboard(
    assessment: RiskAssessment,
    apys: Any,
    history: Iterable[Any],
    principal: float,
    order: str = NEWEST_FIRST,
    deposits: Optional[Mapping[str, float]] = None,
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
    sortino_method: str = "approximate",
    periods_per_year: int = PERIODS_PER_YEAR,
    var_z: float = VAR_95_Z,
    threshold_pct: float = DEFAULT_THRESHOLD_PCT,
    benchmarks: Optional[Mapping[str, float]] = None,
) -> Dict[str, Any]:
    """
    Combine risk, target allocation, performance, totals, protocol breakdown,
    benchmarks and the rebalance check into one camelCase payload.

    ``rebalance`` is None when there is no latest snapshot with deployed value
    to derive a current allocation from. Everything else is always present;
    a short history shows up as ``performanceMetrics.insufficientData``.
    """
    rates = apys if isinstance(apys, ProtocolAPYs) else ProtocolAPYs.from_mapping(apys)
    snaps = normalize_history(history, order=order)

    strategy = generate_allocation_strategy(assessment.risk_score, rates)
    metrics = compute_performance_metrics(
        snaps,
        principal,
        risk_free_rate=risk_free_rate,
        sortino_method=sortino_method,
        periods_per_year=periods_per_year,
        var_z=var_z,
    )
    totals = portfolio_totals(snaps, principal)

    breakdown = []
    rebalance = None
    if snaps:
        latest = snaps[0]
        breakdown = [p.to_dict() for p in protocol_breakdown(latest, rates, deposits)]
        # idle funds in total_value are not part of the split being corrected
        if sum(latest.protocol_values) > 0:
            rec = recommend_rebalance(current_allocation_from_snapshot(latest), strategy, threshold_pct)
            rebalance = rec.to_dict()
            rebalance["deltas"] = rec.rebalance_deltas(sum(latest.protocol_values))

    payload = {
        "userId": assessment.user_id,
        "riskAssessment": assessment.to_dict(),
        "allocation": strategy.to_dict(),
        "portfolio": totals.to_dict(),
        "performanceMetrics": metrics.to_dict(),
        "protocolPerformance": breakdown,
        "benchmarkComparisons": [b.to_dict() for b in benchmark_comparison(metrics, benchmarks)],
        "rebalance": rebalance,
    }
    log.debug("Dashboard user=%s snapshots=%d rebalance=%s",
              assessment.user_id, len(snaps), rebalance and rebalance["shouldRebalance"])
    return payload


__all__ = ["build_dashboard"]
