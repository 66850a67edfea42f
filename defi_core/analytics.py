"""
Performance analytics over a portfolio valuation history.

Histories are NEWEST-FIRST at this boundary (index 0 = most recent snapshot);
pass ``order="oldest_first"`` to have them reversed. All results are percent
figures recomputed from the inputs on every call.

Two documented simplifications are kept for compatibility with the figures
the dashboard has always shown:

- annualized return is the 30-period return times 12 (linear, no compounding)
- the default Sortino ratio is Sharpe x 1.15; ``sortino_method="downside"``
  computes a true downside-deviation Sortino instead
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

import numpy as np
import pandas as pd

from defi_core.allocation import ProtocolAPYs
from defi_core.portfolio import PROTOCOLS
from defi_core.portfolio.snapshots import NEWEST_FIRST, PortfolioSnapshot, history_frame, normalize_history
from defi_core.utils import get_logger
from defi_core.utils import metrics as m
from defi_core.validation import ValidationError, require_finite, require_non_negative

log = get_logger(__name__)

DEFAULT_RISK_FREE_RATE = 2.0
PERIODS_PER_YEAR = 365
VAR_95_Z = 1.65
SORTINO_APPROX_FACTOR = 1.15
WEEK_LOOKBACK = 7
MONTH_LOOKBACK = 30
SORTINO_METHODS = ("approximate", "downside")


@dataclass(frozen=True)
class DayReturn:
    date: Optional[datetime] = None
    return_pct: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date.isoformat() if self.date else None, "return": self.return_pct}


@dataclass(frozen=True)
class PerformanceMetrics:
    daily_return: float = 0.0
    weekly_return: float = 0.0
    monthly_return: float = 0.0
    annualized_return: float = 0.0
    volatility: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    value_at_risk_95: float = 0.0
    max_drawdown: float = 0.0
    win_rate: float = 0.0
    best_day: DayReturn = field(default_factory=DayReturn)
    worst_day: DayReturn = field(default_factory=DayReturn)
    insufficient_data: bool = False
    observations: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dailyReturn": self.daily_return,
            "weeklyReturn": self.weekly_return,
            "monthlyReturn": self.monthly_return,
            "annualizedReturn": self.annualized_return,
            "volatility": self.volatility,
            "sharpeRatio": self.sharpe_ratio,
            "sortinoRatio": self.sortino_ratio,
            "calmarRatio": self.calmar_ratio,
            "valueAtRisk95": self.value_at_risk_95,
            "maxDrawdown": self.max_drawdown,
            "winRate": self.win_rate,
            "bestDay": self.best_day.to_dict(),
            "worstDay": self.worst_day.to_dict(),
            "insufficientData": self.insufficient_data,
            "observations": self.observations,
        }

    def numeric_values(self) -> Dict[str, float]:
        """Every float metric by field name (best/worst day as their returns)."""
        out = {
            name: getattr(self, name)
            for name in (
                "daily_return", "weekly_return", "monthly_return", "annualized_return",
                "volatility", "sharpe_ratio", "sortino_ratio", "calmar_ratio",
                "value_at_risk_95", "max_drawdown", "win_rate",
            )
        }
        out["best_day"] = self.best_day.return_pct
        out["worst_day"] = self.worst_day.return_pct
        return out


def _extreme_day(returns: pd.Series, best: bool) -> DayReturn:
    if returns.empty:
        return DayReturn()
    arr = returns.to_numpy()
    # argmax/argmin return the first hit, i.e. the most recent on ties
    pos = int(np.argmax(arr) if best else np.argmin(arr))
    label = returns.index[pos]
    date = label.to_pydatetime() if isinstance(label, pd.Timestamp) else label
    return DayReturn(date=date, return_pct=float(arr[pos]))


def compute_performance_metrics(
    history: Iterable[Any],
    principal: float,
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
    order: str = NEWEST_FIRST,
    sortino_method: str = "approximate",
    periods_per_year: int = PERIODS_PER_YEAR,
    var_z: float = VAR_95_Z,
) -> PerformanceMetrics:
    """
    Compute return, risk and risk-adjusted metrics for a valuation history.

    Args:
        history: PortfolioSnapshot objects (or dict payloads) in ``order``
        principal: Total principal deposited, in the same unit as the values
        risk_free_rate: Annual risk-free rate in percent (default 2.0)
        order: "newest_first" (canonical) or "oldest_first"
        sortino_method: "approximate" (Sharpe x 1.15) or "downside"
        periods_per_year: Annualization factor for volatility
        var_z: Normal quantile for parametric VaR (1.65 ~ one-sided 95%)

    Returns:
        PerformanceMetrics. With fewer than 2 snapshots every numeric metric
        is 0 and ``insufficient_data`` is True; short histories never raise.

    Raises:
        ValidationError: malformed history, bad ordering, negative/non-finite
            principal, or unknown sortino_method.
    """
    try:
        snaps = normalize_history(history, order=order)
        require_non_negative(principal, "principal")
        rf = require_finite(risk_free_rate, "risk_free_rate")
        if sortino_method not in SORTINO_METHODS:
            raise ValidationError(f"Unknown sortino_method '{sortino_method}'", field="sortino_method")
    except ValidationError as e:
        log.warning("Rejected performance history: %s", e)
        raise

    if len(snaps) < 2:
        log.debug("Insufficient history (%d snapshots)", len(snaps))
        return PerformanceMetrics(insufficient_data=True, observations=len(snaps))

    values = history_frame(snaps)["total"].astype(float)

    daily = m.period_return(values, 1)
    weekly = m.period_return(values, WEEK_LOOKBACK)
    monthly = m.period_return(values, MONTH_LOOKBACK)
    annualized = monthly * 12.0

    rets = m.daily_returns(values)
    vol = m.annualize_vol(rets, periods_per_year=periods_per_year)
    sharpe = m.sharpe(annualized, vol, risk_free_rate=rf)

    if sortino_method == "downside":
        dd_dev = m.downside_deviation(rets, threshold=rf / periods_per_year, periods_per_year=periods_per_year)
        sortino = (annualized - rf) / dd_dev if dd_dev > 0 else 0.0
    else:
        sortino = sharpe * SORTINO_APPROX_FACTOR

    mdd = m.max_drawdown(values)
    calmar = abs(annualized / mdd) if mdd != 0 else 0.0

    result = PerformanceMetrics(
        daily_return=daily,
        weekly_return=weekly,
        monthly_return=monthly,
        annualized_return=annualized,
        volatility=vol,
        sharpe_ratio=sharpe,
        sortino_ratio=sortino,
        calmar_ratio=calmar,
        value_at_risk_95=-(vol * var_z) if vol > 0 else 0.0,
        max_drawdown=mdd,
        win_rate=m.win_rate(values),
        best_day=_extreme_day(rets, best=True),
        worst_day=_extreme_day(rets, best=False),
        insufficient_data=False,
        observations=len(snaps),
    )
    log.debug("Metrics n=%d ann=%.4f vol=%.4f mdd=%.4f", len(snaps), annualized, vol, mdd)
    return result


@dataclass(frozen=True)
class RiskMetrics:
    """Risk view of a history: the ratios from PerformanceMetrics plus the
    empirical tail and downside figures."""
    volatility: float = 0.0
    downside_deviation: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    value_at_risk_95: float = 0.0
    historical_var_95: float = 0.0
    max_drawdown: float = 0.0
    insufficient_data: bool = False
    observations: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "volatility": self.volatility,
            "downsideDeviation": self.downside_deviation,
            "sharpeRatio": self.sharpe_ratio,
            "sortinoRatio": self.sortino_ratio,
            "calmarRatio": self.calmar_ratio,
            "valueAtRisk95": self.value_at_risk_95,
            "historicalVaR95": self.historical_var_95,
            "maxDrawdown": self.max_drawdown,
            "insufficientData": self.insufficient_data,
            "observations": self.observations,
        }


def compute_risk_metrics(
    history: Iterable[Any],
    principal: float,
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
    order: str = NEWEST_FIRST,
    periods_per_year: int = PERIODS_PER_YEAR,
    var_z: float = VAR_95_Z,
) -> RiskMetrics:
    """
    Risk-adjusted ratios with a downside-deviation Sortino, the parametric
    VaR, and the historical 95% VaR read off the sorted daily returns.

    Downside deviation counts daily returns below ``risk_free_rate /
    periods_per_year`` and is annualized by sqrt(periods_per_year).
    """
    try:
        snaps = normalize_history(history, order=order)
    except ValidationError as e:
        log.warning("Rejected risk history: %s", e)
        raise
    perf = compute_performance_metrics(
        snaps,
        principal,
        risk_free_rate=risk_free_rate,
        sortino_method="downside",
        periods_per_year=periods_per_year,
        var_z=var_z,
    )
    if perf.insufficient_data:
        return RiskMetrics(insufficient_data=True, observations=perf.observations)

    rets = m.daily_returns(history_frame(snaps)["total"].astype(float))
    rf = float(risk_free_rate)
    return RiskMetrics(
        volatility=perf.volatility,
        downside_deviation=m.downside_deviation(rets, threshold=rf / periods_per_year,
                                                periods_per_year=periods_per_year),
        sharpe_ratio=perf.sharpe_ratio,
        sortino_ratio=perf.sortino_ratio,
        calmar_ratio=perf.calmar_ratio,
        value_at_risk_95=perf.value_at_risk_95,
        historical_var_95=m.historical_var(rets, confidence=0.95),
        max_drawdown=perf.max_drawdown,
        insufficient_data=False,
        observations=perf.observations,
    )


# ============================================================================
# Portfolio totals, protocol breakdown, benchmarks
# ============================================================================

@dataclass(frozen=True)
class PortfolioTotals:
    total_value: float
    total_deposited: float
    total_return: float
    total_return_pct: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalValue": self.total_value,
            "totalDeposited": self.total_deposited,
            "totalReturn": self.total_return,
            "totalReturnPercentage": self.total_return_pct,
        }


def portfolio_totals(history: Iterable[Any], principal: float, order: str = NEWEST_FIRST) -> PortfolioTotals:
    """Latest value against principal; an empty history counts as value 0."""
    snaps = normalize_history(history, order=order)
    deposited = require_non_negative(principal, "principal")
    value = snaps[0].total_value if snaps else 0.0
    ret = value - deposited
    pct = ret / deposited * 100.0 if deposited > 0 else 0.0
    return PortfolioTotals(value, deposited, ret, pct)


@dataclass(frozen=True)
class ProtocolPerformance:
    protocol: str
    current_value: float
    allocation_pct: float
    current_apy: float
    total_deposited: float
    total_return: float
    return_pct: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "protocol": self.protocol,
            "currentValue": self.current_value,
            "allocation": self.allocation_pct,
            "currentAPY": self.current_apy,
            "totalDeposited": self.total_deposited,
            "totalReturn": self.total_return,
            "returnPercentage": self.return_pct,
        }


def protocol_breakdown(
    snapshot: PortfolioSnapshot,
    apys: Any,
    deposits: Optional[Mapping[str, float]] = None,
) -> List[ProtocolPerformance]:
    """
    Per-protocol value, share and return for the latest snapshot.

    ``deposits`` maps protocol -> principal deposited into it; protocols
    without an entry are reported with 0 deposited and 0% return.
    """
    if isinstance(snapshot, Mapping):
        snapshot = PortfolioSnapshot.from_dict(snapshot)
    rates = apys if isinstance(apys, ProtocolAPYs) else ProtocolAPYs.from_mapping(apys)
    deposits = deposits or {}
    total = snapshot.total_value

    out = []
    for name, value, apy in zip(PROTOCOLS, snapshot.protocol_values, rates.as_tuple()):
        deposited = require_non_negative(deposits.get(name, 0.0), f"deposits.{name}")
        ret = value - deposited if deposited > 0 else 0.0
        out.append(ProtocolPerformance(
            protocol=name,
            current_value=value,
            allocation_pct=value / total * 100.0 if total > 0 else 0.0,
            current_apy=apy,
            total_deposited=deposited,
            total_return=ret,
            return_pct=ret / deposited * 100.0 if deposited > 0 else 0.0,
        ))
    return out


@dataclass(frozen=True)
class BenchmarkComparison:
    strategy: str
    annualized_return: float
    outperformance: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "annualizedReturn": self.annualized_return,
            "outperformance": self.outperformance,
        }


DEFAULT_BENCHMARKS: Dict[str, float] = {
    "USDC Lending": 4.5,
    "Traditional Savings": 2.5,
    "S&P 500 Index": 10.0,
}


def benchmark_comparison(
    metrics: PerformanceMetrics,
    benchmarks: Optional[Mapping[str, float]] = None,
) -> List[BenchmarkComparison]:
    """The strategy's annualized return next to static benchmark returns.

    ``outperformance`` is strategy minus benchmark, in percentage points; the
    strategy's own row has 0.
    """
    table = dict(DEFAULT_BENCHMARKS if benchmarks is None else benchmarks)
    ours = metrics.annualized_return
    rows = [BenchmarkComparison("Your DeFi Strategy", ours, 0.0)]
    for name, annual in table.items():
        annual = require_finite(annual, f"benchmarks.{name}")
        rows.append(BenchmarkComparison(name, annual, ours - annual))
    return rows


__all__ = [
    "DEFAULT_RISK_FREE_RATE",
    "DayReturn",
    "PerformanceMetrics",
    "compute_performance_metrics",
    "RiskMetrics",
    "compute_risk_metrics",
    "PortfolioTotals",
    "portfolio_totals",
    "ProtocolPerformance",
    "protocol_breakdown",
    "BenchmarkComparison",
    "DEFAULT_BENCHMARKS",
    "benchmark_comparison",
]
