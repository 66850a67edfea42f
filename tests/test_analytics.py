from __future__ import annotations
import math
from datetime import datetime, timedelta, timezone

import pytest

from defi_core.analytics import (
    DEFAULT_BENCHMARKS,
    PerformanceMetrics,
    benchmark_comparison,
    compute_performance_metrics,
    compute_risk_metrics,
    portfolio_totals,
    protocol_breakdown,
)
from defi_core.portfolio.snapshots import OLDEST_FIRST, PortfolioSnapshot
from defi_core.validation import ValidationError

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _oldest_first(values):
    return [PortfolioSnapshot(T0 + timedelta(days=i), v) for i, v in enumerate(values)]


def _newest_first(values):
    """values given newest-first; timestamps count down from the newest."""
    n = len(values)
    return [PortfolioSnapshot(T0 + timedelta(days=n - 1 - i), v) for i, v in enumerate(values)]


@pytest.mark.parametrize("n", [0, 1])
def test_short_history_is_flagged_not_raised(n):
    metrics = compute_performance_metrics(_oldest_first([100.0] * n), 100.0, order=OLDEST_FIRST)
    assert metrics.insufficient_data is True
    assert metrics.observations == n
    assert all(v == 0.0 for v in metrics.numeric_values().values())
    assert metrics.best_day.date is None
    assert metrics.worst_day.date is None


def test_known_three_point_history():
    # chronological 100 -> 80 -> 120
    metrics = compute_performance_metrics(_oldest_first([100.0, 80.0, 120.0]), 100.0, order=OLDEST_FIRST)
    vol = 35.0 * math.sqrt(365)

    assert metrics.insufficient_data is False
    assert metrics.observations == 3
    assert metrics.daily_return == pytest.approx(50.0)
    assert metrics.weekly_return == pytest.approx(20.0)
    assert metrics.monthly_return == pytest.approx(20.0)
    assert metrics.annualized_return == pytest.approx(240.0)
    assert metrics.max_drawdown == pytest.approx(-20.0)
    assert metrics.win_rate == pytest.approx(50.0)
    assert metrics.volatility == pytest.approx(vol)
    assert metrics.sharpe_ratio == pytest.approx(238.0 / vol)
    assert metrics.sortino_ratio == pytest.approx(238.0 / vol * 1.15)
    assert metrics.calmar_ratio == pytest.approx(12.0)
    assert metrics.value_at_risk_95 == pytest.approx(-vol * 1.65)


def test_best_and_worst_day_carry_newer_timestamp():
    metrics = compute_performance_metrics(_oldest_first([100.0, 80.0, 120.0]), 100.0, order=OLDEST_FIRST)
    assert metrics.best_day.return_pct == pytest.approx(50.0)
    assert metrics.best_day.date == T0 + timedelta(days=2)
    assert metrics.worst_day.return_pct == pytest.approx(-20.0)
    assert metrics.worst_day.date == T0 + timedelta(days=1)


def test_best_day_ties_resolve_to_most_recent():
    metrics = compute_performance_metrics(_oldest_first([100.0, 110.0, 100.0, 110.0]), 100.0, order=OLDEST_FIRST)
    assert metrics.best_day.return_pct == pytest.approx(10.0)
    assert metrics.best_day.date == T0 + timedelta(days=3)


def test_newest_first_and_oldest_first_agree():
    chronological = [100.0, 104.0, 99.0, 101.0, 108.0, 107.5]
    a = compute_performance_metrics(_oldest_first(chronological), 100.0, order=OLDEST_FIRST)
    b = compute_performance_metrics(_newest_first(list(reversed(chronological))), 100.0)
    assert a == b


def test_lookbacks_read_index_7_and_30_on_long_history():
    # newest-first 200, 199, ..., 156: the reference points are 193 and 170, not the oldest
    values = [200.0 - i for i in range(45)]
    metrics = compute_performance_metrics(_newest_first(values), 150.0)
    assert metrics.observations == 45
    assert metrics.daily_return == pytest.approx((200.0 - 199.0) / 199.0 * 100.0)
    assert metrics.weekly_return == pytest.approx((200.0 - 193.0) / 193.0 * 100.0)
    assert metrics.monthly_return == pytest.approx((200.0 - 170.0) / 170.0 * 100.0)
    assert metrics.annualized_return == pytest.approx((200.0 - 170.0) / 170.0 * 100.0 * 12.0)
    assert metrics.max_drawdown == 0.0


def test_risk_metrics_add_historical_var_and_downside_deviation():
    # chronological returns -10, -20, +25
    history = _oldest_first([100.0, 90.0, 72.0, 90.0])
    risk = compute_risk_metrics(history, 100.0, order=OLDEST_FIRST)
    perf = compute_performance_metrics(history, 100.0, order=OLDEST_FIRST, sortino_method="downside")

    assert risk.historical_var_95 == pytest.approx(-20.0)
    assert risk.downside_deviation == pytest.approx(5.0 * math.sqrt(365))
    assert risk.sortino_ratio == pytest.approx(-122.0 / (5.0 * math.sqrt(365)))
    assert risk.value_at_risk_95 == pytest.approx(perf.value_at_risk_95)
    assert risk.max_drawdown == pytest.approx(-28.0)
    assert risk.calmar_ratio == pytest.approx(120.0 / 28.0)
    assert risk.to_dict()["historicalVaR95"] == pytest.approx(-20.0)


def test_risk_metrics_on_short_history():
    risk = compute_risk_metrics(_oldest_first([100.0]), 100.0, order=OLDEST_FIRST)
    assert risk.insufficient_data is True
    assert risk.historical_var_95 == 0.0
    assert risk.downside_deviation == 0.0


def test_risk_metrics_reject_misordered_history():
    with pytest.raises(ValidationError):
        compute_risk_metrics(_oldest_first([100.0, 101.0, 102.0]), 100.0)


def test_flat_history_has_zero_risk_ratios():
    metrics = compute_performance_metrics(_oldest_first([100.0, 100.0, 100.0]), 100.0, order=OLDEST_FIRST)
    assert metrics.volatility == 0.0
    assert metrics.sharpe_ratio == 0.0
    assert metrics.sortino_ratio == 0.0
    assert metrics.calmar_ratio == 0.0
    assert metrics.value_at_risk_95 == 0.0
    assert metrics.max_drawdown == 0.0
    assert metrics.win_rate == 0.0


def test_monotonic_growth_has_zero_calmar():
    metrics = compute_performance_metrics(_oldest_first([100.0, 101.0, 103.0]), 100.0, order=OLDEST_FIRST)
    assert metrics.max_drawdown == 0.0
    assert metrics.calmar_ratio == 0.0
    assert metrics.win_rate == pytest.approx(100.0)


def test_downside_sortino():
    # chronological returns -10, -20, +25; monthly return -10 -> annualized -120
    history = _oldest_first([100.0, 90.0, 72.0, 90.0])
    metrics = compute_performance_metrics(history, 100.0, order=OLDEST_FIRST, sortino_method="downside")
    assert metrics.annualized_return == pytest.approx(-120.0)
    assert metrics.sortino_ratio == pytest.approx(-122.0 / (5.0 * math.sqrt(365)))


def test_downside_sortino_without_downside_is_zero():
    history = _oldest_first([100.0, 110.0, 120.0])
    metrics = compute_performance_metrics(history, 100.0, order=OLDEST_FIRST, sortino_method="downside")
    assert metrics.sortino_ratio == 0.0


def test_risk_free_rate_is_a_parameter():
    history = _oldest_first([100.0, 80.0, 120.0])
    base = compute_performance_metrics(history, 100.0, order=OLDEST_FIRST, risk_free_rate=0.0)
    assert base.sharpe_ratio == pytest.approx(240.0 / (35.0 * math.sqrt(365)))


@pytest.mark.parametrize("principal", [-1.0, math.nan, math.inf, "lots"])
def test_invalid_principal_raises(principal):
    with pytest.raises(ValidationError):
        compute_performance_metrics(_oldest_first([100.0, 101.0]), principal, order=OLDEST_FIRST)


def test_misordered_history_raises():
    with pytest.raises(ValidationError):
        compute_performance_metrics(_oldest_first([100.0, 101.0, 102.0]), 100.0)


def test_unknown_sortino_method_raises():
    with pytest.raises(ValidationError):
        compute_performance_metrics(_oldest_first([100.0, 101.0]), 100.0, order=OLDEST_FIRST, sortino_method="exact")


def test_to_dict_keys():
    d = compute_performance_metrics(_oldest_first([100.0, 80.0, 120.0]), 100.0, order=OLDEST_FIRST).to_dict()
    for key in ("dailyReturn", "annualizedReturn", "sharpeRatio", "valueAtRisk95", "maxDrawdown",
                "bestDay", "worstDay", "insufficientData"):
        assert key in d
    assert d["bestDay"]["date"] == (T0 + timedelta(days=2)).isoformat()


def test_portfolio_totals():
    totals = portfolio_totals(_newest_first([11000.0, 10500.0]), 10000.0)
    assert totals.total_value == 11000.0
    assert totals.total_return == pytest.approx(1000.0)
    assert totals.total_return_pct == pytest.approx(10.0)
    assert totals.to_dict()["totalReturnPercentage"] == pytest.approx(10.0)

    assert portfolio_totals(_newest_first([50.0]), 0.0).total_return_pct == 0.0
    assert portfolio_totals([], 100.0).total_value == 0.0


def test_protocol_breakdown():
    snap = PortfolioSnapshot(T0, 1000.0, (500.0, 300.0, 200.0))
    rows = protocol_breakdown(snap, {"lending": 5.0, "lp": 10.0, "farm": 20.0}, deposits={"lending": 400.0})
    assert [r.protocol for r in rows] == ["lending", "lp", "farm"]
    assert [r.allocation_pct for r in rows] == pytest.approx([50.0, 30.0, 20.0])
    assert rows[0].total_return == pytest.approx(100.0)
    assert rows[0].return_pct == pytest.approx(25.0)
    assert rows[1].total_deposited == 0.0
    assert rows[1].return_pct == 0.0
    assert rows[2].to_dict()["currentAPY"] == 20.0


def test_protocol_breakdown_empty_portfolio():
    snap = PortfolioSnapshot(T0, 0.0)
    rows = protocol_breakdown(snap, {"lending": 5.0, "lp": 10.0, "farm": 20.0})
    assert all(r.allocation_pct == 0.0 for r in rows)


def test_benchmark_comparison_defaults():
    rows = benchmark_comparison(PerformanceMetrics(annualized_return=12.0))
    assert rows[0].strategy == "Your DeFi Strategy"
    assert rows[0].outperformance == 0.0
    by_name = {r.strategy: r for r in rows[1:]}
    assert set(by_name) == set(DEFAULT_BENCHMARKS)
    assert by_name["USDC Lending"].outperformance == pytest.approx(7.5)
    assert by_name["S&P 500 Index"].outperformance == pytest.approx(2.0)


def test_benchmark_comparison_custom_table():
    rows = benchmark_comparison(PerformanceMetrics(annualized_return=3.0), {"T-Bills": 5.0})
    assert [r.strategy for r in rows] == ["Your DeFi Strategy", "T-Bills"]
    assert rows[1].outperformance == pytest.approx(-2.0)
    with pytest.raises(ValidationError):
        benchmark_comparison(PerformanceMetrics(), {"Broken": "n/a"})
