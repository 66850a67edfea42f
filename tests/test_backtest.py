from __future__ import annotations
from datetime import datetime, timezone

import pytest

from defi_core.backtest import (
    GAS_COST_PER_REBALANCE,
    HISTORICAL_YIELDS,
    annualized_return,
    reference_benchmarks,
    run_backtest,
)
from defi_core.validation import ValidationError

START = datetime(2024, 1, 1, tzinfo=timezone.utc)
END = datetime(2024, 3, 31, tzinfo=timezone.utc)  # 90 days later


def test_same_seed_replays_same_path():
    a = run_backtest(10000, 50, START, END, seed=11)
    b = run_backtest(10000, 50, START, END, seed=11)
    c = run_backtest(10000, 50, START, END, seed=12)
    assert a == b
    assert a.final_value != c.final_value


def test_timeline_covers_every_day_and_rebalances_on_schedule():
    result = run_backtest(10000, 50, START, END, rebalance_frequency=30, seed=1)
    assert result.days == 90
    assert len(result.timeline) == 91
    assert result.timeline[0].date == START
    assert result.timeline[-1].date == END

    rebalanced = [i for i, t in enumerate(result.timeline) if t.action == "rebalance"]
    assert rebalanced == [30, 60, 90]
    assert result.rebalance_count == 3
    assert all(result.timeline[i].gas_cost == GAS_COST_PER_REBALANCE for i in rebalanced)
    assert result.timeline[1].gas_cost == 0.0


def test_gas_is_the_only_source_of_drawdown():
    # every simulated yield is positive, so without gas the value only rises
    free = run_backtest(10000, 80, START, END, seed=5, gas_cost=0.0)
    assert free.max_drawdown == 0.0
    assert all(b.portfolio_value > a.portfolio_value for a, b in zip(free.timeline, free.timeline[1:]))

    paid = run_backtest(10000, 80, START, END, seed=5)
    assert paid.max_drawdown < 0.0
    assert paid.final_value < free.final_value


def test_compounding_adds_to_positive_days():
    plain = run_backtest(10000, 50, START, END, seed=3)
    compounded = run_backtest(10000, 50, START, END, seed=3, compounding=True)
    assert compounded.final_value > plain.final_value


def test_daily_yields_stay_inside_model_bounds():
    result = run_backtest(10000, 20, START, END, seed=9)
    lo_mult, hi_mult = 0.6 * 0.8, 1.5
    for entry in result.timeline:
        assert entry.market in ("bull", "normal", "bear")
        for name, daily in zip(("lending", "lp", "farm"), entry.daily_yields):
            model = HISTORICAL_YIELDS[name]
            low = (model.base - model.volatility - abs(model.trend)) * lo_mult / 365.0
            high = (model.base + model.volatility + abs(model.trend)) * hi_mult / 365.0
            assert low <= daily <= high


def test_summary_figures_are_consistent():
    result = run_backtest(5000, 80, START, END, seed=2)
    assert (result.allocation.lending_pct, result.allocation.lp_pct, result.allocation.farm_pct) == (20, 30, 50)
    assert result.final_value == result.timeline[-1].portfolio_value
    assert result.total_return == pytest.approx(result.final_value - 5000)
    assert result.return_pct == pytest.approx(result.total_return / 5000 * 100.0)
    assert result.annualized_return == pytest.approx(annualized_return(5000, result.final_value, 90))
    assert result.volatility > 0.0
    assert result.benchmarks["holdUsdc"] == 5000

    d = result.to_dict(include_timeline=False)
    assert "timeline" not in d
    assert d["rebalanceCount"] == result.rebalance_count
    assert len(result.to_dict()["timeline"]) == 91


def test_single_day_window():
    result = run_backtest(1000, 50, "2024-01-06", "2024-01-06", seed=0)
    assert result.days == 0
    assert len(result.timeline) == 1
    assert result.annualized_return == 0.0
    assert result.sharpe_ratio == 0.0
    assert result.volatility == 0.0


def test_annualized_return_and_benchmarks():
    assert annualized_return(100.0, 110.0, 365) == pytest.approx(10.0)
    assert annualized_return(100.0, 110.0, 0) == 0.0
    bench = reference_benchmarks(1000.0, 365)
    assert bench["holdUsdc"] == 1000.0
    assert bench["traditionalSavings"] == pytest.approx(1000.0 * (1 + 0.02 / 365) ** 365)
    assert bench["holdAvax"] == pytest.approx(1000.0 * (1 + 0.2 / 365) ** 365)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"initial_amount": 0},
        {"initial_amount": -5},
        {"risk_score": 101},
        {"end": datetime(2023, 12, 31, tzinfo=timezone.utc)},
        {"rebalance_frequency": 0},
        {"gas_cost": -1.0},
    ],
)
def test_invalid_inputs_raise(kwargs):
    params = {"initial_amount": 1000, "risk_score": 50, "start": START, "end": END}
    params.update(kwargs)
    with pytest.raises(ValidationError):
        run_backtest(**params)
