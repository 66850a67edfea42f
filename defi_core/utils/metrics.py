"""
Return, volatility and drawdown primitives for portfolio valuation series.

All functions take a pandas Series of portfolio values ordered NEWEST-FIRST
(index 0 = most recent) and work in percent. Crypto markets trade every day,
so annualization uses 365 periods per year by default.
"""
from __future__ import annotations
import numpy as np
import pandas as pd


def period_return(values: pd.Series, lookback: int) -> float:
    """
    Percentage change from ``values[min(lookback, n-1)]`` to ``values[0]``.

    Returns 0.0 for fewer than 2 points or when the reference value is 0.
    """
    n = len(values)
    if n < 2:
        return 0.0
    ref = float(values.iloc[min(lookback, n - 1)])
    if ref == 0:
        return 0.0
    return (float(values.iloc[0]) - ref) / ref * 100.0


def daily_returns(values: pd.Series) -> pd.Series:
    """
    Per-period percentage changes between each snapshot and the one before it.

    Element i compares ``values[i]`` with the older ``values[i+1]`` and keeps
    the newer point's index label, so the result stays newest-first. Pairs
    whose older value is 0 have no defined return and are skipped.
    """
    if len(values) < 2:
        return pd.Series(dtype=float)
    newer = values.iloc[:-1].astype(float)
    older = values.iloc[1:].astype(float).to_numpy()
    mask = older != 0
    with np.errstate(divide="ignore", invalid="ignore"):
        rets = (newer.to_numpy() - older) / older * 100.0
    return pd.Series(rets[mask], index=newer.index[mask], dtype=float)


def annualize_vol(returns: pd.Series, periods_per_year: int = 365) -> float:
    """Population standard deviation of per-period returns, annualized by sqrt(periods)."""
    if len(returns) == 0:
        return 0.0
    return float(returns.std(ddof=0) * np.sqrt(periods_per_year))


def downside_deviation(returns: pd.Series, threshold: float = 0.0, periods_per_year: int = 365) -> float:
    """Annualized population stdev of the returns that fall below ``threshold``."""
    downside = returns[returns < threshold]
    if len(downside) == 0:
        return 0.0
    return float(downside.std(ddof=0) * np.sqrt(periods_per_year))


def historical_var(returns: pd.Series, confidence: float = 0.95) -> float:
    """
    Empirical value at risk: the ascending-sorted return at index
    ``floor(n * (1 - confidence))``. 0.0 when there are no returns.
    """
    n = len(returns)
    if n == 0:
        return 0.0
    ordered = np.sort(returns.to_numpy(dtype=float))
    idx = int(np.floor(n * (1.0 - confidence) + 1e-9))
    return float(ordered[min(idx, n - 1)])


def max_drawdown(values: pd.Series) -> float:
    """
    Largest peak-to-trough decline, reported as a non-positive percentage.

    The scan runs chronologically (oldest to newest) against the running
    peak; points where the running peak is 0 contribute no drawdown.
    """
    if len(values) == 0:
        return 0.0
    chronological = values.iloc[::-1].astype(float).reset_index(drop=True)
    peak = chronological.cummax()
    with np.errstate(divide="ignore", invalid="ignore"):
        dd = ((peak - chronological) / peak * 100.0).where(peak > 0, 0.0)
    worst = float(dd.max())
    return -worst if worst > 0 else 0.0


def win_rate(values: pd.Series) -> float:
    """Share of adjacent transitions (in percent) where the value went up."""
    n = len(values)
    if n < 2:
        return 0.0
    newer = values.iloc[:-1].to_numpy(dtype=float)
    older = values.iloc[1:].to_numpy(dtype=float)
    return float((newer > older).sum()) / (n - 1) * 100.0


def sharpe(annual_return: float, vol: float, risk_free_rate: float = 2.0) -> float:
    """(annual_return - rf) / vol, all in percent; 0 when vol is 0."""
    if vol == 0:
        return 0.0
    return (annual_return - risk_free_rate) / vol


__all__ = [
    "period_return",
    "daily_returns",
    "annualize_vol",
    "downside_deviation",
    "historical_var",
    "max_drawdown",
    "win_rate",
    "sharpe",
]
