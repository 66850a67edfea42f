from importlib.metadata import version, PackageNotFoundError
__all__ = ["risk_profile", "allocation", "analytics", "rebalance", "backtest", "dashboard", "investor_profiles", "demo_data", "utils"]
try:
    __version__ = version("defi-core")
except PackageNotFoundError:
    __version__ = "0.1.0"

# Re-export the engine entry points for convenience
from .validation import ValidationError  # noqa: E402
from .risk_profile import assess_risk, compute_risk_score, risk_profile_for_score, RiskProfile  # noqa: E402
from .allocation import generate_allocation_strategy, ProtocolAPYs  # noqa: E402
from .analytics import compute_performance_metrics, compute_risk_metrics  # noqa: E402
from .rebalance import advise_rebalance, recommend_rebalance  # noqa: E402
from .backtest import run_backtest  # noqa: E402

__all__ += [
    "ValidationError",
    "assess_risk",
    "compute_risk_score",
    "risk_profile_for_score",
    "RiskProfile",
    "generate_allocation_strategy",
    "ProtocolAPYs",
    "compute_performance_metrics",
    "compute_risk_metrics",
    "recommend_rebalance",
    "advise_rebalance",
    "run_backtest",
]
