from __future__ import annotations
import os
from pathlib import Path

import yaml
from dotenv import dotenv_values


def load_env_once(dotenv_path: str | None = None):
    """
    Load .env without relying on find_dotenv() to avoid assertion errors in -c / REPL contexts.
    Values already present in the environment win over the file.
    """
    dp = dotenv_path or ".env"
    if not os.environ.get("_DEFI_CORE_ENV_LOADED", ""):
        if Path(dp).exists():
            env = dotenv_values(dp)
            for k, v in env.items():
                if v is not None and k not in os.environ:
                    os.environ[k] = str(v)
        os.environ["_DEFI_CORE_ENV_LOADED"] = "1"


def _truthy(value, default: bool = False) -> bool:
    if value is None:
        return bool(default)
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def env_flag(name: str, default: bool | str = False) -> bool:
    """Return boolean interpretation of an environment flag (loads .env once)."""
    load_env_once()
    val = os.getenv(name)
    if val is None:
        return _truthy(default, default=False)
    return _truthy(val, default=False)


def _find_project_root() -> Path:
    # start at this file and walk up looking for a 'config' directory
    here = Path(__file__).resolve()
    for parent in [here.parent] + list(here.parents):
        if (parent / "config" / "config.yaml").exists():
            return parent
    return here.parents[2]


def _default_config_path() -> Path:
    load_env_once()
    override = os.getenv("DEFI_CORE_CONFIG")
    if override:
        return Path(override).expanduser()
    return _find_project_root() / "config" / "config.yaml"


def load_config(config_path: str | Path | None = None) -> dict:
    """Load YAML config safely, backfilling sane defaults for missing keys.

    Resolution order: explicit ``config_path``, ``$DEFI_CORE_CONFIG``, then the
    project ``config/config.yaml``. A missing file yields pure defaults.
    """
    p = Path(config_path) if config_path else _default_config_path()
    cfg: dict = {}
    if p.exists():
        with p.open("r") as f:
            cfg = yaml.safe_load(f) or {}
    if not isinstance(cfg, dict):
        cfg = {}

    # an empty YAML key loads as None; treat any non-mapping section as absent
    for section in ("analytics", "rebalance", "backtest"):
        if not isinstance(cfg.get(section), dict):
            cfg[section] = {}
    cfg["analytics"].setdefault("risk_free_rate", 2.0)
    cfg["analytics"].setdefault("trading_days_per_year", 365)
    cfg["analytics"].setdefault("var_z_score", 1.65)
    cfg["analytics"].setdefault("sortino_method", "approximate")
    cfg["rebalance"].setdefault("threshold_bps", 500)
    cfg["rebalance"].setdefault("frequency_days", 30)
    cfg["backtest"].setdefault("gas_cost_per_rebalance", 22.5)
    cfg["backtest"].setdefault("rebalance_frequency_days", 30)
    # benchmarks are replaced as a whole so a config can drop entries
    if not cfg.get("benchmarks") or not isinstance(cfg["benchmarks"], dict):
        cfg["benchmarks"] = {
            "USDC Lending": 4.5,
            "Traditional Savings": 2.5,
            "S&P 500 Index": 10.0,
        }
    return cfg
