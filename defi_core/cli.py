#!/usr/bin/env python3
"""
defi-core command line: run the engines on JSON input, print JSON output.

USAGE EXAMPLES:

Score a questionnaire (file, inline JSON, or - for stdin):
    defi-core score --answers answers.json --user-id 0xabc

Target allocation for a score and current APYs:
    defi-core allocate --score 54 --apy lending=5.2 --apy lp=12.8 --apy farm=18.5

Performance metrics for an oldest-first history:
    defi-core metrics --history snapshots.json --principal 10000 --order oldest_first

Rebalance check from the latest snapshot against a target:
    defi-core rebalance --snapshot latest.json --target 40,40,20

Schedule, market and profile advice on top of the drift check:
    defi-core advise --current 70,30,0 --score 54 --apys apys.json --last-rebalance 2024-05-01

Seeded one-year backtest for a score:
    defi-core backtest --amount 10000 --score 54 --start 2023-01-01 --end 2023-12-31 --seed 42

Full dashboard for a demo persona (seeded, offline):
    defi-core demo --persona mike --days 90 --seed 7

Analytics and rebalance defaults come from config/config.yaml (or
$DEFI_CORE_CONFIG, or --config). Invalid input exits with status 2.
Set DEFI_CORE_COMPACT=1 to print single-line JSON unless --indent is given.
"""

from __future__ import annotations
import argparse
import json
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from defi_core.allocation import ProtocolAPYs, generate_allocation_strategy
from defi_core.analytics import (
    benchmark_comparison,
    compute_performance_metrics,
    compute_risk_metrics,
    portfolio_totals,
)
from defi_core.backtest import run_backtest
from defi_core.dashboard import build_dashboard
from defi_core.demo_data import (
    DEMO_APYS,
    DEMO_PERSONA_KEYS,
    demo_answers,
    demo_principal,
    generate_demo_history,
    get_demo_persona,
)
from defi_core.investor_profiles import calculate_surplus
from defi_core.portfolio.snapshots import NEWEST_FIRST, OLDEST_FIRST, PortfolioSnapshot
from defi_core.rebalance import (
    advise_rebalance,
    current_allocation_from_snapshot,
    recommend_rebalance,
    threshold_from_bps,
)
from defi_core.risk_profile import assess_risk
from defi_core.utils import env_flag, get_logger, load_config, load_env_once
from defi_core.validation import ValidationError

log = get_logger(__name__)


class JSONOutEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy scalars, datetimes and enums."""
    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        elif isinstance(obj, np.floating):
            return float(obj)
        elif isinstance(obj, np.ndarray):
            return obj.tolist()
        elif isinstance(obj, datetime):
            return obj.isoformat()
        elif isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


def _read_json(source: str) -> Any:
    """Parse JSON from a file path, ``-`` (stdin) or an inline JSON string."""
    if source == "-":
        text = sys.stdin.read()
    elif source.lstrip().startswith(("{", "[")):
        text = source
    elif Path(source).is_file():
        text = Path(source).read_text()
    else:
        text = source
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON input: {e}", field="input") from None


def _parse_apys(pairs: Optional[List[str]], raw: Optional[str]) -> ProtocolAPYs:
    if raw:
        return ProtocolAPYs.from_mapping(_read_json(raw))
    values: Dict[str, str] = {}
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep:
            raise ValidationError(f"--apy expects name=value, got '{pair}'", field="apy")
        values[name.strip()] = value.strip()
    try:
        parsed = {k: float(v) for k, v in values.items()}
    except ValueError:
        raise ValidationError("APY values must be numbers", field="apy") from None
    return ProtocolAPYs.from_mapping(parsed)


def _parse_triple(text: str, field: str) -> List[float]:
    try:
        parts = [float(x.strip()) for x in text.split(",")]
    except ValueError:
        raise ValidationError(f"{field} must be three comma-separated numbers", field=field) from None
    if len(parts) != 3:
        raise ValidationError(f"{field} must be three comma-separated numbers", field=field)
    return parts


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="defi-core",
        description="Risk scoring, allocation, analytics and rebalance checks for the DeFi vault",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", help="Path to config.yaml (default: $DEFI_CORE_CONFIG or config/config.yaml)")
    parser.add_argument("--indent", type=int, default=None,
                        help="JSON indent (default: 2, or compact when DEFI_CORE_COMPACT is set)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("score", help="Score questionnaire answers")
    p.add_argument("--answers", required=True, help="Answers JSON: list of {questionId, selectedOptionValue} or a map")
    p.add_argument("--user-id", default=None, help="Wallet address / user id to tag the assessment with")

    p = sub.add_parser("allocate", help="Target allocation for a risk score")
    p.add_argument("--score", type=int, required=True, help="Risk score 0-100")
    p.add_argument("--apy", action="append", metavar="NAME=PCT", help="Protocol APY, repeat for lending, lp, farm")
    p.add_argument("--apys", default=None, help="APYs as JSON object {lending, lp, farm}")

    p = sub.add_parser("metrics", help="Performance metrics for a snapshot history")
    p.add_argument("--history", required=True, help="Snapshots JSON list of {timestamp, totalValue, perProtocolValue}")
    p.add_argument("--principal", type=float, required=True, help="Total principal deposited")
    p.add_argument("--order", choices=[NEWEST_FIRST, OLDEST_FIRST], default=NEWEST_FIRST,
                   help="Order of the history list (default: newest_first)")
    p.add_argument("--sortino-method", choices=["approximate", "downside"], default=None,
                   help="Override the configured Sortino method")

    p = sub.add_parser("rebalance", help="Check allocation drift against a target")
    src = p.add_mutually_exclusive_group(required=True)
    src.add_argument("--current", help="Current allocation as lending,lp,farm percentages")
    src.add_argument("--snapshot", help="Latest snapshot JSON to derive the current allocation from")
    p.add_argument("--target", required=True, help="Target allocation as lending,lp,farm percentages")
    p.add_argument("--threshold-bps", type=float, default=None,
                   help="Drift threshold in basis points (default: config rebalance.threshold_bps)")
    p.add_argument("--total-value", type=float, default=None, help="Portfolio value for rebalance deltas")

    p = sub.add_parser("advise", help="Combined schedule, drift, market and profile rebalance advice")
    p.add_argument("--current", required=True, help="Current allocation as lending,lp,farm percentages")
    p.add_argument("--score", type=int, required=True, help="Risk score 0-100")
    p.add_argument("--apy", action="append", metavar="NAME=PCT", help="Protocol APY, repeat for lending, lp, farm")
    p.add_argument("--apys", default=None, help="APYs as JSON object {lending, lp, farm}")
    p.add_argument("--last-rebalance", default=None, help="Timestamp of the last rebalance (ISO or epoch)")
    p.add_argument("--now", default=None, help="Evaluation time (default: now, UTC)")
    p.add_argument("--frequency-days", type=float, default=None,
                   help="Scheduled rebalance interval (default: config rebalance.frequency_days)")

    p = sub.add_parser("backtest", help="Seeded simulation of a score's allocation")
    p.add_argument("--amount", type=float, required=True, help="Initial portfolio value")
    p.add_argument("--score", type=int, required=True, help="Risk score 0-100")
    p.add_argument("--start", required=True, help="First simulated day (ISO date)")
    p.add_argument("--end", required=True, help="Last simulated day (ISO date)")
    p.add_argument("--frequency", type=int, default=None,
                   help="Days between rebalances (default: config backtest.rebalance_frequency_days)")
    p.add_argument("--compounding", action="store_true", help="Enable the daily compounding bonus")
    p.add_argument("--seed", type=int, default=None, help="RNG seed")
    p.add_argument("--timeline", action="store_true", help="Include the day-by-day timeline")

    p = sub.add_parser("demo", help="Dashboard for a seeded demo persona")
    p.add_argument("--persona", choices=DEMO_PERSONA_KEYS, default="mike")
    p.add_argument("--days", type=int, default=90, help="Days of synthetic history (default: 90)")
    p.add_argument("--seed", type=int, default=None, help="RNG seed (default: derived from persona)")

    return parser.parse_args(argv)


def _run(args: argparse.Namespace, cfg: Dict[str, Any]) -> Dict[str, Any]:
    analytics_cfg = cfg["analytics"]

    if args.command == "score":
        return assess_risk(_read_json(args.answers), user_id=args.user_id).to_dict()

    if args.command == "allocate":
        apys = _parse_apys(args.apy, args.apys)
        return generate_allocation_strategy(args.score, apys).to_dict()

    if args.command == "metrics":
        history = _read_json(args.history)
        if not isinstance(history, list):
            raise ValidationError("history must be a JSON list", field="history")
        metrics = compute_performance_metrics(
            history,
            args.principal,
            risk_free_rate=analytics_cfg["risk_free_rate"],
            order=args.order,
            sortino_method=args.sortino_method or analytics_cfg["sortino_method"],
            periods_per_year=analytics_cfg["trading_days_per_year"],
            var_z=analytics_cfg["var_z_score"],
        )
        risk = compute_risk_metrics(
            history,
            args.principal,
            risk_free_rate=analytics_cfg["risk_free_rate"],
            order=args.order,
            periods_per_year=analytics_cfg["trading_days_per_year"],
            var_z=analytics_cfg["var_z_score"],
        )
        return {
            "portfolio": portfolio_totals(history, args.principal, order=args.order).to_dict(),
            "performanceMetrics": metrics.to_dict(),
            "riskMetrics": risk.to_dict(),
            "benchmarkComparisons": [b.to_dict() for b in benchmark_comparison(metrics, cfg["benchmarks"])],
        }

    if args.command == "rebalance":
        bps = args.threshold_bps if args.threshold_bps is not None else cfg["rebalance"]["threshold_bps"]
        total_value = args.total_value
        if args.snapshot:
            snapshot = PortfolioSnapshot.from_dict(_read_json(args.snapshot))
            current = current_allocation_from_snapshot(snapshot)
            if total_value is None:
                # deltas move deployed value only; idle funds stay where they are
                total_value = sum(snapshot.protocol_values)
        else:
            current = _parse_triple(args.current, "current")
        rec = recommend_rebalance(current, _parse_triple(args.target, "target"), threshold_from_bps(bps))
        out = rec.to_dict()
        if total_value is not None:
            out["deltas"] = rec.rebalance_deltas(total_value)
        return out

    if args.command == "advise":
        frequency = args.frequency_days
        if frequency is None:
            frequency = cfg["rebalance"]["frequency_days"]
        advice = advise_rebalance(
            _parse_triple(args.current, "current"),
            args.score,
            _parse_apys(args.apy, args.apys),
            last_rebalance=args.last_rebalance,
            now=args.now,
            frequency_days=frequency,
            threshold_pct=threshold_from_bps(cfg["rebalance"]["threshold_bps"]),
        )
        return advice.to_dict()

    if args.command == "backtest":
        backtest_cfg = cfg["backtest"]
        frequency = args.frequency
        if frequency is None:
            frequency = backtest_cfg["rebalance_frequency_days"]
        result = run_backtest(
            args.amount,
            args.score,
            args.start,
            args.end,
            rebalance_frequency=frequency,
            compounding=args.compounding,
            seed=args.seed,
            gas_cost=backtest_cfg["gas_cost_per_rebalance"],
            risk_free_rate=analytics_cfg["risk_free_rate"],
        )
        return result.to_dict(include_timeline=args.timeline)

    if args.command == "demo":
        persona = get_demo_persona(args.persona)
        assessment = assess_risk(demo_answers(args.persona), user_id=args.persona)
        history = generate_demo_history(args.persona, days=args.days, seed=args.seed)
        out = build_dashboard(
            assessment,
            DEMO_APYS,
            history,
            demo_principal(args.persona, days=args.days),
            risk_free_rate=analytics_cfg["risk_free_rate"],
            sortino_method=analytics_cfg["sortino_method"],
            periods_per_year=analytics_cfg["trading_days_per_year"],
            var_z=analytics_cfg["var_z_score"],
            threshold_pct=threshold_from_bps(cfg["rebalance"]["threshold_bps"]),
            benchmarks=cfg["benchmarks"],
        )
        out["persona"] = {k: persona[k] for k in ("name", "age", "occupation")}
        out["surplus"] = calculate_surplus(
            persona["monthly_income"],
            persona["monthly_expenses"],
            current_emergency_fund=persona["current_emergency_fund"],
        ).to_dict()
        return out

    raise ValueError(f"Unknown command {args.command!r}")


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point; returns the process exit status."""
    args = parse_args(argv)
    load_env_once()
    cfg = load_config(args.config)
    try:
        result = _run(args, cfg)
    except ValidationError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    indent = args.indent
    if indent is None:
        indent = None if env_flag("DEFI_CORE_COMPACT") else 2
    print(json.dumps(result, indent=indent, cls=JSONOutEncoder))
    return 0


if __name__ == "__main__":
    sys.exit(main())
