from __future__ import annotations
import json

import pytest

from defi_core.cli import main


@pytest.fixture
def run(tmp_path, capsys):
    """Invoke the CLI with pure default config; return (exit code, parsed stdout, stderr)."""
    def _run(*argv):
        code = main(["--config", str(tmp_path / "missing.yaml"), *argv])
        out, err = capsys.readouterr()
        return code, (json.loads(out) if out.strip() else None), err
    return _run


def test_score_inline_json(run):
    answers = {
        "age": "26-35",
        "income": "80k-150k",
        "expenses": "20-40pct",
        "goal": "medium_term",
        "risk_tolerance": "medium",
        "experience": "intermediate",
    }
    code, out, _ = run("score", "--answers", json.dumps(answers), "--user-id", "0xabc")
    assert code == 0
    assert out["riskScore"] == 54
    assert out["riskProfile"] == "Balanced"
    assert out["userId"] == "0xabc"


def test_score_invalid_answers_exit_2(run):
    code, out, err = run("score", "--answers", json.dumps({"age": "18-25"}))
    assert code == 2
    assert out is None
    assert "Unanswered" in err


def test_allocate_with_apy_pairs(run):
    code, out, _ = run("allocate", "--score", "80", "--apy", "lending=5", "--apy", "lp=10", "--apy", "farm=20")
    assert code == 0
    assert (out["lendingPct"], out["lpPct"], out["farmPct"]) == (20, 30, 50)
    assert out["expectedAPY"] == pytest.approx(14.0)


def test_allocate_missing_apy_exit_2(run):
    code, _, err = run("allocate", "--score", "80", "--apy", "lending=5")
    assert code == 2
    assert "Missing APY" in err


def test_metrics_from_file(run, tmp_path):
    history = [
        {"timestamp": "2024-03-01", "totalValue": 100},
        {"timestamp": "2024-03-02", "totalValue": 80},
        {"timestamp": "2024-03-03", "totalValue": 120},
    ]
    path = tmp_path / "history.json"
    path.write_text(json.dumps(history))
    code, out, _ = run("metrics", "--history", str(path), "--principal", "100", "--order", "oldest_first")
    assert code == 0
    assert out["performanceMetrics"]["maxDrawdown"] == pytest.approx(-20.0)
    assert out["portfolio"]["totalValue"] == 120.0
    assert out["benchmarkComparisons"][1]["strategy"] == "USDC Lending"


def test_rebalance_at_threshold(run):
    code, out, _ = run("rebalance", "--current", "75,25,0", "--target", "70,30,0", "--total-value", "1000")
    assert code == 0
    assert out["shouldRebalance"] is True
    assert out["deltas"]["lending"] == pytest.approx(-50.0)


def test_rebalance_from_snapshot_with_bps_override(run):
    snapshot = {"timestamp": "2024-03-01", "totalValue": 1000, "perProtocolValue": [420, 380, 200]}
    code, out, _ = run("rebalance", "--snapshot", json.dumps(snapshot), "--target", "40,40,20",
                       "--threshold-bps", "200")
    assert code == 0
    assert out["shouldRebalance"] is True
    assert out["thresholdPct"] == pytest.approx(2.0)
    assert out["deltas"]["lp"] == pytest.approx(20.0)


def test_rebalance_bad_target_exit_2(run):
    code, _, err = run("rebalance", "--current", "75,25,0", "--target", "70,30")
    assert code == 2
    assert "target" in err


def test_demo_dashboard(run):
    code, out, _ = run("demo", "--persona", "jennifer", "--days", "30", "--seed", "3")
    assert code == 0
    assert out["persona"]["name"] == "Jennifer Rodriguez"
    assert out["allocation"]["riskLevel"] == "high"
    assert out["performanceMetrics"]["observations"] == 31
    assert "recommendedInvestmentPercentage" in out["surplus"]


def test_rebalance_snapshot_deltas_ignore_idle_funds(run):
    # 100 of the 1000 total is undeployed; deltas redistribute the 900 in protocols
    snapshot = {"timestamp": "2024-03-01", "totalValue": 1000, "perProtocolValue": [900, 0, 0]}
    code, out, _ = run("rebalance", "--snapshot", json.dumps(snapshot), "--target", "40,40,20")
    assert code == 0
    assert out["deltas"]["lending"] == pytest.approx(-540.0)
    assert out["deltas"]["lp"] == pytest.approx(360.0)
    assert out["deltas"]["farm"] == pytest.approx(180.0)
    applied = [900 + out["deltas"]["lending"], out["deltas"]["lp"], out["deltas"]["farm"]]
    assert applied == pytest.approx([360.0, 360.0, 180.0])


def test_metrics_include_risk_metrics(run, tmp_path):
    history = [
        {"timestamp": "2024-03-04", "totalValue": 90},
        {"timestamp": "2024-03-03", "totalValue": 72},
        {"timestamp": "2024-03-02", "totalValue": 90},
        {"timestamp": "2024-03-01", "totalValue": 100},
    ]
    code, out, _ = run("metrics", "--history", json.dumps(history), "--principal", "100")
    assert code == 0
    assert out["riskMetrics"]["historicalVaR95"] == pytest.approx(-20.0)
    assert out["riskMetrics"]["downsideDeviation"] > 0


def test_advise_overdue_schedule(run):
    code, out, _ = run("advise", "--current", "42,39,19", "--score", "50",
                       "--apys", json.dumps({"lending": 5, "lp": 10, "farm": 20}),
                       "--last-rebalance", "2024-01-01", "--now", "2024-04-01")
    assert code == 0
    assert out["rule"] == "schedule"
    assert out["urgency"] == "high"
    assert out["reason"] == "It has been 91 days since last rebalance"
    assert [s["rule"] for s in out["signals"]] == ["schedule", "drift", "market", "profile"]


def test_advise_bad_timestamp_exit_2(run):
    code, _, err = run("advise", "--current", "40,40,20", "--score", "50",
                       "--apy", "lending=5", "--apy", "lp=10", "--apy", "farm=20",
                       "--last-rebalance", "last tuesday", "--now", "2024-04-01")
    assert code == 2
    assert "timestamp" in err


def test_backtest_is_seeded(run):
    argv = ("backtest", "--amount", "10000", "--score", "54", "--start", "2024-01-01",
            "--end", "2024-03-31", "--seed", "42")
    code, first, _ = run(*argv)
    _, second, _ = run(*argv)
    assert code == 0
    assert first == second
    assert first["rebalanceCount"] == 3
    assert "timeline" not in first

    _, with_timeline, _ = run(*argv, "--timeline")
    assert len(with_timeline["timeline"]) == 91


def test_backtest_bad_window_exit_2(run):
    code, _, err = run("backtest", "--amount", "10000", "--score", "54",
                       "--start", "2024-03-31", "--end", "2024-01-01")
    assert code == 2
    assert "end" in err


def test_compact_output_flag(tmp_path, capsys, monkeypatch):
    argv = ["--config", str(tmp_path / "missing.yaml"), "rebalance", "--current", "40,40,20", "--target", "40,40,20"]
    monkeypatch.setenv("DEFI_CORE_COMPACT", "1")
    assert main(argv) == 0
    out = capsys.readouterr().out
    assert out.count("\n") == 1
    assert json.loads(out)["shouldRebalance"] is False

    # an explicit indent wins over the flag
    assert main(["--indent", "4", *argv]) == 0
    assert "\n    " in capsys.readouterr().out

    monkeypatch.setenv("DEFI_CORE_COMPACT", "0")
    assert main(argv) == 0
    assert "\n  " in capsys.readouterr().out
