"""Deterministic demo personas and synthetic portfolio histories.

Demo mode never touches a chain or a price feed. Histories come from a seeded
numpy generator, so the same persona and seed always give the same snapshots.
"""

from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import numpy as np

from defi_core.allocation import allocation_template
from defi_core.portfolio.snapshots import PortfolioSnapshot
from defi_core.risk_profile import QuestionnaireAnswer, RiskProfile

_DEMO_END = datetime(2024, 6, 30, tzinfo=timezone.utc)

# Daily drift by profile; daily noise is uniform in +/- _DEMO_NOISE
_DAILY_GROWTH: Dict[RiskProfile, float] = {
    RiskProfile.CONSERVATIVE: 0.0002,
    RiskProfile.BALANCED: 0.0003,
    RiskProfile.AGGRESSIVE: 0.0004,
}
_DEMO_NOISE = 0.001
_CONTRIBUTION_EVERY_DAYS = 30

DEMO_APYS: Dict[str, float] = {"lending": 5.2, "lp": 12.8, "farm": 18.5}

_DEMO_PERSONAS: Dict[str, Dict[str, Any]] = {
    "sarah": {
        "name": "Sarah Thompson",
        "age": 38,
        "occupation": "Marketing Manager",
        "monthly_income": 7083.33,
        "monthly_expenses": 5000.0,
        "initial_deposit": 10000.0,
        "monthly_contribution": 1500.0,
        "current_emergency_fund": 12000.0,
        "expected_profile": RiskProfile.CONSERVATIVE,
        "answers": {
            "age": "36-50",
            "income": "80k-150k",
            "expenses": "60-80pct",
            "goal": "short_term",
            "risk_tolerance": "low",
            "experience": "beginner",
        },
    },
    "mike": {
        "name": "Mike Chen",
        "age": 30,
        "occupation": "Software Engineer",
        "monthly_income": 10000.0,
        "monthly_expenses": 3500.0,
        "initial_deposit": 25000.0,
        "monthly_contribution": 3000.0,
        "current_emergency_fund": 21000.0,
        "expected_profile": RiskProfile.BALANCED,
        "answers": {
            "age": "26-35",
            "income": "80k-150k",
            "expenses": "20-40pct",
            "goal": "medium_term",
            "risk_tolerance": "medium",
            "experience": "intermediate",
        },
    },
    "jennifer": {
        "name": "Jennifer Rodriguez",
        "age": 25,
        "occupation": "Tech Entrepreneur",
        "monthly_income": 12500.0,
        "monthly_expenses": 2500.0,
        "initial_deposit": 50000.0,
        "monthly_contribution": 5000.0,
        "current_emergency_fund": 15000.0,
        "expected_profile": RiskProfile.AGGRESSIVE,
        "answers": {
            "age": "18-25",
            "income": "150k-300k",
            "expenses": "20-40pct",
            "goal": "long_term",
            "risk_tolerance": "high",
            "experience": "advanced",
        },
    },
}

DEMO_PERSONA_KEYS: List[str] = list(_DEMO_PERSONAS)


def _persona(key: str) -> Dict[str, Any]:
    try:
        return _DEMO_PERSONAS[key.lower()]
    except KeyError:
        raise KeyError(f"Unknown demo persona '{key}' (choose from {', '.join(DEMO_PERSONA_KEYS)})") from None


def get_demo_persona(key: str) -> Dict[str, Any]:
    """Return a copy of the persona record (answers as a question_id -> value map)."""
    return copy.deepcopy(_persona(key))


def demo_answers(key: str) -> List[QuestionnaireAnswer]:
    return [QuestionnaireAnswer(qid, val) for qid, val in _persona(key)["answers"].items()]


def generate_demo_history(
    key: str,
    days: int = 90,
    seed: Optional[int] = None,
    end: Optional[datetime] = None,
) -> List[PortfolioSnapshot]:
    """
    Synthetic daily snapshots for a persona, NEWEST-FIRST.

    Starts from the persona's initial deposit, adds the monthly contribution
    every 30 days and applies profile drift plus seeded uniform noise. The
    protocol split follows the persona's allocation template. ``seed``
    defaults to a value derived from the persona key.
    """
    persona = _persona(key)
    if days < 1:
        raise ValueError("days must be >= 1")
    if seed is None:
        seed = sum(ord(ch) for ch in key.lower())
    rng = np.random.default_rng(seed)
    end = end or _DEMO_END

    profile = persona["expected_profile"]
    growth = _DAILY_GROWTH[profile]
    split = np.asarray(allocation_template(profile), dtype=float) / 100.0
    noise = rng.uniform(-_DEMO_NOISE, _DEMO_NOISE, size=days + 1)

    total = persona["initial_deposit"]
    snaps = []
    for i, days_ago in enumerate(range(days, -1, -1)):
        if days_ago % _CONTRIBUTION_EVERY_DAYS == 0 and days_ago != days:
            total += persona["monthly_contribution"]
        total *= 1.0 + growth + noise[i]
        values = tuple(float(v) for v in np.round(total * split, 2))
        snaps.append(PortfolioSnapshot(
            timestamp=end - timedelta(days=days_ago),
            total_value=round(float(sum(values)), 2),
            protocol_values=values,
        ))
    snaps.reverse()
    return snaps


def demo_principal(key: str, days: int = 90) -> float:
    """Initial deposit plus the contributions made inside a ``days`` window."""
    persona = _persona(key)
    contributions = sum(1 for d in range(days) if d % _CONTRIBUTION_EVERY_DAYS == 0)
    return persona["initial_deposit"] + contributions * persona["monthly_contribution"]


__all__ = [
    "DEMO_APYS",
    "DEMO_PERSONA_KEYS",
    "get_demo_persona",
    "demo_answers",
    "generate_demo_history",
    "demo_principal",
]
