"""Risk score -> target protocol allocation.

The mapping is a deliberate step function over the three profile bands
rather than a smooth ramp: every score inside a band gets the same template.
Across band transitions the farm share only goes up and the lending share
only goes down as the score rises.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Tuple

from defi_core.portfolio import PROTOCOLS, PROTOCOL_LABELS
from defi_core.portfolio.constraints import normalize_percentages
from defi_core.risk_profile import RiskProfile, risk_profile_for_score
from defi_core.utils import get_logger
from defi_core.validation import ValidationError, require_non_negative, require_score

log = get_logger(__name__)

# (lending, lp, farm) percentages; mirrors the vault contract's ALLOCATIONS
ALLOCATION_TEMPLATES: Dict[RiskProfile, Tuple[int, int, int]] = {
    RiskProfile.CONSERVATIVE: (70, 30, 0),
    RiskProfile.BALANCED: (40, 40, 20),
    RiskProfile.AGGRESSIVE: (20, 30, 50),
}

RISK_LEVELS: Dict[RiskProfile, str] = {
    RiskProfile.CONSERVATIVE: "low",
    RiskProfile.BALANCED: "medium",
    RiskProfile.AGGRESSIVE: "high",
}


@dataclass(frozen=True)
class ProtocolAPYs:
    """Current APY per protocol, in percent (5.2 == 5.2%)."""
    lending: float
    lp: float
    farm: float

    def __post_init__(self):
        for name in PROTOCOLS:
            object.__setattr__(self, name, require_non_negative(getattr(self, name), f"apy.{name}"))

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ProtocolAPYs":
        if not isinstance(payload, Mapping):
            raise ValidationError("APYs must be an object keyed by protocol", field="apy")
        missing = [name for name in PROTOCOLS if payload.get(name) is None]
        if missing:
            raise ValidationError(f"Missing APY for: {', '.join(missing)}", field="apy")
        return cls(**{name: payload[name] for name in PROTOCOLS})

    def as_tuple(self) -> Tuple[float, float, float]:
        return self.lending, self.lp, self.farm


@dataclass(frozen=True)
class AllocationStrategy:
    lending_pct: int
    lp_pct: int
    farm_pct: int
    expected_apy: float
    risk_level: str
    risk_profile: RiskProfile
    rationale: str = ""

    def as_tuple(self) -> Tuple[int, int, int]:
        return self.lending_pct, self.lp_pct, self.farm_pct

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lendingPct": self.lending_pct,
            "lpPct": self.lp_pct,
            "farmPct": self.farm_pct,
            "expectedAPY": self.expected_apy,
            "riskLevel": self.risk_level,
            "riskProfile": self.risk_profile.value,
            "rationale": self.rationale,
        }


def allocation_template(profile: RiskProfile) -> Tuple[int, int, int]:
    return normalize_percentages(ALLOCATION_TEMPLATES[RiskProfile(profile)])


def expected_apy(percentages: Tuple[float, float, float], apys: ProtocolAPYs) -> float:
    """Allocation-weighted APY: sum(pct_i / 100 * apy_i)."""
    return sum(pct / 100.0 * apy for pct, apy in zip(percentages, apys.as_tuple()))


def _rationale(profile: RiskProfile, pcts: Tuple[int, int, int], apys: ProtocolAPYs) -> str:
    lending, lp, farm = pcts
    parts = [f"This {profile.value} allocation"]
    if lending >= 50:
        parts.append(f"prioritizes stability with {lending}% in {PROTOCOL_LABELS['lending']} ({apys.lending:.1f}% APY),")
    else:
        parts.append(f"keeps {lending}% in {PROTOCOL_LABELS['lending']} ({apys.lending:.1f}% APY),")
    if lp > 0:
        parts.append(f"holds {lp}% in the {PROTOCOL_LABELS['lp']} ({apys.lp:.1f}% APY)")
    if farm > 0:
        parts.append(f"and puts {farm}% into the {PROTOCOL_LABELS['farm']} for higher yield ({apys.farm:.1f}% APY).")
    else:
        parts.append("and avoids higher-risk farming.")
    return " ".join(parts)


def generate_allocation_strategy(risk_score: int, apys: Any) -> AllocationStrategy:
    """
    Build the target allocation for a risk score.

    Args:
        risk_score: Integer score in [0, 100]
        apys: ProtocolAPYs or a mapping with ``lending``/``lp``/``farm`` keys,
            supplied fresh by the market-data collaborator

    Returns:
        AllocationStrategy whose three integer percentages sum to exactly 100

    Raises:
        ValidationError: score outside [0, 100] or missing/invalid APYs.
    """
    try:
        score = require_score(risk_score)
        rates = apys if isinstance(apys, ProtocolAPYs) else ProtocolAPYs.from_mapping(apys)
    except ValidationError as e:
        log.warning("Rejected allocation request: %s", e)
        raise

    profile = risk_profile_for_score(score)
    pcts = allocation_template(profile)
    strategy = AllocationStrategy(
        lending_pct=pcts[0],
        lp_pct=pcts[1],
        farm_pct=pcts[2],
        expected_apy=expected_apy(pcts, rates),
        risk_level=RISK_LEVELS[profile],
        risk_profile=profile,
        rationale=_rationale(profile, pcts, rates),
    )
    log.debug("Allocation score=%d profile=%s pcts=%s apy=%.4f",
              score, profile.value, pcts, strategy.expected_apy)
    return strategy


__all__ = [
    "ALLOCATION_TEMPLATES",
    "RISK_LEVELS",
    "ProtocolAPYs",
    "AllocationStrategy",
    "allocation_template",
    "expected_apy",
    "generate_allocation_strategy",
]
