from dataclasses import dataclass
from typing import Any, Dict

from defi_core.utils import get_logger
from defi_core.validation import require_finite, require_non_negative

log = get_logger(__name__)

# Share of the monthly surplus routed to the emergency fund while it is below target
EMERGENCY_FUND_SHARE = 0.5
MIN_INVESTMENT_PCT = 20.0
MAX_INVESTMENT_PCT = 80.0


@dataclass(frozen=True)
class SurplusCalculation:
    monthly_surplus: float
    emergency_fund_needed: float
    investable_amount: float
    recommended_investment_pct: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "monthlySurplus": self.monthly_surplus,
            "emergencyFundNeeded": self.emergency_fund_needed,
            "investableAmount": self.investable_amount,
            "recommendedInvestmentPercentage": self.recommended_investment_pct,
        }


def calculate_surplus(
    monthly_income: float,
    monthly_expenses: float,
    emergency_fund_target_months: float = 6,
    current_emergency_fund: float = 0,
) -> SurplusCalculation:
    """
    How much of the monthly surplus can go into the vault.

    Half of the surplus goes to the emergency fund until it covers
    ``emergency_fund_target_months`` of expenses; the rest is investable.
    The recommended investment share is clamped to [20, 80] percent.
    Surplus and investable amount are reported floored at 0.
    """
    income = require_non_negative(monthly_income, "monthly_income")
    expenses = require_non_negative(monthly_expenses, "monthly_expenses")
    months = require_non_negative(emergency_fund_target_months, "emergency_fund_target_months")
    fund = require_finite(current_emergency_fund, "current_emergency_fund")

    surplus = income - expenses
    needed = max(0.0, expenses * months - fund)

    investable = surplus
    if needed > 0:
        investable = surplus - min(surplus * EMERGENCY_FUND_SHARE, needed)

    raw_pct = investable / surplus * 100.0 if surplus > 0 else 0.0
    pct = min(MAX_INVESTMENT_PCT, max(MIN_INVESTMENT_PCT, raw_pct))

    result = SurplusCalculation(
        monthly_surplus=max(0.0, surplus),
        emergency_fund_needed=needed,
        investable_amount=max(0.0, investable),
        recommended_investment_pct=pct,
    )
    log.debug("Surplus income=%.2f expenses=%.2f -> investable=%.2f (%.1f%%)",
              income, expenses, result.investable_amount, pct)
    return result


__all__ = [
    "SurplusCalculation",
    "calculate_surplus",
]
