"""Risk budget: how much of a position the user's finances can carry.

    disposableIncome = monthlyIncome − monthlyExpenses
    safeAllocation   = min(savings × riskFactor, disposableIncome × horizonFactor), ≥ 0
    maxQuantity      = floor(safeAllocation / latestPrice), ≥ 0

The financial-health score comes from an upstream assessment when one exists,
otherwise from a 100-point heuristic over the profile.
"""

import math
from typing import Dict, List, Optional

from stock_advisor.core.logger import logger
from stock_advisor.models.datatypes import (
    FinancialHealthPrior, RiskBudget, RiskTolerance, TimeHorizon, UserProfile,
)

RISK_FACTOR: Dict[RiskTolerance, float] = {
    RiskTolerance.LOW: 0.05,
    RiskTolerance.MEDIUM: 0.10,
    RiskTolerance.HIGH: 0.20,
}
HORIZON_FACTOR: Dict[TimeHorizon, float] = {
    TimeHorizon.WEEKS: 0.5,
    TimeHorizon.MONTHS: 1.0,
    TimeHorizon.YEARS: 3.0,
}

LOW_SCORE_THRESHOLD = 50.0
IMPROVE_SCORE_THRESHOLD = 75.0
CONSERVATIVE_FRACTION = 0.05

CATEGORY_RISK_MESSAGES = {
    "incomeExpenseRatio": "Income-expense ratio needs improvement",
    "savingsRate": "Savings rate below recommended levels",
    "emergencyFundAdequacy": "Insufficient emergency fund",
    "debtToIncomeRatio": "Debt-to-income ratio needs attention",
    "spendingEfficiency": "Spending efficiency below recommended levels",
}
DEFAULT_PRIORITY_ACTIONS = ("Consider building emergency fund", "Maintain current savings rate")


# ── heuristic scoring ─────────────────────────────────────────────────────────

def basic_health_score(profile: UserProfile) -> float:
    """100-point heuristic: income-expense 30, savings 25, risk 20, horizon 15, capacity 10."""
    income = profile.monthly_income
    disposable = income - profile.monthly_expenses
    score = 0.0

    if disposable > 0:
        score += 30
    elif disposable > -income * 0.1:
        score += 15

    months_of_income = profile.savings / income if income > 0 else 0.0
    if months_of_income >= 6:
        score += 25
    elif months_of_income >= 3:
        score += 20
    elif months_of_income >= 1:
        score += 10

    score += {RiskTolerance.LOW: 20, RiskTolerance.MEDIUM: 15, RiskTolerance.HIGH: 10}[profile.risk_tolerance]
    score += {TimeHorizon.WEEKS: 5, TimeHorizon.MONTHS: 10, TimeHorizon.YEARS: 15}[profile.time_horizon]

    if income > 0 and disposable >= income * 0.1:
        score += 10
    elif income > 0 and disposable >= income * 0.05:
        score += 5

    return float(min(100.0, max(0.0, score)))


def category_scores(profile: UserProfile) -> Dict[str, float]:
    """Per-category 0–100 scores used to flag specific weaknesses."""
    income, expenses, savings = profile.monthly_income, profile.monthly_expenses, profile.savings

    if expenses > 0:
        ratio = income / expenses
    else:
        ratio = math.inf if income > 0 else 0.0
    if ratio >= 2:
        income_expense = 100.0
    elif ratio >= 1.5:
        income_expense = 80.0
    elif ratio >= 1.2:
        income_expense = 60.0
    elif ratio >= 1:
        income_expense = 40.0
    else:
        income_expense = 20.0

    annual_rate = (savings / income) * 12 if income > 0 else 0.0
    if annual_rate >= 0.2:
        savings_rate = 100.0
    elif annual_rate >= 0.15:
        savings_rate = 80.0
    elif annual_rate >= 0.10:
        savings_rate = 60.0
    elif annual_rate >= 0.05:
        savings_rate = 40.0
    else:
        savings_rate = 20.0

    if expenses > 0:
        months_covered = savings / expenses
    else:
        months_covered = math.inf if savings > 0 else 0.0
    if months_covered >= 6:
        emergency = 100.0
    elif months_covered >= 3:
        emergency = 75.0
    elif months_covered >= 1:
        emergency = 50.0
    else:
        emergency = 25.0

    return {
        "incomeExpenseRatio": income_expense,
        "savingsRate": savings_rate,
        "emergencyFundAdequacy": emergency,
        "spendingEfficiency": 75.0,
    }


def heuristic_prior(profile: UserProfile) -> FinancialHealthPrior:
    return FinancialHealthPrior(
        overall_score=basic_health_score(profile),
        category_scores=tuple(category_scores(profile).items()),
        priority_actions=DEFAULT_PRIORITY_ACTIONS,
    )


def risk_factors(prior: FinancialHealthPrior) -> List[str]:
    """Overall score < 50 and each known category < 50 are flagged, in category order."""
    factors: List[str] = []
    if prior.overall_score < LOW_SCORE_THRESHOLD:
        factors.append("Low overall financial health score")
    for name, message in CATEGORY_RISK_MESSAGES.items():
        value = prior.category(name)
        if value is not None and value < LOW_SCORE_THRESHOLD:
            factors.append(message)
    return factors


def recommendations(prior: FinancialHealthPrior) -> List[str]:
    items = list(prior.priority_actions)
    if prior.overall_score < IMPROVE_SCORE_THRESHOLD:
        items.append("Consider improving financial health before investing")
    return items


def max_quantity_for(safe_allocation: float, latest_price: float) -> int:
    """Whole shares affordable within ``safe_allocation``; 0 for a non-positive price."""
    if not math.isfinite(latest_price) or latest_price <= 0 or safe_allocation <= 0:
        return 0
    return max(0, math.floor(safe_allocation / latest_price))


# ── calculator ────────────────────────────────────────────────────────────────

class RiskBudgetCalculator:
    """Bounds the position size by the user's savings, income and preferences."""

    def calculate(
        self,
        profile: UserProfile,
        latest_price: float,
        prior: Optional[FinancialHealthPrior] = None,
    ) -> RiskBudget:
        source = "prior" if prior is not None else "heuristic"
        if prior is None:
            prior = heuristic_prior(profile)

        disposable = profile.monthly_income - profile.monthly_expenses
        safe = min(
            profile.savings * RISK_FACTOR[profile.risk_tolerance],
            disposable * HORIZON_FACTOR[profile.time_horizon],
        )
        safe = round(max(0.0, safe), 2)

        budget = RiskBudget(
            disposable_income=round(disposable, 2),
            safe_allocation=safe,
            max_quantity=max_quantity_for(safe, latest_price),
            financial_health_score=round(prior.overall_score, 2),
            risk_factors=tuple(risk_factors(prior)),
            recommendations=tuple(recommendations(prior)),
            source=source,
        )
        logger.info(
            f"RISK source={source} | score={budget.financial_health_score:.0f} "
            f"safe={budget.safe_allocation:.2f} maxQty={budget.max_quantity}"
        )
        return budget

    def conservative(self, profile: UserProfile, latest_price: float) -> RiskBudget:
        """Fallback budget used when the calculation itself cannot complete."""
        safe = round(max(0.0, profile.savings * CONSERVATIVE_FRACTION), 2)
        return RiskBudget(
            disposable_income=round(max(0.0, profile.monthly_income - profile.monthly_expenses), 2),
            safe_allocation=safe,
            max_quantity=max_quantity_for(safe, latest_price),
            financial_health_score=50.0,
            risk_factors=("Financial analysis unavailable - using conservative estimates",),
            recommendations=("Consult with financial advisor", "Use conservative allocation"),
            source="conservative",
        )
