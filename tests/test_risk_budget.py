"""Tests for the risk budget arithmetic and financial-health heuristics."""

import itertools

import pytest

from stock_advisor.models.datatypes import FinancialHealthPrior, RiskTolerance, TimeHorizon, UserProfile
from stock_advisor.pipeline.risk_budget import (
    RISK_FACTOR, RiskBudgetCalculator, basic_health_score, category_scores, max_quantity_for,
)


def _profile(income=8000.0, expenses=5000.0, savings=40000.0,
             risk=RiskTolerance.MEDIUM, horizon=TimeHorizon.YEARS) -> UserProfile:
    return UserProfile(
        monthly_income=income, monthly_expenses=expenses, savings=savings,
        risk_tolerance=risk, time_horizon=horizon,
    )


class TestCalculate:
    def test_savings_cap_binds(self, profile):
        budget = RiskBudgetCalculator().calculate(profile, 115.0)
        assert budget.disposable_income == 3000.0
        assert budget.safe_allocation == 4000.0
        assert budget.max_quantity == 34
        assert budget.source == "heuristic"

    def test_income_cap_binds(self):
        budget = RiskBudgetCalculator().calculate(
            _profile(risk=RiskTolerance.HIGH, horizon=TimeHorizon.WEEKS), 100.0,
        )
        # min(40000 × 0.20, 3000 × 0.5)
        assert budget.safe_allocation == 1500.0
        assert budget.max_quantity == 15

    def test_negative_disposable_income_clamps_to_zero(self):
        budget = RiskBudgetCalculator().calculate(_profile(income=3000, expenses=4000), 50.0)
        assert budget.disposable_income == -1000.0
        assert budget.safe_allocation == 0.0
        assert budget.max_quantity == 0

    @pytest.mark.parametrize("price", [0.0, -5.0, float("nan")])
    def test_unusable_price_yields_zero_quantity(self, profile, price):
        assert RiskBudgetCalculator().calculate(profile, price).max_quantity == 0

    def test_bounds_hold_across_profiles(self):
        calculator = RiskBudgetCalculator()
        grid = itertools.product(
            [0.0, 2500.0, 9000.0], [0.0, 3000.0, 12000.0], [0.0, 1000.0, 75000.0],
            list(RiskTolerance), list(TimeHorizon), [0.5, 37.2, 4100.0],
        )
        for income, expenses, savings, risk, horizon, price in grid:
            budget = calculator.calculate(_profile(income, expenses, savings, risk, horizon), price)
            assert budget.max_quantity >= 0
            assert 0.0 <= budget.safe_allocation <= savings * max(RISK_FACTOR.values()) + 1e-9
            assert budget.max_quantity * price <= budget.safe_allocation + 1e-9
            assert 0.0 <= budget.financial_health_score <= 100.0

    def test_prior_seeds_score_and_flags(self, profile):
        prior = FinancialHealthPrior(
            overall_score=62.0,
            category_scores=(("savingsRate", 40.0), ("incomeExpenseRatio", 80.0)),
            priority_actions=("Pay down card debt",),
        )
        budget = RiskBudgetCalculator().calculate(profile, 115.0, prior)
        assert budget.source == "prior"
        assert budget.financial_health_score == 62.0
        assert budget.risk_factors == ("Savings rate below recommended levels",)
        assert budget.recommendations == (
            "Pay down card debt", "Consider improving financial health before investing",
        )


    def test_prior_categories_flagged_in_fixed_order(self, profile):
        prior = FinancialHealthPrior(
            overall_score=58.0,
            category_scores=(
                ("emergencyFundAdequacy", 30.0),
                ("creditUtilization", 10.0),
                ("debtToIncomeRatio", 20.0),
                ("incomeExpenseRatio", 45.0),
            ),
        )
        budget = RiskBudgetCalculator().calculate(profile, 115.0, prior)
        assert budget.risk_factors == (
            "Income-expense ratio needs improvement",
            "Insufficient emergency fund",
            "Debt-to-income ratio needs attention",
        )


class TestHeuristic:
    def test_healthy_profile(self, profile):
        assert basic_health_score(profile) == 90.0
        budget = RiskBudgetCalculator().calculate(profile, 115.0)
        assert budget.risk_factors == ()
        assert budget.recommendations == ("Consider building emergency fund", "Maintain current savings rate")

    def test_struggling_profile(self):
        struggling = _profile(1000, 1200, 500, RiskTolerance.HIGH, TimeHorizon.WEEKS)
        assert basic_health_score(struggling) == 15.0

        budget = RiskBudgetCalculator().calculate(struggling, 20.0)
        assert budget.risk_factors == (
            "Low overall financial health score",
            "Income-expense ratio needs improvement",
            "Insufficient emergency fund",
        )
        assert "Consider improving financial health before investing" in budget.recommendations

    def test_category_scores_without_expenses(self):
        scores = category_scores(_profile(income=5000, expenses=0, savings=1000))
        assert scores["incomeExpenseRatio"] == 100.0
        assert scores["emergencyFundAdequacy"] == 100.0
        assert "debtToIncomeRatio" not in scores


class TestConservative:
    def test_conservative_budget(self, profile):
        budget = RiskBudgetCalculator().conservative(profile, 115.0)
        assert budget.safe_allocation == 2000.0
        assert budget.max_quantity == 17
        assert budget.financial_health_score == 50.0
        assert budget.source == "conservative"
        assert budget.risk_factors == ("Financial analysis unavailable - using conservative estimates",)


def test_max_quantity_for():
    assert max_quantity_for(1000.0, 333.0) == 3
    assert max_quantity_for(0.0, 10.0) == 0
    assert max_quantity_for(1000.0, 0.0) == 0
