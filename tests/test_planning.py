from datetime import date

import pytest

from homeledger.budget import EXPENSE, INCOME
from homeledger.planning import (
    NO_BUDGETS_COMPLIANCE,
    NO_GOALS_PROGRESS,
    at_risk_categories,
    budget_compliance,
    calculate_analysis,
    goal_progress,
    goals_progress,
    health_grade,
    health_score,
    savings_rate,
    spending_trend,
    suggestions,
)


def tx(amount, type_=EXPENSE, day="2024-05-10", category="food"):
    return {"amount": amount, "type": type_, "date": day, "category": category}


class TestComponents:
    def test_budget_compliance(self):
        assert budget_compliance([]) == NO_BUDGETS_COMPLIANCE
        budgets = [
            {"category": "a", "limit": 100, "spent": 50},
            {"category": "b", "limit": 100, "spent": 150},
            {"category": "c", "limit": 0, "spent": 10},
            {"category": "d", "limit": 100, "spent": 100},
        ]
        assert budget_compliance(budgets) == 75.0

    def test_savings_rate_is_clamped(self):
        assert savings_rate([]) == 0.0
        assert savings_rate([tx(1000, INCOME), tx(250)]) == 75.0
        assert savings_rate([tx(100, INCOME), tx(300)]) == 0.0

    def test_goal_progress(self):
        assert goal_progress([]) == NO_GOALS_PROGRESS
        goals = [
            {"target_amount": 1000, "current_amount": 250},
            {"target_amount": 100, "current_amount": 500},
        ]
        assert goal_progress(goals) == pytest.approx(62.5)

    def test_weighted_score(self):
        assert health_score(100, 100, 100) == 100
        assert health_score(80, 40, 60) == 61
        assert health_score(50, 40, 80) == 54

    @pytest.mark.parametrize("score,grade", [(95, "A+"), (90, "A+"), (85, "A"), (70, "B"), (65, "C"), (10, "D")])
    def test_grades(self, score, grade):
        assert health_grade(score) == grade


class TestTrends:
    def test_increasing(self):
        rows = [tx(100, day="2024-03-05"), tx(100, day="2024-04-05"), tx(150, day="2024-05-05")]
        trend = spending_trend(rows)
        assert trend["trend"] == "increasing"
        assert trend["change_percent"] == 50

    def test_uses_latest_three_months(self):
        rows = [
            tx(10000, day="2023-01-05"),
            tx(100, day="2024-03-05"),
            tx(100, day="2024-04-05"),
            tx(100, day="2024-05-05"),
        ]
        trend = spending_trend(rows)
        assert trend["month_avg"] == 100
        assert trend["trend"] == "stable"

    def test_income_ignored(self):
        trend = spending_trend([tx(5000, INCOME)])
        assert trend == {"month_avg": 0, "trend": "stable", "change_percent": 0}

    def test_at_risk_sorted(self):
        budgets = [
            {"category": "a", "limit": 100, "spent": 95},
            {"category": "b", "limit": 100, "spent": 130},
            {"category": "c", "limit": 100, "spent": 50},
        ]
        risky = at_risk_categories(budgets)
        assert [r["category"] for r in risky] == ["b", "a"]
        assert risky[0]["percentage"] == 130


class TestSuggestions:
    def test_capped_at_three_with_overspend_first(self):
        budgets = [{"category": "food", "limit": 100, "spent": 200}]
        out = suggestions([tx(200)], budgets, score=40)
        assert len(out) == 3
        assert out[0]["id"] == "s1-food"
        assert out[0]["potential_savings"] == 100
        assert out[1]["id"] == "s2-reduce-spending"

    def test_emergency_fund_when_healthy(self):
        out = suggestions([], [], score=95)
        assert [s["id"] for s in out] == ["s4-emergency"]


class TestAnalysis:
    def test_goal_on_track(self):
        goals = [{"id": "g1", "name": "Carro", "target_amount": 1200, "current_amount": 0, "deadline": "2025-01-01"}]
        out = goals_progress(goals, {"g1": 200.0}, date(2024, 1, 1))
        assert out[0]["months_to_target"] == 12
        assert out[0]["on_track"] is True
        assert goals_progress(goals, {}, date(2024, 1, 1))[0]["on_track"] is False

    def test_calculate_analysis(self):
        transactions = [tx(2000, INCOME), tx(500)]
        budgets = [{"category": "food", "limit": 1000, "spent": 500}]
        result = calculate_analysis(transactions, budgets, [], {}, date(2024, 5, 20))
        # 100 * 0.40 + 75 * 0.35 + 50 * 0.25
        assert result["health_score"] == 79
        assert result["health_grade"] == "B"
        assert result["savings_potential"] == 1500
        assert result["components"]["savings_rate"] == 75.0
