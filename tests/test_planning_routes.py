from datetime import date, datetime, timedelta, timezone

from fastapi.testclient import TestClient

from conftest import register
from homeledger.db import query_db
from homeledger.planning import analyze_user, recent_contributions


def add_tx(c, amount, type_, category="budget.category.food"):
    day = datetime.now(timezone.utc).date().isoformat()
    c.post(
        "/api/transactions",
        json={"description": "x", "amount": amount, "date": day, "category": category, "type": type_},
    )


class TestAnalysis:
    def test_empty_user_gets_placeholder(self, manager):
        c, _ = manager
        out = c.get("/api/ai-planning/analyze").json()
        assert out["health_grade"] == "N/A"
        assert out["suggestions"][0]["id"] == "add-transactions"

    def test_scores_and_caches(self, manager):
        c, user = manager
        add_tx(c, 4000, "RECEITA", category="Salário")
        add_tx(c, 1000, "DESPESA")

        out = c.get("/api/ai-planning/analyze").json()
        # food 1000 over 500 fails 1 of 16 budgets, savings 75%, no goals
        assert out["components"]["budget_compliance"] == 93.75
        assert out["components"]["savings_rate"] == 75.0
        assert out["health_score"] == 76
        assert out["at_risk_categories"][0]["category"] == "budget.category.food"
        assert out["monthly_comparison"][0]["spent"] == 1000.0
        assert len(query_db("SELECT id FROM ai_analysis_cache WHERE user_id = $1", (user["id"],))) == 1

        # a new expense is not reflected until the cache expires or is refreshed
        add_tx(c, 2000, "DESPESA", category="Carro")
        assert c.get("/api/ai-planning/analyze").json()["health_score"] == 76
        refreshed = c.get("/api/ai-planning/analyze?refresh=true").json()
        assert refreshed["components"]["savings_rate"] == 25.0

    def test_cache_expires_after_thirty_minutes(self, manager):
        c, user = manager
        add_tx(c, 1000, "RECEITA")
        now = datetime.now(timezone.utc)
        first = analyze_user(user["id"], now=now)

        add_tx(c, 500, "DESPESA")
        assert analyze_user(user["id"], now=now + timedelta(minutes=29)) == first
        later = analyze_user(user["id"], now=now + timedelta(minutes=31))
        assert later["components"]["savings_rate"] == 50.0

    def test_recent_contributions_only_for_requested_goals(self, app, manager):
        c, _ = manager
        other = TestClient(app)
        register(other, "pedro", family="Outros")

        mine = c.post("/api/goals", json={"name": "Casa", "targetAmount": 1000}).json()
        theirs = other.post("/api/goals", json={"name": "Carro", "targetAmount": 1000}).json()
        c.post(f"/api/goals/{mine['id']}/contribute", json={"amount": 50})
        c.post(f"/api/goals/{mine['id']}/contribute", json={"amount": 25})
        other.post(f"/api/goals/{theirs['id']}/contribute", json={"amount": 70})

        assert recent_contributions([mine["id"]], date.today()) == {mine["id"]: 75.0}
        assert recent_contributions([], date.today()) == {}


class TestSimulationRoutes:
    def test_calculate(self, manager):
        c, _ = manager
        out = c.post(
            "/api/simulations/calculate",
            json={"loanAmount": 12000, "interestRateAnnual": 12, "termMonths": 12, "amortizationSystem": "sac"},
        ).json()
        assert out["amortizationSystem"] == "SAC"
        assert len(out["schedule"]) == 12
        assert out["summary"]["totalInterest"] == 780.0

    def test_calculate_validation(self, manager):
        c, _ = manager
        base = {"loanAmount": 1000, "interestRateAnnual": 10, "termMonths": 12}
        for bad in ({"termMonths": 12.5}, {"loanAmount": "mil"}, {"termMonths": None}, {"amortizationSystem": "X"}):
            body = dict(base, **bad)
            assert c.post("/api/simulations/calculate", json=body).status_code == 400

    def test_save_list_delete(self, app, manager):
        c, _ = manager
        body = {"name": "Casa", "loanAmount": 50000, "interestRateAnnual": 9.5, "termMonths": 240}
        saved = c.post("/api/simulations", json=body)
        assert saved.status_code == 201
        sim = saved.json()
        assert sim["amortizationSystem"] == "PRICE"
        assert [s["id"] for s in c.get("/api/simulations").json()] == [sim["id"]]

        other = TestClient(app)
        register(other, "pedro", family="Outros")
        assert other.delete(f"/api/simulations/{sim['id']}").status_code == 404

        assert c.delete(f"/api/simulations/{sim['id']}").json() == {"message": "Simulation deleted"}
        assert c.post("/api/simulations", json=dict(body, name="")).status_code == 400
