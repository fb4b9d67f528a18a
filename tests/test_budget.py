from datetime import date

from homeledger import budget
from homeledger.budget import (
    DEFAULT_BUDGETS,
    auto_save_monthly_history,
    create_default_budgets_for_user,
    run_history_for_all_users,
    spent_for_limit,
)
from homeledger.dates import month_key
from homeledger.db import query_db


def expense(c, amount, category, day=None):
    day = day or date.today().isoformat()
    resp = c.post(
        "/api/transactions",
        json={"description": "x", "amount": amount, "date": day, "category": category, "type": "DESPESA"},
    )
    assert resp.status_code == 201
    return resp.json()


def test_spent_matches_legacy_display_names():
    row = {"category": "budget.category.food", "translation_key": "budget.category.food"}
    assert spent_for_limit(row, {"Alimentação": 42.0}) == 42.0
    assert spent_for_limit(row, {"budget.category.food": 10.0, "Alimentação": 42.0}) == 10.0
    assert spent_for_limit(row, {}) == 0.0


def test_default_budgets_are_idempotent(manager):
    _, user = manager
    assert create_default_budgets_for_user(user["id"]) == 0
    rows = query_db("SELECT category FROM budget_limits WHERE user_id = $1", (user["id"],))
    assert len(rows) == len(DEFAULT_BUDGETS)


def test_create_defaults_route(manager):
    c, _ = manager
    assert c.post("/api/budget/create-defaults").json()["created"] == 0


def test_custom_limit_create_update_delete(manager):
    c, _ = manager
    resp = c.post("/api/budget/limits", json={"category": "Academia", "limit": 80})
    assert resp.status_code == 200
    c.post("/api/budget/limits", json={"category": "Academia", "limit": 95})

    limits = {l["category"]: l for l in c.get("/api/budget/limits").json()}
    assert limits["Academia"]["limit"] == 95.0
    assert limits["Academia"]["isDefault"] is False

    expense(c, 30, "Academia")
    deleted = c.delete("/api/budget/limits/Academia").json()
    assert deleted["moved"] == 1

    categories = {t["category"] for t in c.get("/api/transactions").json()}
    assert categories == {"budget.category.general"}


def test_default_limit_cannot_be_deleted(manager):
    c, _ = manager
    resp = c.delete("/api/budget/limits/budget.category.food")
    assert resp.status_code == 403


def test_limit_validation(manager):
    c, _ = manager
    assert c.post("/api/budget/limits", json={"category": "X"}).status_code == 400
    assert c.post("/api/budget/limits", json={"category": "X", "limit": "lots"}).status_code == 400


def test_summary_uses_current_month(manager):
    c, _ = manager
    expense(c, 250, "budget.category.food")
    expense(c, 999, "budget.category.food", day="2001-01-01")

    summary = {s["category"]: s for s in c.get("/api/budget/summary").json()}
    food = summary["budget.category.food"]
    assert food["spent"] == 250.0
    assert food["percentage"] == 50


def test_manual_history_save(manager):
    c, _ = manager
    expense(c, 100, "budget.category.transport")
    saved = c.post("/api/budget/history/save").json()
    assert saved["saved"] == len(DEFAULT_BUDGETS)
    assert saved["month"] == month_key(date.today())

    history = c.get("/api/budget/history").json()
    assert list(history) == [saved["month"]]
    assert len(history[saved["month"]]) == 12


def test_auto_save_runs_once_per_month(manager):
    c, user = manager
    expense(c, 700, "budget.category.food", day="2024-04-15")

    assert auto_save_monthly_history(user["id"], today=date(2024, 5, 2)) is True
    assert auto_save_monthly_history(user["id"], today=date(2024, 5, 20)) is False

    rows = query_db(
        "SELECT * FROM budget_history WHERE user_id = $1 AND month = $2 AND category = $3",
        (user["id"], "2024-04", "budget.category.food"),
    )
    assert len(rows) == 1
    assert float(rows[0]["spent_amount"]) == 700.0

    # food went over its 500 limit, so an alert is raised
    notes = c.get("/api/notifications").json()
    assert any(n["title"] == "Orçamento excedido" for n in notes)

    assert auto_save_monthly_history(user["id"], today=date(2024, 6, 1)) is True


def test_concurrent_auto_save_alerts_once(manager, monkeypatch):
    c, user = manager
    expense(c, 700, "budget.category.food", day="2024-04-15")
    assert auto_save_monthly_history(user["id"], today=date(2024, 5, 2)) is True

    # a second caller that read the marker before the first one committed
    monkeypatch.setattr(budget, "query_one", lambda sql, params=(): None)
    assert auto_save_monthly_history(user["id"], today=date(2024, 5, 3)) is False

    alerts = [n for n in c.get("/api/notifications").json() if n["title"] == "Orçamento excedido"]
    assert len(alerts) == 1


def test_run_for_all_users(manager):
    # only users with budget limits are visited; the seeded admin has none
    assert run_history_for_all_users(today=date(2024, 5, 2)) == 1
    assert run_history_for_all_users(today=date(2024, 5, 3)) == 0
    assert run_history_for_all_users(today=date(2024, 6, 1)) == 1
