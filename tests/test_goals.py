from fastapi.testclient import TestClient

from conftest import member_of, register
from homeledger.db import query_db
from homeledger.routes import goals as goal_routes


def make_goal(c, **overrides):
    body = {"name": "Viagem", "targetAmount": 1000, "deadline": "2030-12-31"}
    body.update(overrides)
    resp = c.post("/api/goals", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_create_and_list(manager):
    c, user = manager
    goal = make_goal(c)
    assert goal["currentAmount"] == 0
    assert goal["color"] == "#10B981"
    assert goal["userId"] == user["id"]
    assert [g["id"] for g in c.get("/api/goals").json()] == [goal["id"]]


def test_create_validation(manager):
    c, _ = manager
    assert c.post("/api/goals", json={"name": "X"}).status_code == 400
    assert c.post("/api/goals", json={"name": "X", "targetAmount": -5}).status_code == 400
    assert c.post("/api/goals", json={"name": "X", "targetAmount": "mil"}).status_code == 400


def test_contribute_and_withdraw_keep_ledger(manager):
    c, _ = manager
    goal = make_goal(c)

    after = c.post(f"/api/goals/{goal['id']}/contribute", json={"amount": 300, "note": "salário"}).json()
    assert after["currentAmount"] == 300.0

    after = c.post(f"/api/goals/{goal['id']}/withdraw", json={"amount": 100}).json()
    assert after["currentAmount"] == 200.0
    assert sorted(h["amount"] for h in after["history"]) == [-100.0, 300.0]

    over = c.post(f"/api/goals/{goal['id']}/withdraw", json={"amount": 500})
    assert over.status_code == 400
    assert c.post(f"/api/goals/{goal['id']}/contribute", json={"amount": 0}).status_code == 400


def test_family_member_contributes_but_cannot_delete(app, manager):
    mc, _ = manager
    goal = make_goal(mc)
    kid, _ = member_of(app, mc, "kid")

    assert kid.post(f"/api/goals/{goal['id']}/contribute", json={"amount": 20}).status_code == 200
    assert kid.post(f"/api/goals/{goal['id']}/withdraw", json={"amount": 10}).status_code == 403
    assert kid.delete(f"/api/goals/{goal['id']}").status_code == 403


def test_outsider_cannot_touch_goal(app, manager):
    mc, _ = manager
    goal = make_goal(mc)
    other = TestClient(app)
    register(other, "pedro", family="Outros")
    assert other.post(f"/api/goals/{goal['id']}/contribute", json={"amount": 20}).status_code == 403
    assert other.put(f"/api/goals/{goal['id']}", json={"name": "Meu"}).status_code == 403


def test_update_and_delete_cascades_history(manager):
    c, _ = manager
    goal = make_goal(c)
    c.post(f"/api/goals/{goal['id']}/contribute", json={"amount": 50})

    updated = c.put(f"/api/goals/{goal['id']}", json={"name": "Carro", "targetAmount": 5000}).json()
    assert updated["name"] == "Carro"
    assert updated["targetAmount"] == 5000.0
    assert updated["deadline"] == "2030-12-31"

    assert c.delete(f"/api/goals/{goal['id']}").json() == {"message": "Goal deleted"}
    assert query_db("SELECT * FROM goal_transactions WHERE goal_id = $1", (goal["id"],)) == []
    assert c.get("/api/goals").json() == []


def test_withdrawal_checks_the_balance_when_writing(manager, monkeypatch):
    c, _ = manager
    goal = make_goal(c)
    c.post(f"/api/goals/{goal['id']}/contribute", json={"amount": 100})

    # a second request that loaded the goal before the first withdrawal landed
    stale = goal_routes._load_goal(goal["id"])
    assert c.post(f"/api/goals/{goal['id']}/withdraw", json={"amount": 80}).status_code == 200
    monkeypatch.setattr(goal_routes, "_load_goal", lambda goal_id: stale)
    late = c.post(f"/api/goals/{goal['id']}/withdraw", json={"amount": 80})
    assert late.status_code == 400
    monkeypatch.undo()

    saved = c.get("/api/goals").json()[0]
    assert saved["currentAmount"] == 20.0
    assert sorted(h["amount"] for h in saved["history"]) == [-80.0, 100.0]
