from fastapi.testclient import TestClient

from conftest import login, member_of, register
from homeledger.db import query_db, query_one
from homeledger.routes import users as user_routes


class TestTasksAndEvents:
    def test_task_lifecycle(self, app, manager):
        mc, _ = manager
        kid, kid_user = member_of(app, mc, "kid")

        task = mc.post(
            "/api/family/tasks",
            json={"description": "Lavar louça", "assignedTo": kid_user["id"], "dueDate": "2024-06-01"},
        ).json()
        assert task["assignedToName"] == "Kid"
        assert task["isCompleted"] is False

        # any family member sees and completes it
        assert [t["id"] for t in kid.get("/api/family/tasks").json()] == [task["id"]]
        done = kid.put(f"/api/family/tasks/{task['id']}", json={"isCompleted": True}).json()
        assert done["isCompleted"] is True
        assert done["description"] == "Lavar louça"
        assert done["dueDate"] == "2024-06-01"

        assert mc.delete(f"/api/family/tasks/{task['id']}").json() == {"message": "Task deleted"}

    def test_task_validation(self, manager):
        mc, _ = manager
        assert mc.post("/api/family/tasks", json={}).status_code == 400
        assert mc.post("/api/family/tasks", json={"description": "x", "dueDate": "amanhã"}).status_code == 400

    def test_other_family_is_denied(self, app, manager):
        mc, _ = manager
        task = mc.post("/api/family/tasks", json={"description": "Compras"}).json()

        other = TestClient(app)
        register(other, "pedro", family="Outros")
        assert other.get("/api/family/tasks").json() == []
        assert other.put(f"/api/family/tasks/{task['id']}", json={"isCompleted": True}).status_code == 403
        assert other.delete("/api/family/tasks/missing").status_code == 404

    def test_event_lifecycle(self, manager):
        mc, _ = manager
        event = mc.post("/api/family/events", json={"title": "Aniversário", "date": "2024-08-10"}).json()
        assert event["type"] == "general"

        moved = mc.put(f"/api/family/events/{event['id']}", json={"date": "2024-08-11"}).json()
        assert moved["date"] == "2024-08-11"
        assert moved["title"] == "Aniversário"

        assert mc.post("/api/family/events", json={"title": "Sem data"}).status_code == 400
        assert mc.delete(f"/api/family/events/{event['id']}").json() == {"message": "Event deleted"}
        assert mc.get("/api/family/events").json() == []


class TestUsers:
    def test_manager_creates_member_in_own_family(self, app, manager):
        mc, muser = manager
        _, kid = member_of(app, mc, "kid", birthDate="2014-02-02")
        assert kid["familyId"] == muser["familyId"]
        assert kid["role"] == "MEMBER"
        assert kid["createdBy"] == muser["id"]

        names = {u["username"] for u in mc.get("/api/users").json()}
        assert names == {"maria", "kid"}

    def test_member_cannot_create_or_escalate(self, app, manager):
        mc, _ = manager
        kid, kid_user = member_of(app, mc, "kid")
        assert kid.post("/api/users", json={"username": "x", "password": "y", "name": "X"}).status_code == 403

        # self-edits silently ignore role changes
        me = kid.put(f"/api/users/{kid_user['id']}", json={"role": "MANAGER", "name": "Kiddo"}).json()
        assert me["role"] == "MEMBER"
        assert me["name"] == "Kiddo"

    def test_only_super_admin_grants_super_admin(self, manager):
        mc, _ = manager
        resp = mc.post("/api/users", json={"username": "x", "password": "y", "name": "X", "role": "SUPER_ADMIN"})
        assert resp.status_code == 403
        resp = mc.post("/api/users", json={"username": "x", "password": "y", "name": "X", "role": "KING"})
        assert resp.status_code == 400

    def test_duplicate_username(self, manager):
        mc, _ = manager
        resp = mc.post("/api/users", json={"username": "maria", "password": "y", "name": "X"})
        assert resp.status_code == 409

    def test_duplicate_username_found_only_by_the_insert(self, manager, monkeypatch):
        mc, _ = manager
        lookup = user_routes.query_one
        monkeypatch.setattr(
            user_routes, "query_one", lambda sql, params=(): None if "username = $1" in sql else lookup(sql, params)
        )
        resp = mc.post("/api/users", json={"username": "maria", "password": "y", "name": "X"})
        assert resp.status_code == 409

    def test_currency_provider_preference(self, manager):
        mc, muser = manager
        ok = mc.put(f"/api/users/{muser['id']}", json={"currencyProviderPreference": "FOREX"})
        assert ok.json()["currencyProviderPreference"] == "FOREX"
        bad = mc.put(f"/api/users/{muser['id']}", json={"currencyProviderPreference": "BANK"})
        assert bad.status_code == 400

    def test_password_change(self, app, manager):
        mc, muser = manager
        mc.put(f"/api/users/{muser['id']}", json={"password": "rotated"})
        assert login(TestClient(app), "maria", "rotated").status_code == 200

    def test_delete_member_removes_their_rows(self, app, manager):
        mc, muser = manager
        kid, kid_user = member_of(app, mc, "kid")
        kid.post(
            "/api/transactions",
            json={"description": "x", "amount": 1, "date": "2024-01-01", "category": "c", "type": "DESPESA"},
        )

        assert mc.delete(f"/api/users/{muser['id']}").status_code == 400
        assert mc.delete(f"/api/users/{kid_user['id']}").json() == {"message": "User deleted"}
        assert query_one("SELECT id FROM users WHERE id = $1", (kid_user["id"],)) is None
        assert query_db("SELECT id FROM transactions WHERE user_id = $1", (kid_user["id"],)) == []
        assert query_db("SELECT id FROM budget_limits WHERE user_id = $1", (kid_user["id"],)) == []

    def test_manager_cannot_delete_other_family(self, app, manager):
        mc, _ = manager
        other = TestClient(app)
        stranger = register(other, "pedro", family="Outros")
        assert mc.delete(f"/api/users/{stranger['id']}").status_code == 403


class TestFamilies:
    def test_super_admin_lists_families(self, admin_client, manager):
        families = {f["name"]: f for f in admin_client.get("/api/families").json()}
        assert families["Silva"]["member_count"] == 1
        assert "Administração" in families

    def test_manager_is_denied(self, manager):
        mc, _ = manager
        assert mc.get("/api/families").status_code == 403

    def test_admin_family_is_protected(self, admin_client):
        assert admin_client.delete("/api/families/fam_admin").status_code == 403
        assert admin_client.delete("/api/families/fam_missing").status_code == 404

    def test_delete_family_cascades(self, app, admin_client, manager):
        mc, muser = manager
        member_of(app, mc, "kid")
        mc.post("/api/goals", json={"name": "Casa", "targetAmount": 100})
        mc.post("/api/family/tasks", json={"description": "Compras"})

        resp = admin_client.delete(f"/api/families/{muser['familyId']}")
        assert resp.status_code == 200
        assert resp.json()["deletedUsers"] == 2

        assert query_db("SELECT id FROM users WHERE family_id = $1", (muser["familyId"],)) == []
        assert query_db("SELECT id FROM family_tasks WHERE family_id = $1", (muser["familyId"],)) == []
        assert query_db("SELECT id FROM savings_goals WHERE user_id = $1", (muser["id"],)) == []
        assert mc.get("/api/auth/me").status_code == 401
