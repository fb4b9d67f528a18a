from datetime import date

from homeledger.budget import auto_save_monthly_history
from homeledger.notifications import create_notification


class TestSettings:
    def test_app_settings_upsert(self, admin_client, manager):
        admin_client.post("/api/settings", json={"key": "theme", "value": "dark"})
        admin_client.post("/api/settings", json={"key": "theme", "value": "light"})

        mc, _ = manager
        settings = {s["key"]: s["value"] for s in mc.get("/api/settings").json()}
        assert settings["theme"] == "light"
        assert mc.post("/api/settings", json={"key": "theme", "value": "x"}).status_code == 403

    def test_notification_config_is_in_memory(self, app, admin_client):
        before = admin_client.get("/api/settings/notification-config").json()
        assert before == {"sendgridKeyExists": False, "sendgridFromEmail": ""}

        admin_client.post(
            "/api/settings/notification-config",
            json={"sendgridKey": "SG.key", "sendgridEmail": "no-reply@example.com"},
        )
        after = admin_client.get("/api/settings/notification-config").json()
        assert after == {"sendgridKeyExists": True, "sendgridFromEmail": "no-reply@example.com"}
        assert app.state.settings.sendgrid_api_key == "SG.key"

    def test_api_configs_hide_keys(self, admin_client, manager):
        resp = admin_client.post("/api/settings/api-configs", json={"provider": "openai", "apiKey": "sk-1", "model": "gpt"})
        assert resp.json()["success"] is True
        admin_client.post("/api/settings/api-configs", json={"provider": "openai", "apiKey": "sk-2"})

        listed = admin_client.get("/api/settings/api-configs").json()
        assert len(listed) == 1
        assert "apiKey" not in listed[0] and "api_key" not in listed[0]

        mc, _ = manager
        assert mc.get("/api/settings/api-configs").status_code == 403
        assert mc.get("/api/settings/api-config/openai").json() == {"hasKey": True, "model": None}
        assert mc.get("/api/settings/api-config/unknown").json() == {"hasKey": False, "model": None}

        missing = admin_client.post("/api/settings/api-configs", json={"id": "cfg_missing", "apiKey": "k"})
        assert missing.status_code == 404
        assert admin_client.post("/api/settings/api-configs", json={"provider": "x"}).status_code == 400

        admin_client.delete(f"/api/settings/api-configs/{listed[0]['id']}")
        assert admin_client.get("/api/settings/api-configs").json() == []

    def test_default_ai_provider(self, admin_client):
        assert admin_client.get("/api/settings/default-ai-provider").json() == {"provider": "google_gemini"}
        assert admin_client.post("/api/settings/default-ai-provider", json={"provider": "openai"}).status_code == 404

        admin_client.post("/api/settings/api-configs", json={"provider": "openai", "apiKey": "sk"})
        admin_client.post("/api/settings/api-configs", json={"provider": "claude", "apiKey": "sk"})
        admin_client.post("/api/settings/default-ai-provider", json={"provider": "openai"})
        admin_client.post("/api/settings/default-ai-provider", json={"provider": "claude"})
        assert admin_client.get("/api/settings/default-ai-provider").json() == {"provider": "claude"}

        admin_client.delete("/api/settings/api-config/claude")
        assert admin_client.get("/api/settings/default-ai-provider").json() == {"provider": "google_gemini"}

    def test_default_currency_provider(self, manager):
        mc, _ = manager
        assert mc.get("/api/settings/default-currency-provider").json() == {"provider": "BNA"}
        assert mc.post("/api/settings/default-currency-provider", json={"provider": "NOPE"}).status_code == 400
        mc.post("/api/settings/default-currency-provider", json={"provider": "PARALLEL"})
        assert mc.get("/api/settings/default-currency-provider").json() == {"provider": "PARALLEL"}


class TestNotifications:
    def test_inbox(self, manager):
        mc, user = manager
        first = create_notification(user["id"], "A", "primeira")
        create_notification(user["id"], "B", "segunda")

        assert mc.get("/api/notifications/unread-count").json() == {"count": 2}
        assert mc.post(f"/api/notifications/{first}/read").status_code == 200

        inbox = mc.get("/api/notifications").json()
        assert [n["title"] for n in inbox] == ["B", "A"]
        assert inbox[1]["isRead"] is True

        assert mc.post("/api/notifications/read-all").json()["updated"] == 1
        assert mc.get("/api/notifications/unread-count").json() == {"count": 0}

        assert mc.delete(f"/api/notifications/{first}").status_code == 200
        assert mc.delete(f"/api/notifications/{first}").status_code == 404
        assert mc.post("/api/notifications/missing/read").status_code == 404

    def test_cannot_delete_someone_elses(self, admin_client, manager):
        _, user = manager
        notif = create_notification(user["id"], "A", "privada")
        assert admin_client.delete(f"/api/notifications/{notif}").status_code == 404

    def test_preferences_default_on_and_accept_both_casings(self, manager):
        mc, _ = manager
        prefs = mc.get("/api/notifications/preferences").json()
        assert prefs["budgetAlerts"] is True
        assert prefs["isGlobal"] is False

        saved = mc.post("/api/notifications/preferences", json={"budgetAlerts": False, "financial_tips": False}).json()
        assert saved["preferences"]["budgetAlerts"] is False
        assert saved["preferences"]["financialTips"] is False
        assert saved["preferences"]["goalProgress"] is True

    def test_super_admin_edits_global_row(self, admin_client):
        prefs = admin_client.get("/api/notifications/preferences").json()
        assert prefs["isGlobal"] is True

    def test_global_switch_silences_budget_alerts(self, admin_client, manager):
        mc, user = manager
        mc.post(
            "/api/transactions",
            json={"description": "x", "amount": 900, "date": "2024-04-10", "category": "budget.category.food", "type": "DESPESA"},
        )
        admin_client.post("/api/notifications/preferences", json={"budgetAlerts": False})

        assert auto_save_monthly_history(user["id"], today=date(2024, 5, 1)) is True
        assert mc.get("/api/notifications").json() == []


class TestPush:
    SUB = {"endpoint": "https://push.example.com/abc", "keys": {"p256dh": "k", "auth": "a"}}

    def test_subscribe_is_idempotent(self, manager):
        mc, _ = manager
        assert mc.post("/api/push/subscribe", json={"subscription": self.SUB}).status_code == 200
        assert mc.post("/api/push/subscribe", json={"subscription": self.SUB}).status_code == 200
        assert mc.get("/api/push/status").json() == {"isSubscribed": True, "subscriptionCount": 1}

        mc.post("/api/push/unsubscribe", json={"subscription": self.SUB})
        assert mc.get("/api/push/status").json() == {"isSubscribed": False, "subscriptionCount": 0}

    def test_subscription_required(self, manager):
        mc, _ = manager
        assert mc.post("/api/push/subscribe", json={}).status_code == 400
        assert mc.post("/api/push/subscribe", json={"subscription": {"keys": {}}}).status_code == 400

    def test_test_push_is_admin_only(self, admin_client, manager):
        mc, _ = manager
        assert mc.post("/api/push/test").status_code == 403
        assert admin_client.post("/api/push/test").status_code == 200
        assert [n["title"] for n in admin_client.get("/api/notifications").json()] == ["Teste"]
