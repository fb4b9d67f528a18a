import pytest

from conftest import member_of


@pytest.fixture
def translator(app, manager):
    """A TRANSLATOR account created inside the manager's family."""
    mc, _ = manager
    c, _ = member_of(app, mc, "tradutor", role="TRANSLATOR")
    return c


def test_seeded_languages_are_public(client):
    assert client.get("/api/translations/languages").json() == ["en", "pt"]


def test_language_map_needs_login(client, manager):
    assert client.get("/api/translations/language/pt").status_code == 401
    mc, _ = manager
    pt = mc.get("/api/translations/language/pt").json()
    assert len(pt) == 42
    assert pt["app.title"] == "Gestor Financeiro"


def test_members_cannot_edit(manager):
    mc, _ = manager
    resp = mc.post("/api/translations", json={"language": "pt", "key": "x", "value": "y"})
    assert resp.status_code == 403


def test_new_language_is_hidden_until_complete(translator):
    added = translator.post("/api/translations/language/add", json={"language": "fr"}).json()
    assert added["copied"] == 0
    assert added["validation"]["isValid"] is False

    translator.post("/api/translations", json={"language": "fr", "key": "app.title", "value": "Gestionnaire"})
    status = translator.get("/api/translations/languages/all").json()
    assert status["fr"]["isComplete"] is False
    assert status["fr"]["completionPercentage"] == 2
    assert status["pt"]["isComplete"] is True
    assert "fr" not in translator.get("/api/translations/languages").json()

    v = translator.get("/api/translations/validate/fr").json()
    assert v["totalRequired"] == 42
    assert v["totalHas"] == 1
    assert "app.title" not in v["missingKeys"]


def test_add_language_from_base_copies_everything(translator):
    added = translator.post("/api/translations/language/add", json={"language": "es", "baseLanguage": "pt"}).json()
    assert added["copied"] == 42
    assert added["validation"]["isValid"] is True
    assert "es" in translator.get("/api/translations/languages").json()


def test_history_records_changes(translator):
    first = translator.post(
        "/api/translations/save-with-history", json={"language": "pt", "key": "app.title", "value": "Minhas Finanças"}
    ).json()
    assert first["historyRecorded"] is True

    same = translator.post(
        "/api/translations/save-with-history", json={"language": "pt", "key": "app.title", "value": "Minhas Finanças"}
    ).json()
    assert same["historyRecorded"] is False

    translator.post(
        "/api/translations/save-with-history", json={"language": "pt", "key": "new_key%", "value": "Novo"}
    )

    history = translator.get("/api/translations/history", params={"language": "pt"}).json()
    by_key = {h["key"]: h for h in history}
    assert by_key["app.title"]["oldValue"] == "Gestor Financeiro"
    assert by_key["app.title"]["changeType"] == "update"
    assert by_key["app.title"]["userName"] == "Tradutor"
    assert by_key["new_key%"]["changeType"] == "create"

    # wildcards in the filter are matched literally
    filtered = translator.get("/api/translations/history", params={"key": "key%"}).json()
    assert [h["key"] for h in filtered] == ["new_key%"]
    assert translator.get("/api/translations/history", params={"key": "k_y"}).json() == []


def test_import_and_export(translator):
    resp = translator.post(
        "/api/translations/import",
        json={"language": "de", "translations": {"app.title": "Finanzen", "nav.budget": "", "goals.title": "Ziele"}},
    )
    assert resp.json()["count"] == 2

    exported = translator.get("/api/translations/export").json()
    assert exported["de"]["app.title"] == "Finanzen"
    assert exported["de"]["nav.budget"] == ""
    assert set(exported["de"]) == set(exported["pt"])

    assert translator.post("/api/translations/import", json={"language": "de"}).status_code == 400


def test_stats(translator):
    stats = {s["language"]: s for s in translator.get("/api/translations/stats").json()}
    assert stats["pt"]["percentage"] == 100
    assert stats["en"]["translated"] == 42


def test_save_requires_fields(translator):
    assert translator.post("/api/translations", json={"language": "pt", "key": "x"}).status_code == 400
