import base64

import pytest

from homeledger.reports import ReportFileError, decode_file, parse_amount, parse_sheet_date, parse_transactions, template_csv
from homeledger.routes.backup import db_hash

SHEET = (
    "Data;Descrição;Categoria;Tipo;Valor\n"
    "01/12/2024;Mercado;Alimentação;DESPESA;150,50\n"
    "2024-12-05;Salário;Salário;income;5000\n"
    "05/12/2024;;Casa;DESPESA;10\n"
    "06/12/2024;Luz;Casa;TRANSFER;10\n"
    "31/02/2024;Água;Casa;DESPESA;10\n"
    "07/12/2024;Gás;Casa;DESPESA;-3\n"
)


def b64(text, prefix=""):
    return prefix + base64.b64encode(text.encode("utf-8")).decode("ascii")


class TestParsing:
    def test_parse_transactions(self):
        rows, errors = parse_transactions(SHEET)
        assert rows == [
            {"date": "2024-12-01", "description": "Mercado", "category": "Alimentação", "type": "DESPESA", "amount": 150.5},
            {"date": "2024-12-05", "description": "Salário", "category": "Salário", "type": "RECEITA", "amount": 5000.0},
        ]
        assert errors == [
            "Linha 4: Campos obrigatórios faltando",
            "Linha 5: Tipo deve ser INCOME/EXPENSE/RECEITA/DESPESA",
            "Linha 6: Data inválida",
            "Linha 7: Valor deve ser positivo",
        ]

    def test_comma_delimited_template_round_trips(self):
        rows, errors = parse_transactions(template_csv())
        assert errors == []
        assert [r["type"] for r in rows] == ["DESPESA", "RECEITA"]

    def test_thousands_separator_in_sheet(self):
        rows, errors = parse_transactions("Data;Descrição;Categoria;Tipo;Valor\n10/01/2025;Renda;Casa;DESPESA;1.234,56\n")
        assert errors == []
        assert rows[0]["amount"] == 1234.56

    def test_helpers(self):
        assert parse_sheet_date("09/01/2025") == "2025-01-09"
        assert parse_sheet_date("2025-01-09T10:00") == "2025-01-09"
        assert parse_sheet_date("ontem") is None
        assert parse_amount("1 234,5") == 1234.5
        assert parse_amount("1.234,56") == 1234.56
        assert parse_amount("1,234.56") == 1234.56
        assert parse_amount("abc") is None

    def test_decode_file(self):
        assert decode_file(b64("a;b", prefix="data:text/csv;base64,")) == "a;b"
        with pytest.raises(ReportFileError):
            decode_file("")
        with pytest.raises(ReportFileError):
            decode_file("not base64!!")


class TestReportRoutes:
    def test_template_download(self, manager):
        mc, _ = manager
        resp = mc.get("/api/reports/template")
        assert resp.headers["content-type"].startswith("text/csv")
        assert "template_transacoes.csv" in resp.headers["content-disposition"]

    def test_preview_does_not_write(self, manager):
        mc, _ = manager
        preview = mc.post("/api/reports/preview", json={"fileData": b64(SHEET)}).json()
        assert len(preview["transactions"]) == 2
        assert len(preview["errors"]) == 4
        assert mc.get("/api/transactions").json() == []

    def test_import_inserts_valid_rows(self, manager):
        mc, user = manager
        result = mc.post("/api/reports/import", json={"fileData": b64(SHEET)}).json()
        assert result["success"] is True
        assert result["imported"] == 2

        rows = mc.get("/api/transactions").json()
        assert {r["description"] for r in rows} == {"Mercado", "Salário"}
        assert all(r["userId"] == user["id"] for r in rows)

    def test_bad_file(self, manager):
        mc, _ = manager
        assert mc.post("/api/reports/import", json={}).status_code == 400

    def test_logo(self, client, admin_client, manager):
        assert client.get("/api/reports/logo").json() == {"logo": None}
        mc, _ = manager
        assert mc.post("/api/reports/logo", json={"logo": "data:image/png;base64,AA=="}).status_code == 403
        assert admin_client.post("/api/reports/logo", json={}).status_code == 400
        admin_client.post("/api/reports/logo", json={"logo": "data:image/png;base64,AA=="})
        assert client.get("/api/reports/logo").json() == {"logo": "data:image/png;base64,AA=="}


class TestBackup:
    def test_hash_is_order_independent(self):
        assert db_hash({"a": [{"x": 1, "y": 2}]}) == db_hash({"a": [{"y": 2, "x": 1}]})
        assert db_hash({"a": [{"x": 1}]}) != db_hash({"a": [{"x": 2}]})

    def test_admin_only(self, manager):
        mc, _ = manager
        assert mc.post("/api/backup").status_code == 403

    def test_backup_and_restore_round_trip(self, admin_client, manager):
        mc, _ = manager
        mc.post(
            "/api/transactions",
            json={"description": "Antes", "amount": 10, "date": "2024-01-01", "category": "c", "type": "DESPESA"},
        )
        backup = admin_client.post("/api/backup").json()
        assert backup["success"] is True
        assert backup["data"]["version"] == "1.0"
        assert len(backup["data"]["tables"]["transactions"]) == 1
        assert admin_client.get("/api/backup/progress").json()["current"] == 100

        mc.post(
            "/api/transactions",
            json={"description": "Depois", "amount": 20, "date": "2024-01-02", "category": "c", "type": "DESPESA"},
        )
        restored = admin_client.post("/api/backup/restore", json={"backupData": backup["data"]})
        assert restored.status_code == 200
        assert restored.json()["restored"] > 0

        assert [t["description"] for t in mc.get("/api/transactions").json()] == ["Antes"]

    def test_restore_rejects_tampering(self, admin_client):
        data = admin_client.post("/api/backup").json()["data"]

        tampered = dict(data, tables=dict(data["tables"], families=[]))
        resp = admin_client.post("/api/backup/restore", json={"backupData": tampered})
        assert resp.status_code == 400

        unknown = {"tables": {"users; DROP TABLE users": []}}
        assert admin_client.post("/api/backup/restore", json={"backupData": unknown}).status_code == 400

        bad_column = {"tables": {"families": [{"id": "f", "name) VALUES ('x'); --": "y"}]}}
        assert admin_client.post("/api/backup/restore", json={"backupData": bad_column}).status_code == 400

        assert admin_client.post("/api/backup/restore", json={}).status_code == 400
