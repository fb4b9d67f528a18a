from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from homeledger.dates import month_key, now_iso, previous_month
from homeledger.db import new_id, query_db, query_one, upsert_record, with_db_cursor
from homeledger.notifications import alerts_enabled, create_notification

logger = logging.getLogger(__name__)

EXPENSE = "DESPESA"
INCOME = "RECEITA"
GENERAL_CATEGORY = "budget.category.general"
HISTORY_SETTING_PREFIX = "budget_history_saved_"

LEGACY_CATEGORY_MAP: Dict[str, str] = {
    "budget.category.food": "Alimentação",
    "budget.category.transport": "Transporte",
    "budget.category.health": "Saúde",
    "budget.category.education": "Educação",
    "budget.category.entertainment": "Entretenimento",
    "budget.category.utilities": "Utilidades",
    "budget.category.clothing": "Vestuário",
    "budget.category.communication": "Comunicação",
    "budget.category.insurance": "Seguros",
    "budget.category.savings": "Poupança",
    "budget.category.investments": "Investimentos",
    "budget.category.leisure": "Lazer",
    "budget.category.travel": "Viagens",
    "budget.category.home": "Casa",
    "budget.category.pets": "Pets",
    "budget.category.general": "Geral",
}

DEFAULT_BUDGETS: List[Dict[str, Any]] = [
    {"translation_key": "budget.category.food", "limit": 500},
    {"translation_key": "budget.category.transport", "limit": 200},
    {"translation_key": "budget.category.health", "limit": 300},
    {"translation_key": "budget.category.education", "limit": 400},
    {"translation_key": "budget.category.entertainment", "limit": 150},
    {"translation_key": "budget.category.utilities", "limit": 350},
    {"translation_key": "budget.category.clothing", "limit": 250},
    {"translation_key": "budget.category.communication", "limit": 100},
    {"translation_key": "budget.category.insurance", "limit": 200},
    {"translation_key": "budget.category.savings", "limit": 1000},
    {"translation_key": "budget.category.investments", "limit": 500},
    {"translation_key": "budget.category.leisure", "limit": 200},
    {"translation_key": "budget.category.travel", "limit": 300},
    {"translation_key": "budget.category.home", "limit": 400},
    {"translation_key": "budget.category.pets", "limit": 150},
    {"translation_key": "budget.category.general", "limit": 500},
]


def create_default_budgets_for_user(user_id: str, cur=None) -> int:
    if cur is None:
        with with_db_cursor() as (conn, c):
            created = create_default_budgets_for_user(user_id, c)
            conn.commit()
        return created

    cur.execute("SELECT category, translation_key FROM budget_limits WHERE user_id = $1", (user_id,))
    have = set()
    for r in cur.fetchall():
        have.add(r["category"])
        if r.get("translation_key"):
            have.add(r["translation_key"])

    created = 0
    for b in DEFAULT_BUDGETS:
        key = b["translation_key"]
        if key in have:
            continue
        cur.execute(
            """
            INSERT INTO budget_limits (id, user_id, category, translation_key, limit_amount, is_default)
            VALUES ($1, $2, $3, $3, $4, 1)
            ON CONFLICT (user_id, category) DO NOTHING
            """,
            (new_id("bl"), user_id, key, float(b["limit"])),
        )
        created += 1

    if created:
        logger.info("created %s default budgets for user %s", created, user_id)
    return created


def list_limits(user_id: str) -> List[Dict[str, Any]]:
    return query_db("SELECT * FROM budget_limits WHERE user_id = $1 ORDER BY category", (user_id,))


def spending_by_category(user_id: str, month: str, cur=None) -> Dict[str, float]:
    sql = """
        SELECT category, SUM(amount) AS total
        FROM transactions
        WHERE user_id = $1 AND type = $2 AND LEFT(date, 7) = $3
        GROUP BY category
    """
    params = (user_id, EXPENSE, month)
    if cur is not None:
        rows = cur.execute(sql, params).fetchall()
    else:
        rows = query_db(sql, params)
    return {r["category"]: float(r["total"] or 0) for r in rows}


def spent_for_limit(limit_row: Dict[str, Any], spending: Dict[str, float]) -> float:
    """Match on translation key first, then stored category, then the legacy display name."""
    key = limit_row.get("translation_key") or limit_row["category"]
    for candidate in (key, limit_row["category"], LEGACY_CATEGORY_MAP.get(key)):
        if candidate and candidate in spending:
            return spending[candidate]
    return 0.0


def percentage_of(spent: float, limit: float) -> int:
    if not limit:
        return 0
    return int(round(spent / limit * 100))


def limit_view(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "category": row["category"],
        "translationKey": row.get("translation_key"),
        "limit": float(row["limit_amount"]),
        "isDefault": bool(row.get("is_default")),
    }


def budget_summary(user_id: str, today: Optional[date] = None) -> List[Dict[str, Any]]:
    today = today or date.today()
    limits = list_limits(user_id)
    if not limits:
        create_default_budgets_for_user(user_id)
        limits = list_limits(user_id)

    spending = spending_by_category(user_id, month_key(today))
    out = []
    for l in limits:
        spent = spent_for_limit(l, spending)
        item = limit_view(l)
        item["spent"] = spent
        item["percentage"] = percentage_of(spent, float(l["limit_amount"]))
        out.append(item)
    return out


def save_history_snapshot(user_id: str, month: str, cur) -> List[Dict[str, Any]]:
    """Upsert one budget_history row per limit for month; returns the rows written."""
    cur.execute("SELECT * FROM budget_limits WHERE user_id = $1", (user_id,))
    limits = cur.fetchall()
    spending = spending_by_category(user_id, month, cur)

    written = []
    for l in limits:
        key = l.get("translation_key") or l["category"]
        spent = spent_for_limit(l, spending)
        upsert_record(
            cur,
            "budget_history",
            {
                "id": new_id("bh"),
                "user_id": user_id,
                "category": key,
                "month": month,
                "limit_amount": float(l["limit_amount"]),
                "spent_amount": spent,
                "created_at": now_iso(),
            },
            ("user_id", "category", "month"),
        )
        written.append({"category": key, "limit": float(l["limit_amount"]), "spent": spent})
    return written


def _claim_month(cur, name: str, month: str) -> bool:
    """Mark month as handled under setting name; False when another writer already did."""
    cur.execute(
        "UPDATE app_settings SET value = $1 WHERE name = $2 AND (value IS NULL OR value <> $1)",
        (month, name),
    )
    if cur.rowcount:
        return True
    cur.execute("INSERT INTO app_settings (name, value) VALUES ($1, $2) ON CONFLICT (name) DO NOTHING", (name, month))
    return cur.rowcount > 0


def auto_save_monthly_history(user_id: str, today: Optional[date] = None) -> bool:
    """
    Snapshot the previous month once per calendar month for user_id.

    Returns True when a snapshot was written, False when this month was
    already handled.
    """
    today = today or date.today()
    current = month_key(today)
    setting = f"{HISTORY_SETTING_PREFIX}{user_id}"

    row = query_one("SELECT value FROM app_settings WHERE name = $1", (setting,))
    if row and row["value"] == current:
        return False

    prev = previous_month(today)
    with with_db_cursor() as (conn, cur):
        if not _claim_month(cur, setting, current):
            conn.rollback()
            return False
        written = save_history_snapshot(user_id, prev, cur)
        conn.commit()

    over = [w for w in written if w["limit"] and w["spent"] > w["limit"]]
    if over and alerts_enabled(user_id, "budget_alerts"):
        names = ", ".join(w["category"] for w in over)
        create_notification(
            user_id,
            "Orçamento excedido",
            f"{len(over)} categoria(s) ultrapassaram o limite em {prev}: {names}",
        )

    logger.info("saved budget history for user %s: %s categories from %s", user_id, len(written), prev)
    return True


def users_with_budgets() -> List[str]:
    return [r["user_id"] for r in query_db("SELECT DISTINCT user_id FROM budget_limits")]


def run_history_for_all_users(today: Optional[date] = None) -> int:
    saved = 0
    for user_id in users_with_budgets():
        try:
            if auto_save_monthly_history(user_id, today):
                saved += 1
        except Exception as e:
            logger.error("budget history failed for user %s: %s", user_id, e)
    return saved
