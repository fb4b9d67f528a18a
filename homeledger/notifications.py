from __future__ import annotations

import logging
from typing import Any, Dict

from homeledger.dates import now_iso
from homeledger.db import new_id, query_one, with_db_cursor

logger = logging.getLogger(__name__)

GLOBAL_PREFS_ID = "global"

PREFERENCE_FIELDS = {
    "budgetAlerts": "budget_alerts",
    "subscriptionAlerts": "subscription_alerts",
    "financialTips": "financial_tips",
    "goalProgress": "goal_progress",
    "emailNotifications": "email_notifications",
    "pushNotifications": "push_notifications",
}


def preferences_view(row: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {"isGlobal": bool(row.get("is_global"))}
    for api_name, col in PREFERENCE_FIELDS.items():
        out[api_name] = bool(row.get(col))
    return out


def get_preferences(owner_id: str, is_global: bool = False) -> Dict[str, Any]:
    """Load the preference row for owner_id, creating an all-enabled one on first read."""
    row = query_one("SELECT * FROM notification_preferences WHERE user_id = $1", (owner_id,))
    if row is not None:
        return row

    with with_db_cursor() as (conn, cur):
        cur.execute(
            """
            INSERT INTO notification_preferences (id, user_id, is_global)
            VALUES ($1, $2, $3)
            ON CONFLICT (user_id) DO NOTHING
            """,
            (new_id("np"), owner_id, 1 if is_global else 0),
        )
        conn.commit()
    return query_one("SELECT * FROM notification_preferences WHERE user_id = $1", (owner_id,))


def alerts_enabled(user_id: str, column: str) -> bool:
    if column not in PREFERENCE_FIELDS.values():
        raise ValueError(f"unknown preference column: {column}")
    global_prefs = get_preferences(GLOBAL_PREFS_ID, is_global=True)
    if not global_prefs.get(column):
        return False
    return bool(get_preferences(user_id).get(column))


def create_notification(user_id: str, title: str, message: str, cur=None) -> str:
    notif_id = new_id("n")
    params = (notif_id, user_id, title, message, now_iso())
    sql = """
        INSERT INTO notifications (id, user_id, title, message, is_read, date)
        VALUES ($1, $2, $3, $4, 0, $5)
    """
    if cur is not None:
        cur.execute(sql, params)
    else:
        with with_db_cursor() as (conn, c):
            c.execute(sql, params)
            conn.commit()
    logger.debug("notification %s for %s: %s", notif_id, user_id, title)
    return notif_id
