from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from homeledger.db import query_db, query_one, with_db_cursor
from homeledger.notifications import GLOBAL_PREFS_ID, PREFERENCE_FIELDS, get_preferences, preferences_view
from homeledger.routes import CamelModel
from homeledger.security import SUPER_ADMIN, current_user

router = APIRouter(prefix="/notifications", tags=["notifications"])


class PreferencesBody(CamelModel):
    budget_alerts: Optional[bool] = None
    subscription_alerts: Optional[bool] = None
    financial_tips: Optional[bool] = None
    goal_progress: Optional[bool] = None
    email_notifications: Optional[bool] = None
    push_notifications: Optional[bool] = None


def _prefs_owner(user: Dict[str, Any]):
    if user["role"] == SUPER_ADMIN:
        return GLOBAL_PREFS_ID, True
    return user["id"], False


def notification_view(n: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": n["id"],
        "title": n["title"],
        "message": n["message"],
        "isRead": bool(n["is_read"]),
        "date": n["date"],
    }


# =============================================================================
# Preferences
# =============================================================================

@router.get("/preferences")
def get_prefs(user: Dict[str, Any] = Depends(current_user)):
    owner, is_global = _prefs_owner(user)
    return preferences_view(get_preferences(owner, is_global))


@router.post("/preferences")
def save_prefs(payload: PreferencesBody, user: Dict[str, Any] = Depends(current_user)):
    owner, is_global = _prefs_owner(user)
    row = get_preferences(owner, is_global)

    values = []
    for col in PREFERENCE_FIELDS.values():
        given = getattr(payload, col)
        values.append(row[col] if given is None else (1 if given else 0))

    sets = ", ".join(f"{col} = ${i}" for i, col in enumerate(PREFERENCE_FIELDS.values(), start=1))
    with with_db_cursor() as (conn, cur):
        cur.execute(
            f"UPDATE notification_preferences SET {sets} WHERE user_id = ${len(values) + 1}",
            tuple(values) + (owner,),
        )
        conn.commit()
    return {"message": "Preferences updated", "preferences": preferences_view(get_preferences(owner, is_global))}


# =============================================================================
# In-app notifications
# =============================================================================

@router.get("")
def list_notifications(user: Dict[str, Any] = Depends(current_user)):
    rows = query_db(
        "SELECT * FROM notifications WHERE user_id = $1 ORDER BY is_read ASC, date DESC",
        (user["id"],),
    )
    return [notification_view(n) for n in rows]


@router.get("/unread-count")
def unread_count(user: Dict[str, Any] = Depends(current_user)):
    row = query_one(
        "SELECT COUNT(*) AS count FROM notifications WHERE user_id = $1 AND is_read = 0",
        (user["id"],),
    )
    return {"count": int(row["count"] or 0)}


@router.post("/read-all")
def read_all(user: Dict[str, Any] = Depends(current_user)):
    with with_db_cursor() as (conn, cur):
        cur.execute("UPDATE notifications SET is_read = 1 WHERE user_id = $1 AND is_read = 0", (user["id"],))
        updated = cur.rowcount
        conn.commit()
    return {"message": "All notifications marked as read", "updated": updated}


@router.post("/{notification_id}/read")
def mark_read(notification_id: str, user: Dict[str, Any] = Depends(current_user)):
    with with_db_cursor() as (conn, cur):
        cur.execute(
            "UPDATE notifications SET is_read = 1 WHERE id = $1 AND user_id = $2",
            (notification_id, user["id"]),
        )
        found = cur.rowcount
        conn.commit()
    if not found and query_one(
        "SELECT id FROM notifications WHERE id = $1 AND user_id = $2", (notification_id, user["id"])
    ) is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"message": "Notification marked as read"}


@router.delete("/{notification_id}")
def delete_notification(notification_id: str, user: Dict[str, Any] = Depends(current_user)):
    with with_db_cursor() as (conn, cur):
        cur.execute("DELETE FROM notifications WHERE id = $1 AND user_id = $2", (notification_id, user["id"]))
        deleted = cur.rowcount
        conn.commit()
    if not deleted:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"message": "Notification deleted"}
