from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from homeledger.db import query_db, query_one, with_db_cursor
from homeledger.schema import ADMIN_FAMILY_ID
from homeledger.security import SUPER_ADMIN, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/families", tags=["families"])

super_admin = require_roles(SUPER_ADMIN)

# per-user rows removed before the users themselves
USER_OWNED_TABLES = (
    "transaction_attachments",
    "transactions",
    "goal_transactions",
    "savings_goals",
    "budget_limits",
    "budget_history",
    "notifications",
    "notification_preferences",
    "push_subscriptions",
    "saved_simulations",
    "ai_analysis_cache",
)


def _delete_user_rows(cur, table: str, user_ids) -> None:
    marks = ", ".join(f"${i}" for i in range(1, len(user_ids) + 1))
    if table == "transaction_attachments":
        cur.execute(
            f"DELETE FROM transaction_attachments WHERE transaction_id IN "
            f"(SELECT id FROM transactions WHERE user_id IN ({marks}))",
            tuple(user_ids),
        )
    elif table == "goal_transactions":
        cur.execute(
            f"DELETE FROM goal_transactions WHERE goal_id IN "
            f"(SELECT id FROM savings_goals WHERE user_id IN ({marks}))",
            tuple(user_ids),
        )
    else:
        cur.execute(f"DELETE FROM {table} WHERE user_id IN ({marks})", tuple(user_ids))


def purge_user_data(cur, user_ids) -> None:
    """Remove every row owned by user_ids, leaving the users rows themselves."""
    if not user_ids:
        return
    for table in USER_OWNED_TABLES:
        _delete_user_rows(cur, table, user_ids)


@router.get("")
def list_families(user: Dict[str, Any] = Depends(super_admin)):
    rows = query_db(
        """
        SELECT f.id, f.name, f.created_at, COUNT(u.id) AS member_count
        FROM families f
        LEFT JOIN users u ON f.id = u.family_id
        GROUP BY f.id, f.name, f.created_at
        ORDER BY f.created_at DESC
        """
    )
    return [
        {"id": r["id"], "name": r["name"], "created_at": r["created_at"], "member_count": int(r["member_count"] or 0)}
        for r in rows
    ]


@router.delete("/{family_id}")
def delete_family(family_id: str, user: Dict[str, Any] = Depends(super_admin)):
    if family_id == ADMIN_FAMILY_ID:
        raise HTTPException(status_code=403, detail="Cannot delete the default admin family")
    if query_one("SELECT id FROM families WHERE id = $1", (family_id,)) is None:
        raise HTTPException(status_code=404, detail="Family not found")

    with with_db_cursor() as (conn, cur):
        try:
            cur.execute("SELECT id FROM users WHERE family_id = $1", (family_id,))
            user_ids = [r["id"] for r in cur.fetchall()]
            purge_user_data(cur, user_ids)

            cur.execute("DELETE FROM family_tasks WHERE family_id = $1", (family_id,))
            cur.execute("DELETE FROM family_events WHERE family_id = $1", (family_id,))
            cur.execute("DELETE FROM users WHERE family_id = $1", (family_id,))
            cur.execute("DELETE FROM families WHERE id = $1", (family_id,))
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error("failed to delete family %s: %s", family_id, e)
            raise HTTPException(status_code=500, detail="Failed to delete family. The operation was rolled back.")

    logger.info("family %s deleted with %s members", family_id, len(user_ids))
    return {"message": "Family and all associated data deleted successfully", "deletedUsers": len(user_ids)}
