from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from homeledger.budget import (
    GENERAL_CATEGORY,
    budget_summary,
    create_default_budgets_for_user,
    limit_view,
    list_limits,
    save_history_snapshot,
)
from homeledger.dates import month_key
from homeledger.db import new_id, query_db, query_one, with_db_cursor
from homeledger.routes import CamelModel, as_number
from homeledger.security import current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/budget", tags=["budget"])

HISTORY_ROWS = 12


class LimitBody(CamelModel):
    category: Optional[str] = None
    limit: Any = None
    translation_key: Optional[str] = None


@router.get("/limits")
def get_limits(user: Dict[str, Any] = Depends(current_user)):
    rows = list_limits(user["id"])
    if not rows:
        create_default_budgets_for_user(user["id"])
        rows = list_limits(user["id"])
    return [limit_view(r) for r in rows]


@router.post("/create-defaults")
def create_defaults(user: Dict[str, Any] = Depends(current_user)):
    created = create_default_budgets_for_user(user["id"])
    return {"message": f"Created {created} default budgets", "created": created}


@router.post("/limits")
def save_limit(payload: LimitBody, user: Dict[str, Any] = Depends(current_user)):
    if not payload.category or payload.limit is None:
        raise HTTPException(status_code=400, detail="Category and limit are required")
    limit = as_number(payload.limit, "limit")
    ident = payload.translation_key or payload.category

    with with_db_cursor() as (conn, cur):
        cur.execute(
            "SELECT id FROM budget_limits WHERE user_id = $1 AND (category = $2 OR translation_key = $2)",
            (user["id"], ident),
        )
        if cur.fetchone():
            cur.execute(
                """
                UPDATE budget_limits SET limit_amount = $1
                WHERE user_id = $2 AND (category = $3 OR translation_key = $3)
                """,
                (limit, user["id"], ident),
            )
        else:
            cur.execute(
                """
                INSERT INTO budget_limits (id, user_id, category, translation_key, limit_amount, is_default)
                VALUES ($1, $2, $3, $4, $5, 0)
                """,
                (new_id("bl"), user["id"], payload.category, payload.translation_key, limit),
            )
        conn.commit()

    return {"category": payload.category, "limit": limit, "translationKey": payload.translation_key}


@router.delete("/limits/{category:path}")
def delete_limit(category: str, user: Dict[str, Any] = Depends(current_user)):
    row = query_one(
        "SELECT is_default FROM budget_limits WHERE user_id = $1 AND (category = $2 OR translation_key = $2)",
        (user["id"], category),
    )
    if row and row["is_default"]:
        raise HTTPException(status_code=403, detail="Default budgets cannot be deleted")

    with with_db_cursor() as (conn, cur):
        try:
            cur.execute(
                "UPDATE transactions SET category = $1 WHERE user_id = $2 AND category = $3",
                (GENERAL_CATEGORY, user["id"], category),
            )
            moved = cur.rowcount
            cur.execute(
                "DELETE FROM budget_limits WHERE user_id = $1 AND (category = $2 OR translation_key = $2)",
                (user["id"], category),
            )
            conn.commit()
        except Exception as e:
            conn.rollback()
            raise HTTPException(status_code=500, detail=str(e))

    logger.info("budget %s removed for %s, %s transactions moved to general", category, user["id"], moved)
    return {"message": "Budget deleted and transactions moved to General", "moved": moved}


@router.get("/summary")
def summary(user: Dict[str, Any] = Depends(current_user)):
    return budget_summary(user["id"])


@router.get("/history")
def history(user: Dict[str, Any] = Depends(current_user)):
    rows = query_db(
        f"SELECT * FROM budget_history WHERE user_id = $1 ORDER BY month DESC, category LIMIT {HISTORY_ROWS}",
        (user["id"],),
    )
    grouped: Dict[str, list] = {}
    for r in rows:
        grouped.setdefault(r["month"], []).append(
            {"category": r["category"], "limit": float(r["limit_amount"]), "spent": float(r["spent_amount"] or 0)}
        )
    return grouped


@router.post("/history/save")
def save_history(user: Dict[str, Any] = Depends(current_user)):
    month = month_key(date.today())
    with with_db_cursor() as (conn, cur):
        try:
            written = save_history_snapshot(user["id"], month, cur)
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error("history save failed for %s: %s", user["id"], e)
            raise HTTPException(status_code=500, detail=str(e))
    return {"message": f"Saved history for {len(written)} categories in {month}", "month": month, "saved": len(written)}
