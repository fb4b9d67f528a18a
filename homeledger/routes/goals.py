from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException

from homeledger.dates import now_iso
from homeledger.db import new_id, query_db, query_one, with_db_cursor
from homeledger.routes import CamelModel, as_number
from homeledger.security import MANAGER, SUPER_ADMIN, current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/goals", tags=["goals"])

DEFAULT_COLOR = "#10B981"
WITHDRAW_EXCEEDS = "Withdrawal exceeds the saved amount"


class GoalBody(CamelModel):
    name: Optional[str] = None
    target_amount: Any = None
    deadline: Optional[str] = None
    color: Optional[str] = None
    interest_rate: Optional[float] = None


class GoalMovement(CamelModel):
    amount: Any = None
    note: Optional[str] = None


def _history(goal_id: str) -> List[Dict[str, Any]]:
    rows = query_db("SELECT * FROM goal_transactions WHERE goal_id = $1 ORDER BY date DESC", (goal_id,))
    return [
        {"id": h["id"], "userId": h["user_id"], "date": h["date"], "amount": float(h["amount"]), "note": h["note"]}
        for h in rows
    ]


def goal_view(g: Dict[str, Any], with_history: bool = True) -> Dict[str, Any]:
    return {
        "id": g["id"],
        "userId": g["user_id"],
        "name": g["name"],
        "targetAmount": float(g["target_amount"]),
        "currentAmount": float(g["current_amount"] or 0),
        "deadline": g.get("deadline"),
        "color": g.get("color") or DEFAULT_COLOR,
        "interestRate": g.get("interest_rate"),
        "history": _history(g["id"]) if with_history else [],
    }


def _load_goal(goal_id: str) -> Dict[str, Any]:
    row = query_one(
        "SELECT g.*, u.family_id FROM savings_goals g JOIN users u ON g.user_id = u.id WHERE g.id = $1",
        (goal_id,),
    )
    if row is None:
        raise HTTPException(status_code=404, detail="Goal not found")
    return row


def can_manage_goal(user: Dict[str, Any], goal: Dict[str, Any]) -> bool:
    if goal["user_id"] == user["id"] or user["role"] == SUPER_ADMIN:
        return True
    return user["role"] == MANAGER and goal.get("family_id") == user.get("familyId")


def can_contribute(user: Dict[str, Any], goal: Dict[str, Any]) -> bool:
    return can_manage_goal(user, goal) or (bool(user.get("familyId")) and goal.get("family_id") == user.get("familyId"))


def _positive_amount(body: GoalMovement) -> float:
    if body.amount is None:
        raise HTTPException(status_code=400, detail="Valid amount is required")
    amount = as_number(body.amount)
    if amount <= 0:
        raise HTTPException(status_code=400, detail="Valid amount is required")
    return amount


@router.get("")
def list_goals(user: Dict[str, Any] = Depends(current_user)):
    if user["role"] in (SUPER_ADMIN, MANAGER):
        rows = query_db(
            """
            SELECT g.* FROM savings_goals g
            JOIN users u ON g.user_id = u.id
            WHERE u.family_id = $1 OR g.user_id = $2
            ORDER BY g.created_at
            """,
            (user["familyId"], user["id"]),
        )
    else:
        rows = query_db("SELECT * FROM savings_goals WHERE user_id = $1 ORDER BY created_at", (user["id"],))
    return [goal_view(g) for g in rows]


@router.post("", status_code=201)
def create_goal(payload: GoalBody, user: Dict[str, Any] = Depends(current_user)):
    if not payload.name or payload.target_amount is None:
        raise HTTPException(status_code=400, detail="Name and target amount are required")
    target = as_number(payload.target_amount, "targetAmount")
    if target <= 0:
        raise HTTPException(status_code=400, detail="targetAmount must be positive")

    goal_id = new_id("g")
    with with_db_cursor() as (conn, cur):
        cur.execute(
            """
            INSERT INTO savings_goals (id, user_id, name, target_amount, current_amount, deadline, color, interest_rate, created_at)
            VALUES ($1, $2, $3, $4, 0, $5, $6, $7, $8)
            """,
            (
                goal_id, user["id"], payload.name.strip(), target, payload.deadline or None,
                payload.color or DEFAULT_COLOR, payload.interest_rate, now_iso(),
            ),
        )
        conn.commit()
    return goal_view(query_one("SELECT * FROM savings_goals WHERE id = $1", (goal_id,)), with_history=False)


def _move(goal_id: str, amount: float, note: Optional[str], user: Dict[str, Any]) -> Dict[str, Any]:
    """
    Adjust current_amount and append a ledger entry (negative for withdrawals)
    in one transaction. The balance is checked by the UPDATE itself, so a
    withdrawal never takes current_amount below zero.
    """
    with with_db_cursor() as (conn, cur):
        try:
            cur.execute(
                """
                UPDATE savings_goals SET current_amount = COALESCE(current_amount, 0) + $1
                WHERE id = $2 AND COALESCE(current_amount, 0) + $1 >= 0
                """,
                (amount, goal_id),
            )
            applied = cur.rowcount > 0
            if applied:
                cur.execute(
                    """
                    INSERT INTO goal_transactions (id, goal_id, user_id, date, amount, note)
                    VALUES ($1, $2, $3, $4, $5, $6)
                    """,
                    (new_id("gt"), goal_id, user["id"], date.today().isoformat(), amount, note or None),
                )
                conn.commit()
            else:
                conn.rollback()
        except Exception as e:
            conn.rollback()
            raise HTTPException(status_code=500, detail=str(e))
    if not applied:
        raise HTTPException(status_code=400, detail=WITHDRAW_EXCEEDS)
    return goal_view(query_one("SELECT * FROM savings_goals WHERE id = $1", (goal_id,)))


@router.post("/{goal_id}/contribute")
def contribute(goal_id: str, payload: GoalMovement, user: Dict[str, Any] = Depends(current_user)):
    amount = _positive_amount(payload)
    goal = _load_goal(goal_id)
    if not can_contribute(user, goal):
        raise HTTPException(status_code=403, detail="Not authorized to contribute to this goal")
    return _move(goal_id, amount, payload.note, user)


@router.post("/{goal_id}/withdraw")
def withdraw(goal_id: str, payload: GoalMovement, user: Dict[str, Any] = Depends(current_user)):
    amount = _positive_amount(payload)
    goal = _load_goal(goal_id)
    if not can_manage_goal(user, goal):
        raise HTTPException(status_code=403, detail="Not authorized to withdraw from this goal")
    if amount > float(goal["current_amount"] or 0):
        raise HTTPException(status_code=400, detail=WITHDRAW_EXCEEDS)
    return _move(goal_id, -amount, payload.note, user)


@router.put("/{goal_id}")
def update_goal(goal_id: str, payload: GoalBody, user: Dict[str, Any] = Depends(current_user)):
    goal = _load_goal(goal_id)
    if not can_manage_goal(user, goal):
        raise HTTPException(status_code=403, detail="Not authorized to edit this goal")

    target = float(goal["target_amount"])
    if payload.target_amount is not None:
        target = as_number(payload.target_amount, "targetAmount")
        if target <= 0:
            raise HTTPException(status_code=400, detail="targetAmount must be positive")

    with with_db_cursor() as (conn, cur):
        cur.execute(
            """
            UPDATE savings_goals
            SET name = $1, target_amount = $2, deadline = $3, color = $4, interest_rate = $5
            WHERE id = $6
            """,
            (
                (payload.name or goal["name"]).strip(),
                target,
                payload.deadline if payload.deadline is not None else goal.get("deadline"),
                payload.color or goal.get("color") or DEFAULT_COLOR,
                payload.interest_rate if payload.interest_rate is not None else goal.get("interest_rate"),
                goal_id,
            ),
        )
        conn.commit()
    return goal_view(query_one("SELECT * FROM savings_goals WHERE id = $1", (goal_id,)))


@router.delete("/{goal_id}")
def delete_goal(goal_id: str, user: Dict[str, Any] = Depends(current_user)):
    goal = _load_goal(goal_id)
    if not can_manage_goal(user, goal):
        raise HTTPException(status_code=403, detail="Not authorized to delete this goal")

    with with_db_cursor() as (conn, cur):
        cur.execute("DELETE FROM savings_goals WHERE id = $1", (goal_id,))
        conn.commit()
    logger.info("goal %s deleted by %s", goal_id, user["id"])
    return {"message": "Goal deleted"}
