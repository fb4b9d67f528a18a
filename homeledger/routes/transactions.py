from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException

from homeledger.budget import EXPENSE, INCOME
from homeledger.dates import now_iso, parse_date
from homeledger.db import new_id, query_db, query_one, with_db_cursor
from homeledger.recurring import FREQUENCIES, next_due_date
from homeledger.routes import CamelModel, as_number, require_fields
from homeledger.security import MANAGER, SUPER_ADMIN, can_view_user_transactions, current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transactions", tags=["transactions"])

TYPE_ALIASES = {
    "RECEITA": INCOME,
    "INCOME": INCOME,
    "DESPESA": EXPENSE,
    "EXPENSE": EXPENSE,
}


class TransactionBody(CamelModel):
    description: Optional[str] = None
    amount: Any = None
    date: Optional[str] = None
    category: Optional[str] = None
    type: Optional[str] = None
    is_recurring: bool = False
    frequency: Optional[str] = None


def normalize_type(value: Optional[str]) -> str:
    t = TYPE_ALIASES.get((value or "").strip().upper())
    if t is None:
        raise HTTPException(status_code=400, detail="type must be RECEITA or DESPESA")
    return t


def _validate(payload: TransactionBody) -> Dict[str, Any]:
    require_fields(payload, "description", "date", "category", "type")
    if payload.amount is None:
        raise HTTPException(status_code=400, detail="Missing required fields: amount")
    amount = as_number(payload.amount)
    if parse_date(payload.date) is None:
        raise HTTPException(status_code=400, detail=f"Bad ISO date: {payload.date!r}")

    frequency = (payload.frequency or "").lower() or None
    if payload.is_recurring and frequency not in FREQUENCIES:
        raise HTTPException(status_code=400, detail=f"frequency must be one of {', '.join(FREQUENCIES)}")

    return {
        "description": payload.description.strip(),
        "amount": amount,
        "date": parse_date(payload.date).isoformat(),
        "category": payload.category,
        "type": normalize_type(payload.type),
        "is_recurring": 1 if payload.is_recurring else 0,
        "frequency": frequency if payload.is_recurring else None,
    }


def transaction_view(t: Dict[str, Any]) -> Dict[str, Any]:
    out = {
        "id": t["id"],
        "userId": t["user_id"],
        "description": t["description"],
        "amount": float(t["amount"]),
        "date": t["date"],
        "category": t["category"],
        "type": t["type"],
        "isRecurring": bool(t.get("is_recurring")),
        "frequency": t.get("frequency"),
        "nextDueDate": t.get("next_due_date"),
    }
    if "user_name" in t:
        out["userName"] = t.get("user_name")
    return out


def _load_with_owner(tx_id: str) -> Dict[str, Any]:
    row = query_one(
        """
        SELECT t.*, u.family_id, u.birth_date, u.allow_parent_view
        FROM transactions t
        JOIN users u ON t.user_id = u.id
        WHERE t.id = $1
        """,
        (tx_id,),
    )
    if row is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return row


def _owner_of(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["user_id"],
        "family_id": row.get("family_id"),
        "birth_date": row.get("birth_date"),
        "allow_parent_view": row.get("allow_parent_view"),
    }


@router.get("")
def list_transactions(user: Dict[str, Any] = Depends(current_user)) -> List[Dict[str, Any]]:
    base = """
        SELECT t.*, u.name AS user_name, u.family_id, u.birth_date, u.allow_parent_view
        FROM transactions t
        LEFT JOIN users u ON t.user_id = u.id
    """
    if user["role"] == SUPER_ADMIN:
        rows = query_db(base + " ORDER BY t.date DESC")
    elif user["role"] == MANAGER:
        rows = query_db(base + " WHERE u.family_id = $1 ORDER BY t.date DESC", (user["familyId"],))
        rows = [r for r in rows if can_view_user_transactions(user, _owner_of(r))]
    else:
        rows = query_db(base + " WHERE t.user_id = $1 ORDER BY t.date DESC", (user["id"],))
    return [transaction_view(r) for r in rows]


@router.post("", status_code=201)
def create_transaction(payload: TransactionBody, user: Dict[str, Any] = Depends(current_user)):
    data = _validate(payload)
    tx_id = new_id("t")
    nxt = next_due_date(data["date"], data["frequency"]) if data["is_recurring"] else None

    with with_db_cursor() as (conn, cur):
        cur.execute(
            """
            INSERT INTO transactions (id, user_id, description, amount, date, category, type,
                                      is_recurring, frequency, next_due_date, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            """,
            (
                tx_id, user["id"], data["description"], data["amount"], data["date"], data["category"],
                data["type"], data["is_recurring"], data["frequency"], nxt, now_iso(),
            ),
        )
        conn.commit()

    return transaction_view(query_one("SELECT * FROM transactions WHERE id = $1", (tx_id,)))


@router.put("/{tx_id}")
def update_transaction(tx_id: str, payload: TransactionBody, user: Dict[str, Any] = Depends(current_user)):
    existing = _load_with_owner(tx_id)
    if not can_view_user_transactions(user, _owner_of(existing)):
        raise HTTPException(status_code=403, detail="Not authorized to edit this transaction")

    data = _validate(payload)
    if data["is_recurring"]:
        # keep the schedule unless the cadence itself changed
        nxt = existing.get("next_due_date") if data["frequency"] == existing.get("frequency") else None
        nxt = nxt or next_due_date(data["date"], data["frequency"])
    else:
        nxt = None

    with with_db_cursor() as (conn, cur):
        cur.execute(
            """
            UPDATE transactions
            SET description = $1, amount = $2, date = $3, category = $4, type = $5,
                is_recurring = $6, frequency = $7, next_due_date = $8
            WHERE id = $9
            """,
            (
                data["description"], data["amount"], data["date"], data["category"], data["type"],
                data["is_recurring"], data["frequency"], nxt, tx_id,
            ),
        )
        conn.commit()

    return transaction_view(query_one("SELECT * FROM transactions WHERE id = $1", (tx_id,)))


@router.delete("/{tx_id}")
def delete_transaction(tx_id: str, user: Dict[str, Any] = Depends(current_user)):
    existing = _load_with_owner(tx_id)
    if not can_view_user_transactions(user, _owner_of(existing)):
        raise HTTPException(status_code=403, detail="Not authorized to delete this transaction")

    with with_db_cursor() as (conn, cur):
        cur.execute("DELETE FROM transaction_attachments WHERE transaction_id = $1", (tx_id,))
        cur.execute("DELETE FROM transactions WHERE id = $1", (tx_id,))
        conn.commit()
    return {"message": "Transaction deleted"}
