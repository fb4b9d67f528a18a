from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from homeledger.budget import create_default_budgets_for_user
from homeledger.dates import now_iso, parse_date
from homeledger.db import is_unique_violation, new_id, query_db, query_one, with_db_cursor
from homeledger.market import PROVIDERS
from homeledger.routes import CamelModel, require_fields
from homeledger.routes.families import purge_user_data
from homeledger.security import (
    APPROVED,
    MANAGER,
    MEMBER,
    ROLES,
    STATUSES,
    SUPER_ADMIN,
    USER_COLUMNS,
    current_user,
    hash_password,
    user_view,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

DEFAULT_AVATAR = "/default-avatar.svg"
MANAGING_ROLES = (SUPER_ADMIN, MANAGER)


class UserBody(CamelModel):
    username: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    status: Optional[str] = None
    avatar: Optional[str] = None
    birth_date: Optional[str] = None
    allow_parent_view: Optional[bool] = None
    family_id: Optional[str] = None
    language_preference: Optional[str] = None
    currency_provider_preference: Optional[str] = None


def _load_user(user_id: str) -> Dict[str, Any]:
    row = query_one(f"SELECT {USER_COLUMNS} FROM users WHERE id = $1", (user_id,))
    if row is None:
        raise HTTPException(status_code=404, detail="User not found")
    return row


def _check_role(current: Dict[str, Any], role: Optional[str]) -> None:
    if role is None:
        return
    if role not in ROLES:
        raise HTTPException(status_code=400, detail=f"role must be one of {', '.join(ROLES)}")
    if role == SUPER_ADMIN and current["role"] != SUPER_ADMIN:
        raise HTTPException(status_code=403, detail="Only a super admin can grant SUPER_ADMIN")


def _same_family_or_admin(current: Dict[str, Any], target: Dict[str, Any]) -> bool:
    return current["role"] == SUPER_ADMIN or (
        current["role"] == MANAGER and target.get("family_id") == current.get("familyId")
    )


@router.get("")
def list_users(user: Dict[str, Any] = Depends(current_user)):
    if user["role"] == SUPER_ADMIN:
        rows = query_db(f"SELECT {USER_COLUMNS} FROM users ORDER BY name")
    elif user["role"] == MANAGER:
        rows = query_db(f"SELECT {USER_COLUMNS} FROM users WHERE family_id = $1 ORDER BY name", (user["familyId"],))
    else:
        rows = query_db(f"SELECT {USER_COLUMNS} FROM users WHERE id = $1", (user["id"],))
    return [user_view(r) for r in rows]


@router.post("", status_code=201)
def create_user(payload: UserBody, user: Dict[str, Any] = Depends(current_user)):
    if user["role"] not in MANAGING_ROLES:
        raise HTTPException(status_code=403, detail="Not authorized to create users")
    require_fields(payload, "username", "password", "name")
    _check_role(user, payload.role)
    if payload.birth_date and parse_date(payload.birth_date) is None:
        raise HTTPException(status_code=400, detail=f"Bad ISO date: {payload.birth_date!r}")

    username = payload.username.strip()
    if query_one("SELECT id FROM users WHERE username = $1", (username,)):
        raise HTTPException(status_code=409, detail="Username already exists")

    family_id = user["familyId"]
    if user["role"] == SUPER_ADMIN and payload.family_id:
        if query_one("SELECT id FROM families WHERE id = $1", (payload.family_id,)) is None:
            raise HTTPException(status_code=400, detail="Family not found")
        family_id = payload.family_id

    user_id = new_id("u")
    with with_db_cursor() as (conn, cur):
        try:
            cur.execute(
                """
                INSERT INTO users (id, username, password, name, email, role, avatar, status, created_by,
                                   family_id, birth_date, allow_parent_view, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
                """,
                (
                    user_id,
                    username,
                    hash_password(payload.password),
                    payload.name.strip(),
                    payload.email or None,
                    payload.role or MEMBER,
                    payload.avatar or DEFAULT_AVATAR,
                    APPROVED,
                    user["id"],
                    family_id,
                    payload.birth_date or None,
                    1 if payload.allow_parent_view else 0,
                    now_iso(),
                ),
            )
            create_default_budgets_for_user(user_id, cur)
            conn.commit()
        except Exception as e:
            conn.rollback()
            if is_unique_violation(e):
                raise HTTPException(status_code=409, detail="Username already exists")
            raise HTTPException(status_code=500, detail=str(e))

    logger.info("user %s created by %s in family %s", user_id, user["id"], family_id)
    return user_view(_load_user(user_id))


@router.put("/{user_id}")
def update_user(user_id: str, payload: UserBody, user: Dict[str, Any] = Depends(current_user)):
    target = _load_user(user_id)
    is_self = user_id == user["id"]
    manages = _same_family_or_admin(user, target)
    if not (is_self or manages):
        raise HTTPException(status_code=403, detail="Not authorized")

    sets = ["name = $1"]
    params: list = [(payload.name or target["name"]).strip()]

    def add(column: str, value: Any) -> None:
        params.append(value)
        sets.append(f"{column} = ${len(params)}")

    if manages:
        if payload.role:
            _check_role(user, payload.role)
            add("role", payload.role)
        if payload.status:
            if payload.status not in STATUSES:
                raise HTTPException(status_code=400, detail=f"status must be one of {', '.join(STATUSES)}")
            add("status", payload.status)

    fields = payload.model_fields_set
    if "birth_date" in fields:
        if payload.birth_date and parse_date(payload.birth_date) is None:
            raise HTTPException(status_code=400, detail=f"Bad ISO date: {payload.birth_date!r}")
        add("birth_date", payload.birth_date or None)
    if "allow_parent_view" in fields:
        add("allow_parent_view", 1 if payload.allow_parent_view else 0)
    if "email" in fields:
        add("email", payload.email or None)
    if payload.avatar:
        add("avatar", payload.avatar)
    if payload.language_preference:
        add("language_preference", payload.language_preference)
    if payload.currency_provider_preference:
        if payload.currency_provider_preference not in PROVIDERS:
            raise HTTPException(status_code=400, detail=f"Invalid provider: {payload.currency_provider_preference}")
        add("currency_provider_preference", payload.currency_provider_preference)
    if payload.password:
        add("password", hash_password(payload.password))

    params.append(user_id)
    with with_db_cursor() as (conn, cur):
        cur.execute(f"UPDATE users SET {', '.join(sets)} WHERE id = ${len(params)}", tuple(params))
        conn.commit()
    return user_view(_load_user(user_id))


@router.delete("/{user_id}")
def delete_user(user_id: str, user: Dict[str, Any] = Depends(current_user)):
    if user["role"] not in MANAGING_ROLES:
        raise HTTPException(status_code=403, detail="Not authorized")
    if user_id == user["id"]:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")

    target = _load_user(user_id)
    if not _same_family_or_admin(user, target):
        raise HTTPException(status_code=403, detail="Not authorized")

    with with_db_cursor() as (conn, cur):
        try:
            purge_user_data(cur, [user_id])
            cur.execute("DELETE FROM users WHERE id = $1", (user_id,))
            conn.commit()
        except Exception as e:
            conn.rollback()
            raise HTTPException(status_code=500, detail=str(e))

    logger.info("user %s deleted by %s", user_id, user["id"])
    return {"message": "User deleted"}
