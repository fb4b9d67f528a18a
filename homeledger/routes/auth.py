from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request

from homeledger.budget import auto_save_monthly_history, create_default_budgets_for_user
from homeledger.dates import now_iso
from homeledger.db import is_unique_violation, new_id, query_one, with_db_cursor
from homeledger.routes import CamelModel, require_fields
from homeledger.security import (
    APPROVED,
    MANAGER,
    USER_COLUMNS,
    clear_session,
    current_user,
    hash_password,
    login_session,
    normalize_answer,
    user_view,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

DEFAULT_AVATAR = "/default-avatar.svg"


class LoginBody(CamelModel):
    username: Optional[str] = None
    password: Optional[str] = None


class RegisterBody(CamelModel):
    username: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    family_name: Optional[str] = None
    security_question: Optional[str] = None
    security_answer: Optional[str] = None


class RecoverBody(CamelModel):
    username: Optional[str] = None
    security_answer: Optional[str] = None
    new_password: Optional[str] = None


@router.post("/login")
def login(payload: LoginBody, request: Request):
    if not payload.username or not payload.password:
        raise HTTPException(status_code=400, detail="Username and password are required")

    row = query_one(f"SELECT {USER_COLUMNS}, password FROM users WHERE username = $1", (payload.username,))
    if row is None or not verify_password(payload.password, row["password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if row["status"] != APPROVED:
        raise HTTPException(status_code=403, detail="Account not approved")

    user = user_view(row)
    login_session(request, user)

    try:
        auto_save_monthly_history(user["id"])
    except Exception as e:
        # the scheduler retries on its next pass
        logger.error("budget history auto-save failed at login for %s: %s", user["id"], e)

    return {"user": user}


@router.post("/register", status_code=201)
def register(payload: RegisterBody, request: Request):
    require_fields(payload, "username", "password", "name", "family_name")
    username = payload.username.strip()

    if query_one("SELECT id FROM users WHERE username = $1", (username,)):
        raise HTTPException(status_code=409, detail="Username already exists")

    user_id = new_id("u")
    family_id = new_id("fam_")
    ts = now_iso()

    with with_db_cursor() as (conn, cur):
        try:
            cur.execute(
                "INSERT INTO families (id, name, created_at) VALUES ($1, $2, $3)",
                (family_id, payload.family_name.strip(), ts),
            )
            cur.execute(
                """
                INSERT INTO users (id, username, password, name, email, role, avatar, status, family_id,
                                   security_question, security_answer, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                """,
                (
                    user_id,
                    username,
                    hash_password(payload.password),
                    payload.name.strip(),
                    payload.email or None,
                    MANAGER,
                    DEFAULT_AVATAR,
                    APPROVED,
                    family_id,
                    payload.security_question or None,
                    normalize_answer(payload.security_answer),
                    ts,
                ),
            )
            create_default_budgets_for_user(user_id, cur)
            conn.commit()
        except Exception as e:
            conn.rollback()
            if is_unique_violation(e):
                raise HTTPException(status_code=409, detail="Username already exists")
            raise HTTPException(status_code=500, detail=str(e))

    user = user_view(query_one(f"SELECT {USER_COLUMNS} FROM users WHERE id = $1", (user_id,)))
    login_session(request, user)
    logger.info("registered user %s with family %s", user_id, family_id)
    return {"user": user}


@router.post("/logout")
def logout(request: Request):
    clear_session(request)
    return {"message": "Logged out successfully"}


@router.get("/me")
def me(request: Request):
    return {"user": current_user(request)}


@router.post("/recover-password")
def recover_password(payload: RecoverBody):
    require_fields(payload, "username", "security_answer", "new_password")

    row = query_one("SELECT id, security_answer FROM users WHERE username = $1", (payload.username,))
    if row is None:
        raise HTTPException(status_code=404, detail="User not found")
    if not row["security_answer"] or row["security_answer"] != normalize_answer(payload.security_answer):
        raise HTTPException(status_code=401, detail="Security answer is incorrect")

    with with_db_cursor() as (conn, cur):
        cur.execute("UPDATE users SET password = $1 WHERE id = $2", (hash_password(payload.new_password), row["id"]))
        conn.commit()
    return {"message": "Password updated successfully"}
