from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Dict, Optional

import bcrypt
from fastapi import HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from homeledger.dates import parse_date
from homeledger.db import query_one

logger = logging.getLogger(__name__)

# =============================================================================
# Roles / statuses
# =============================================================================

SUPER_ADMIN = "SUPER_ADMIN"
ADMIN = "ADMIN"
MANAGER = "MANAGER"
TRANSLATOR = "TRANSLATOR"
MEMBER = "MEMBER"
ROLES = (SUPER_ADMIN, ADMIN, MANAGER, TRANSLATOR, MEMBER)

PENDING = "PENDING"
APPROVED = "APPROVED"
REJECTED = "REJECTED"
STATUSES = (PENDING, APPROVED, REJECTED)

ADULT_AGE = 18

USER_COLUMNS = (
    "id, username, name, email, role, avatar, status, created_by, family_id, birth_date, "
    "allow_parent_view, language_preference, currency_provider_preference"
)


# =============================================================================
# Passwords
# =============================================================================

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # stored value is not a bcrypt hash
        return False


def normalize_answer(answer: Optional[str]) -> Optional[str]:
    if answer is None:
        return None
    return answer.strip().lower()


# =============================================================================
# Users as the API sees them
# =============================================================================

def user_view(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "username": row["username"],
        "name": row["name"],
        "email": row.get("email"),
        "role": row["role"],
        "avatar": row.get("avatar"),
        "status": row["status"],
        "createdBy": row.get("created_by"),
        "familyId": row.get("family_id"),
        "birthDate": row.get("birth_date"),
        "allowParentView": bool(row.get("allow_parent_view")),
        "languagePreference": row.get("language_preference") or "pt",
        "currencyProviderPreference": row.get("currency_provider_preference") or "BNA",
    }


def is_minor(birth_date: Optional[str], today: Optional[date] = None) -> bool:
    born = parse_date(birth_date)
    if born is None:
        return False
    today = today or date.today()
    age = today.year - born.year - ((today.month, today.day) < (born.month, born.day))
    return age < ADULT_AGE


def can_view_user_transactions(viewer: Dict[str, Any], target: Optional[Dict[str, Any]], today: Optional[date] = None) -> bool:
    """
    viewer is a user_view dict, target a raw users row (or None when missing).

    Everyone sees their own rows and SUPER_ADMIN sees everything. A MANAGER
    sees a family member's rows only when that member is a minor or opted in
    with allow_parent_view.
    """
    if target is None:
        return False
    if viewer["id"] == target["id"]:
        return True
    if viewer["role"] == SUPER_ADMIN:
        return True
    if viewer["role"] == MANAGER and viewer.get("familyId") and viewer["familyId"] == target.get("family_id"):
        return is_minor(target.get("birth_date"), today) or bool(target.get("allow_parent_view"))
    return False


# =============================================================================
# Session helpers + FastAPI dependencies
# =============================================================================

SESSION_COOKIE = "homeledger_session"
SESSION_MAX_AGE = 24 * 60 * 60


def login_session(request: Request, user: Dict[str, Any]) -> None:
    request.session["user_id"] = user["id"]
    request.session["user"] = user


def clear_session(request: Request) -> None:
    request.session.clear()


def session_user_id(request: Request) -> Optional[str]:
    if "session" not in request.scope:
        return None
    return request.session.get("user_id")


def current_user(request: Request) -> Dict[str, Any]:
    # re-read so role / family / status changes apply without a new login
    user_id = session_user_id(request)
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    row = query_one(f"SELECT {USER_COLUMNS} FROM users WHERE id = $1", (user_id,))
    if row is None or row["status"] != APPROVED:
        clear_session(request)
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user_view(row)


def require_roles(*roles: str) -> Callable[[Request], Dict[str, Any]]:
    def _dep(request: Request) -> Dict[str, Any]:
        user = current_user(request)
        if user["role"] not in roles:
            raise HTTPException(status_code=403, detail="Access denied")
        return user

    return _dep


# =============================================================================
# Login gate for /api
# =============================================================================

PUBLIC_EXACT = {
    "/api/health",
    "/api/auth/login",
    "/api/auth/register",
    "/api/auth/logout",
    "/api/auth/recover-password",
    "/api/translations/languages",
}

PUBLIC_PREFIXES = ("/api/market/", "/api/settings/rates/")

PUBLIC_GET = {"/api/reports/logo"}


class RequireLoginMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if not path.startswith("/api/"):
            return await call_next(request)

        if path in PUBLIC_EXACT:
            return await call_next(request)

        if any(path.startswith(p) for p in PUBLIC_PREFIXES):
            return await call_next(request)

        if request.method == "GET" and path in PUBLIC_GET:
            return await call_next(request)

        if session_user_id(request):
            return await call_next(request)

        return JSONResponse({"ok": False, "error": "Not authenticated"}, status_code=401)
