from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from homeledger.dates import now_iso
from homeledger.db import new_id, query_db, query_one, upsert_record, with_db_cursor
from homeledger.market import PROVIDERS, get_exchange_rates
from homeledger.routes import CamelModel, require_fields
from homeledger.security import SUPER_ADMIN, current_user, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settings", tags=["settings"])

super_admin = require_roles(SUPER_ADMIN)

DEFAULT_AI_PROVIDER = "google_gemini"
DEFAULT_CURRENCY_PROVIDER = "BNA"
MASKED_KEY = "••••••••••••••••"


class SettingBody(CamelModel):
    key: Optional[str] = None
    value: Optional[str] = None


class NotificationConfigBody(CamelModel):
    sendgrid_key: Optional[str] = None
    sendgrid_email: Optional[str] = None


class ApiConfigBody(CamelModel):
    id: Optional[str] = None
    provider: Optional[str] = None
    api_key: Optional[str] = None
    model: Optional[str] = None


class ProviderBody(CamelModel):
    provider: Optional[str] = None


# =============================================================================
# App settings
# =============================================================================

@router.get("")
def list_settings(user: Dict[str, Any] = Depends(current_user)):
    return [{"key": r["name"], "value": r["value"]} for r in query_db("SELECT * FROM app_settings ORDER BY name")]


@router.post("")
def save_setting(payload: SettingBody, user: Dict[str, Any] = Depends(super_admin)):
    require_fields(payload, "key")
    with with_db_cursor() as (conn, cur):
        upsert_record(cur, "app_settings", {"name": payload.key, "value": payload.value}, "name")
        conn.commit()
    return {"success": True}


@router.get("/notification-config")
def notification_config(request: Request, user: Dict[str, Any] = Depends(super_admin)):
    settings = request.app.state.settings
    return {
        "sendgridKeyExists": bool(settings.sendgrid_api_key),
        "sendgridFromEmail": settings.sendgrid_from_email or "",
    }


@router.post("/notification-config")
def save_notification_config(payload: NotificationConfigBody, request: Request, user: Dict[str, Any] = Depends(super_admin)):
    settings = request.app.state.settings
    if payload.sendgrid_key and payload.sendgrid_key != MASKED_KEY:
        settings.sendgrid_api_key = payload.sendgrid_key
    if payload.sendgrid_email:
        settings.sendgrid_from_email = payload.sendgrid_email
    return {"message": "Configuration saved"}


# =============================================================================
# AI provider configurations
# =============================================================================

@router.get("/api-configs")
def list_api_configs(user: Dict[str, Any] = Depends(super_admin)):
    rows = query_db("SELECT id, provider, model, is_default, created_at FROM api_configurations ORDER BY provider")
    return [
        {"id": r["id"], "provider": r["provider"], "model": r["model"], "isDefault": bool(r["is_default"]), "created_at": r["created_at"]}
        for r in rows
    ]


@router.post("/api-configs")
def save_api_config(payload: ApiConfigBody, user: Dict[str, Any] = Depends(super_admin)):
    if not payload.api_key or not (payload.id or payload.provider):
        raise HTTPException(status_code=400, detail="provider and apiKey are required")

    ts = now_iso()
    with with_db_cursor() as (conn, cur):
        if payload.id:
            cur.execute(
                "UPDATE api_configurations SET api_key = $1, model = $2, updated_at = $3 WHERE id = $4",
                (payload.api_key, payload.model or None, ts, payload.id),
            )
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="Configuration not found")
        else:
            cur.execute("SELECT id FROM api_configurations WHERE provider = $1", (payload.provider,))
            if cur.fetchone():
                cur.execute(
                    "UPDATE api_configurations SET api_key = $1, model = $2, updated_at = $3 WHERE provider = $4",
                    (payload.api_key, payload.model or None, ts, payload.provider),
                )
            else:
                cur.execute(
                    """
                    INSERT INTO api_configurations (id, provider, api_key, model, is_default, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, 0, $5, $5)
                    """,
                    (new_id("cfg_"), payload.provider, payload.api_key, payload.model or None, ts),
                )
        conn.commit()
    logger.info("api configuration saved for %s", payload.provider or payload.id)
    return {"success": True, "message": "API configuration saved"}


@router.get("/api-config/{provider}")
def get_api_config(provider: str, user: Dict[str, Any] = Depends(current_user)):
    row = query_one("SELECT api_key, model FROM api_configurations WHERE provider = $1", (provider,))
    if row is None:
        return {"hasKey": False, "model": None}
    return {"hasKey": bool(row["api_key"]), "model": row["model"]}


@router.delete("/api-configs/{config_id}")
def delete_api_config(config_id: str, user: Dict[str, Any] = Depends(super_admin)):
    with with_db_cursor() as (conn, cur):
        cur.execute("DELETE FROM api_configurations WHERE id = $1", (config_id,))
        conn.commit()
    return {"success": True}


@router.delete("/api-config/{provider}")
def delete_api_config_by_provider(provider: str, user: Dict[str, Any] = Depends(super_admin)):
    with with_db_cursor() as (conn, cur):
        cur.execute("DELETE FROM api_configurations WHERE provider = $1", (provider,))
        conn.commit()
    return {"success": True}


@router.get("/default-ai-provider")
def default_ai_provider(user: Dict[str, Any] = Depends(current_user)):
    row = query_one("SELECT provider FROM api_configurations WHERE is_default = 1")
    return {"provider": row["provider"] if row else DEFAULT_AI_PROVIDER}


@router.post("/default-ai-provider")
def set_default_ai_provider(payload: ProviderBody, user: Dict[str, Any] = Depends(super_admin)):
    require_fields(payload, "provider")
    if query_one("SELECT id FROM api_configurations WHERE provider = $1", (payload.provider,)) is None:
        raise HTTPException(status_code=404, detail="Provider is not configured")

    with with_db_cursor() as (conn, cur):
        cur.execute("UPDATE api_configurations SET is_default = 0")
        cur.execute("UPDATE api_configurations SET is_default = 1 WHERE provider = $1", (payload.provider,))
        conn.commit()
    return {"success": True}


# =============================================================================
# Currency provider + rates
# =============================================================================

@router.get("/default-currency-provider")
def default_currency_provider(user: Dict[str, Any] = Depends(current_user)):
    return {"provider": user.get("currencyProviderPreference") or DEFAULT_CURRENCY_PROVIDER}


@router.post("/default-currency-provider")
def set_default_currency_provider(payload: ProviderBody, user: Dict[str, Any] = Depends(current_user)):
    if payload.provider not in PROVIDERS:
        raise HTTPException(status_code=400, detail="Invalid provider")
    with with_db_cursor() as (conn, cur):
        cur.execute("UPDATE users SET currency_provider_preference = $1 WHERE id = $2", (payload.provider, user["id"]))
        conn.commit()
    return {"success": True, "provider": payload.provider}


@router.get("/rates/{provider}")
def rates(provider: str):
    return get_exchange_rates(provider)
