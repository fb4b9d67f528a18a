from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from homeledger.dates import now_iso
from homeledger.db import new_id, query_one, upsert_record, with_db_cursor
from homeledger.reports import TEMPLATE_FILENAME, ReportFileError, decode_file, parse_transactions, template_csv
from homeledger.routes import CamelModel
from homeledger.security import SUPER_ADMIN, current_user, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])

LOGO_SETTING = "app_logo"


class FileBody(CamelModel):
    file_data: Optional[str] = None


class LogoBody(CamelModel):
    logo: Optional[str] = None


def _parse(payload: FileBody):
    try:
        return parse_transactions(decode_file(payload.file_data))
    except ReportFileError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/template")
def template(user: Dict[str, Any] = Depends(current_user)):
    return Response(
        content=template_csv(),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{TEMPLATE_FILENAME}"'},
    )


@router.post("/preview")
def preview(payload: FileBody, user: Dict[str, Any] = Depends(current_user)):
    transactions, errors = _parse(payload)
    return {"transactions": transactions, "errors": errors}


@router.post("/import")
def import_file(payload: FileBody, user: Dict[str, Any] = Depends(current_user)):
    transactions, errors = _parse(payload)
    ts = now_iso()

    with with_db_cursor() as (conn, cur):
        try:
            for t in transactions:
                cur.execute(
                    """
                    INSERT INTO transactions (id, user_id, description, amount, date, category, type,
                                              is_recurring, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, 0, $8)
                    """,
                    (new_id("t"), user["id"], t["description"], t["amount"], t["date"], t["category"], t["type"], ts),
                )
            conn.commit()
        except Exception as e:
            conn.rollback()
            raise HTTPException(status_code=500, detail=str(e))

    logger.info("imported %s transactions for %s (%s rejected)", len(transactions), user["id"], len(errors))
    return {
        "success": True,
        "imported": len(transactions),
        "errors": errors,
        "message": f"Importadas {len(transactions)} transações com sucesso!",
    }


@router.get("/logo")
def get_logo():
    row = query_one("SELECT value FROM app_settings WHERE name = $1", (LOGO_SETTING,))
    return {"logo": row["value"] if row and row["value"] else None}


@router.post("/logo")
def save_logo(payload: LogoBody, user: Dict[str, Any] = Depends(require_roles(SUPER_ADMIN))):
    if not payload.logo:
        raise HTTPException(status_code=400, detail="No logo provided")
    with with_db_cursor() as (conn, cur):
        upsert_record(cur, "app_settings", {"name": LOGO_SETTING, "value": payload.logo}, "name")
        conn.commit()
    return {"success": True, "message": "Logo salvo com sucesso!"}
