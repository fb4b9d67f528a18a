from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from homeledger.db import LIKE_ESCAPE, escape_like, query_db, with_db_cursor
from homeledger.routes import CamelModel, require_fields
from homeledger.security import SUPER_ADMIN, TRANSLATOR, current_user, require_roles
from homeledger.translations import (
    ACTIVE,
    complete_languages,
    copy_language,
    languages_with_status,
    save_translation,
    validate_language,
)

router = APIRouter(prefix="/translations", tags=["translations"])

translator = require_roles(TRANSLATOR, SUPER_ADMIN)

MAX_HISTORY = 500


class TranslationBody(CamelModel):
    language: Optional[str] = None
    key: Optional[str] = None
    value: Optional[str] = None


class AddLanguageBody(CamelModel):
    language: Optional[str] = None
    base_language: Optional[str] = None


class ImportBody(CamelModel):
    language: Optional[str] = None
    translations: Optional[Dict[str, Any]] = None


@router.get("/languages")
def languages():
    return complete_languages()


@router.get("/languages/all")
def all_languages(user: Dict[str, Any] = Depends(translator)):
    return languages_with_status()


@router.get("/validate/{language}")
def validate(language: str, user: Dict[str, Any] = Depends(translator)):
    return validate_language(language)


@router.get("/language/{language}")
def language_map(language: str, user: Dict[str, Any] = Depends(current_user)):
    rows = query_db(
        "SELECT msg_key, value FROM translations WHERE language = $1 AND status = $2 ORDER BY msg_key",
        (language, ACTIVE),
    )
    return {r["msg_key"]: r["value"] for r in rows}


@router.get("/editor/all")
def editor_all(user: Dict[str, Any] = Depends(translator)):
    rows = query_db(
        """
        SELECT language, msg_key, value, created_by, updated_at
        FROM translations
        WHERE status = $1
        ORDER BY language, msg_key
        """,
        (ACTIVE,),
    )
    return [
        {"language": r["language"], "key": r["msg_key"], "value": r["value"],
         "createdBy": r["created_by"], "updatedAt": r["updated_at"]}
        for r in rows
    ]


def _save(payload: TranslationBody, user: Dict[str, Any], record_history: bool):
    require_fields(payload, "language", "key", "value")
    with with_db_cursor() as (conn, cur):
        try:
            translation_id, old_value = save_translation(
                cur, payload.language, payload.key, payload.value, user["id"], record_history
            )
            conn.commit()
        except Exception as e:
            conn.rollback()
            raise HTTPException(status_code=400, detail=str(e))
    return translation_id, old_value


@router.post("", status_code=201)
def save(payload: TranslationBody, user: Dict[str, Any] = Depends(translator)):
    translation_id, _ = _save(payload, user, record_history=False)
    return {"id": translation_id, "language": payload.language, "key": payload.key, "value": payload.value}


@router.post("/save-with-history", status_code=201)
def save_with_history(payload: TranslationBody, user: Dict[str, Any] = Depends(translator)):
    translation_id, old_value = _save(payload, user, record_history=True)
    return {
        "id": translation_id,
        "language": payload.language,
        "key": payload.key,
        "value": payload.value,
        "historyRecorded": old_value != payload.value,
    }


@router.post("/language/add")
def add_language(payload: AddLanguageBody, user: Dict[str, Any] = Depends(translator)):
    if not payload.language:
        raise HTTPException(status_code=400, detail="Language code is required")

    copied = 0
    if payload.base_language:
        with with_db_cursor() as (conn, cur):
            copied = copy_language(cur, payload.language, payload.base_language, user["id"])
            conn.commit()

    return {
        "message": f"Language {payload.language} added successfully",
        "copied": copied,
        "validation": validate_language(payload.language),
    }


@router.get("/export")
def export(user: Dict[str, Any] = Depends(translator)):
    rows = query_db(
        "SELECT language, msg_key, value FROM translations WHERE status = $1 ORDER BY language, msg_key",
        (ACTIVE,),
    )
    keys = sorted({r["msg_key"] for r in rows})
    out: Dict[str, Dict[str, str]] = {}
    for r in rows:
        out.setdefault(r["language"], {k: "" for k in keys})[r["msg_key"]] = r["value"] or ""
    return out


@router.post("/import")
def import_translations(payload: ImportBody, user: Dict[str, Any] = Depends(translator)):
    if not payload.language or not isinstance(payload.translations, dict):
        raise HTTPException(status_code=400, detail="Language and translations object are required")

    count = 0
    with with_db_cursor() as (conn, cur):
        try:
            for key, value in payload.translations.items():
                if isinstance(value, str) and value.strip():
                    save_translation(cur, payload.language, key, value, user["id"], record_history=True)
                    count += 1
            conn.commit()
        except Exception as e:
            conn.rollback()
            raise HTTPException(status_code=500, detail=str(e))
    return {"message": f"Imported {count} translations for {payload.language}", "count": count}


@router.get("/stats")
def stats(user: Dict[str, Any] = Depends(translator)):
    total_row = query_db("SELECT COUNT(DISTINCT msg_key) AS count FROM translations WHERE status = $1", (ACTIVE,))
    total = int(total_row[0]["count"] or 0) if total_row else 0
    rows = query_db(
        """
        SELECT language, COUNT(*) AS translated
        FROM translations
        WHERE status = $1 AND value IS NOT NULL AND value <> ''
        GROUP BY language
        ORDER BY language
        """,
        (ACTIVE,),
    )
    return [
        {
            "language": r["language"],
            "total": total,
            "translated": int(r["translated"]),
            "percentage": round(int(r["translated"]) / total * 100) if total else 0,
        }
        for r in rows
    ]


@router.get("/history")
def history(
    language: Optional[str] = None,
    key: Optional[str] = None,
    limit: int = 50,
    user: Dict[str, Any] = Depends(translator),
):
    sql = """
        SELECT h.*, u.name AS user_name
        FROM translation_history h
        LEFT JOIN users u ON h.changed_by = u.id
        WHERE 1 = 1
    """
    params: list = []
    if language:
        params.append(language)
        sql += f" AND h.language = ${len(params)}"
    if key:
        params.append(f"%{escape_like(key)}%")
        sql += f" AND h.msg_key LIKE ${len(params)} ESCAPE '{LIKE_ESCAPE}'"
    sql += f" ORDER BY h.changed_at DESC LIMIT {max(1, min(int(limit), MAX_HISTORY))}"

    return [
        {
            "id": r["id"],
            "translationId": r["translation_id"],
            "language": r["language"],
            "key": r["msg_key"],
            "oldValue": r["old_value"],
            "newValue": r["new_value"],
            "changedBy": r["changed_by"],
            "userName": r["user_name"],
            "changeType": r["change_type"],
            "changedAt": r["changed_at"],
        }
        for r in query_db(sql, tuple(params))
    ]
