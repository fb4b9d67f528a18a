from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from homeledger.dates import now_iso
from homeledger.db import new_id, query_db
from homeledger.schema import BASE_LANGUAGE

logger = logging.getLogger(__name__)

ACTIVE = "active"


def language_keys(language: str) -> Set[str]:
    rows = query_db(
        "SELECT DISTINCT msg_key FROM translations WHERE language = $1 AND status = $2",
        (language, ACTIVE),
    )
    return {r["msg_key"] for r in rows}


def active_languages() -> List[str]:
    rows = query_db("SELECT DISTINCT language FROM translations WHERE status = $1 ORDER BY language", (ACTIVE,))
    return [r["language"] for r in rows]


def validate_language(language: str, base_keys: Optional[Set[str]] = None) -> Dict[str, Any]:
    """Compare a language's keys against the base language."""
    base = base_keys if base_keys is not None else language_keys(BASE_LANGUAGE)
    have = language_keys(language)
    missing = sorted(base - have)
    return {
        "isValid": not missing,
        "totalRequired": len(base),
        "totalHas": len(have),
        "missingKeys": missing,
        "extraKeys": sorted(have - base),
        "completionPercentage": round(len(have & base) / len(base) * 100) if base else 0,
    }


def complete_languages() -> List[str]:
    base = language_keys(BASE_LANGUAGE)
    return [lang for lang in active_languages() if validate_language(lang, base)["isValid"]]


def languages_with_status() -> Dict[str, Dict[str, Any]]:
    base = language_keys(BASE_LANGUAGE)
    out = {}
    for lang in active_languages():
        v = validate_language(lang, base)
        out[lang] = {
            "isComplete": v["isValid"],
            "completionPercentage": v["completionPercentage"],
            "totalKeys": v["totalHas"],
            "totalRequired": v["totalRequired"],
            "missingCount": len(v["missingKeys"]),
        }
    return out


def save_translation(cur, language: str, key: str, value: str, user_id: str, record_history: bool = False) -> Tuple[str, Optional[str]]:
    """
    Insert or overwrite one translation. Returns (translation_id, old_value).

    With record_history a translation_history row is written whenever the
    value actually changes.
    """
    cur.execute(
        "SELECT id, value FROM translations WHERE language = $1 AND msg_key = $2",
        (language, key),
    )
    existing = cur.fetchone()
    old_value = existing["value"] if existing else None
    translation_id = existing["id"] if existing else new_id("tr")
    ts = now_iso()

    if existing:
        cur.execute(
            "UPDATE translations SET value = $1, created_by = $2, updated_at = $3, status = $4 WHERE id = $5",
            (value, user_id, ts, ACTIVE, translation_id),
        )
    else:
        cur.execute(
            """
            INSERT INTO translations (id, language, msg_key, value, created_by, updated_at, status)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            """,
            (translation_id, language, key, value, user_id, ts, ACTIVE),
        )

    if record_history and old_value != value:
        cur.execute(
            """
            INSERT INTO translation_history (id, translation_id, language, msg_key, old_value, new_value,
                                             changed_by, change_type, changed_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            """,
            (
                new_id("th"), translation_id, language, key, old_value, value, user_id,
                "update" if old_value is not None else "create", ts,
            ),
        )
    return translation_id, old_value


def copy_language(cur, language: str, base_language: str, user_id: str) -> int:
    cur.execute(
        "SELECT msg_key, value FROM translations WHERE language = $1 AND status = $2",
        (base_language, ACTIVE),
    )
    rows = cur.fetchall()
    ts = now_iso()
    copied = 0
    for r in rows:
        cur.execute(
            """
            INSERT INTO translations (id, language, msg_key, value, created_by, updated_at, status)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (language, msg_key) DO NOTHING
            """,
            (new_id("tr"), language, r["msg_key"], r["value"], user_id, ts, ACTIVE),
        )
        copied += cur.rowcount
    logger.info("copied %s keys from %s into %s", copied, base_language, language)
    return copied
