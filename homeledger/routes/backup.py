from __future__ import annotations

import hashlib
import json
import logging
import re
import threading
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from homeledger.dates import now_iso
from homeledger.db import with_db_cursor
from homeledger.routes import CamelModel
from homeledger.schema import TABLE_ORDER
from homeledger.security import ADMIN, SUPER_ADMIN, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/backup", tags=["backup"])

admin_only = require_roles(ADMIN, SUPER_ADMIN)

BACKUP_VERSION = "1.0"
COLUMN_RE = re.compile(r"^[a-z_][a-z0-9_]*$")


class BackupProgress:
    def __init__(self):
        self._lock = threading.Lock()
        self._state = {"current": 0, "total": 100, "status": "idle"}

    def set(self, current: int, status: str) -> None:
        with self._lock:
            self._state = {"current": current, "total": 100, "status": status}

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._state)


progress = BackupProgress()


class RestoreBody(CamelModel):
    backup_data: Optional[Dict[str, Any]] = None


def db_hash(tables: Dict[str, Any]) -> str:
    canonical = json.dumps(tables, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()


def dump_tables(cur) -> Dict[str, list]:
    tables = {}
    for name in TABLE_ORDER:
        cur.execute(f"SELECT * FROM {name}")
        tables[name] = cur.fetchall()
    return tables


@router.get("/progress")
def get_progress(user: Dict[str, Any] = Depends(admin_only)):
    return progress.snapshot()


@router.post("")
def create_backup(user: Dict[str, Any] = Depends(admin_only)):
    progress.set(10, "Inicializando...")
    try:
        with with_db_cursor() as (conn, cur):
            progress.set(30, "Lendo banco de dados...")
            tables = dump_tables(cur)
    except Exception as e:
        progress.set(0, f"Erro: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    progress.set(85, "Preparando arquivo...")
    data = {"timestamp": now_iso(), "version": BACKUP_VERSION, "tables": tables, "dbHash": db_hash(tables)}
    progress.set(100, "Completo!")

    rows = sum(len(v) for v in tables.values())
    logger.info("backup created by %s: %s tables, %s rows", user["id"], len(tables), rows)
    return {
        "success": True,
        "data": data,
        "size": len(json.dumps(data, default=str)),
        "timestamp": data["timestamp"],
    }


def _validate_backup(data: Optional[Dict[str, Any]]) -> Dict[str, list]:
    if not data or not isinstance(data.get("tables"), dict):
        raise HTTPException(status_code=400, detail="Invalid backup data")
    tables = data["tables"]
    unknown = sorted(set(tables) - set(TABLE_ORDER))
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown tables in backup: {', '.join(unknown)}")
    for name, rows in tables.items():
        if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
            raise HTTPException(status_code=400, detail=f"Rows for {name} must be a list of objects")
        for r in rows:
            bad = [c for c in r if not COLUMN_RE.match(c)]
            if bad:
                raise HTTPException(status_code=400, detail=f"Bad column names in {name}: {', '.join(bad)}")
    if data.get("dbHash") and data["dbHash"] != db_hash(tables):
        raise HTTPException(status_code=400, detail="Backup hash does not match its contents")
    return tables


@router.post("/restore")
def restore_backup(payload: RestoreBody, user: Dict[str, Any] = Depends(admin_only)):
    tables = _validate_backup(payload.backup_data)
    progress.set(10, "Iniciando restauro...")

    with with_db_cursor() as (conn, cur):
        try:
            progress.set(20, "Limpando banco de dados...")
            # children first so foreign keys never dangle
            for name in reversed(TABLE_ORDER):
                cur.execute(f"DELETE FROM {name}")

            progress.set(40, "Inserindo dados...")
            restored = 0
            for i, name in enumerate(TABLE_ORDER, start=1):
                for row in tables.get(name) or []:
                    cols = list(row.keys())
                    marks = ", ".join(f"${n}" for n in range(1, len(cols) + 1))
                    cur.execute(f"INSERT INTO {name} ({', '.join(cols)}) VALUES ({marks})", [row[c] for c in cols])
                    restored += 1
                progress.set(40 + (i * 50) // len(TABLE_ORDER), f"Restaurando {name}...")
            conn.commit()
        except Exception as e:
            conn.rollback()
            progress.set(0, f"Erro: {e}")
            logger.error("restore failed, rolled back: %s", e)
            raise HTTPException(status_code=500, detail=str(e))

    progress.set(100, "Restauro completo!")
    logger.info("backup restored by %s: %s rows", user["id"], restored)
    return {"success": True, "message": "Backup restaurado com sucesso", "restored": restored, "timestamp": now_iso()}
