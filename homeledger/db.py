from __future__ import annotations

import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
from urllib.parse import unquote, urlparse

from mysql.connector import pooling
from psycopg import errors as pg_errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from homeledger.config import Settings
from homeledger.query_converter import (
    MYSQL,
    POSTGRES,
    SQLITE,
    convert_query,
)

logger = logging.getLogger(__name__)

MYSQL_DUP_KEYNAME = 1061
MYSQL_DUP_ENTRY = 1062
LIKE_ESCAPE = "!"


# =============================================================================
# Backends: hand out raw DB-API connections for one unit of work
# =============================================================================

class SQLiteBackend:
    dialect = SQLITE

    def __init__(self, path: str):
        self.path = path

    def open(self) -> None:
        parent = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(parent, exist_ok=True)
        logger.info("using sqlite database at %s", self.path)

    def close(self) -> None:
        pass

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def cursor(self, conn):
        return conn.cursor()


class PostgresBackend:
    dialect = POSTGRES

    def __init__(self, url: str, max_size: int = 10):
        self.pool = ConnectionPool(
            conninfo=url,
            min_size=1,
            max_size=max_size,
            kwargs={"row_factory": dict_row},
            open=False,
        )

    def open(self) -> None:
        self.pool.open()
        logger.info("postgres pool opened (max_size=%s)", self.pool.max_size)

    def close(self) -> None:
        self.pool.close()

    @contextmanager
    def connection(self):
        # the pool commits on a clean exit and rolls back on an exception
        with self.pool.connection() as conn:
            yield conn

    def cursor(self, conn):
        return conn.cursor()


class MySQLBackend:
    dialect = MYSQL

    def __init__(self, url: str, pool_size: int = 10):
        self.config = mysql_config_from_url(url)
        self.pool_size = max(1, min(pool_size, 32))
        self.pool = None

    def open(self) -> None:
        self.pool = pooling.MySQLConnectionPool(
            pool_name="homeledger",
            pool_size=self.pool_size,
            **self.config,
        )
        logger.info("mysql pool opened (pool_size=%s)", self.pool_size)

    def close(self) -> None:
        self.pool = None

    @contextmanager
    def connection(self):
        if self.pool is None:
            raise RuntimeError("MySQL pool is not open")
        conn = self.pool.get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def cursor(self, conn):
        return conn.cursor(dictionary=True)


def mysql_config_from_url(url: str) -> Dict[str, Any]:
    u = urlparse(url)
    cfg: Dict[str, Any] = {
        "host": u.hostname or "localhost",
        "port": u.port or 3306,
        "user": unquote(u.username or ""),
        "password": unquote(u.password or ""),
        "database": (u.path or "/").lstrip("/"),
        "charset": "utf8mb4",
        "autocommit": False,
    }
    return cfg


# =============================================================================
# Cursor that speaks Postgres dialect to every backend
# =============================================================================

class Cursor:
    def __init__(self, raw, dialect: str):
        self._raw = raw
        self.dialect = dialect

    def execute(self, sql: str, params: Sequence[Any] = ()) -> "Cursor":
        converted = convert_query(sql, params, self.dialect)
        try:
            if self.dialect == POSTGRES and not converted.params:
                self._raw.execute(converted.sql)
            else:
                self._raw.execute(converted.sql, converted.params)
        except Exception as e:
            logger.error(
                "query failed: %s\n  original: %s\n  converted: %s\n  params: %r",
                e, " ".join(sql.split()), " ".join(converted.sql.split()), converted.params,
            )
            raise
        return self

    def fetchall(self) -> List[Dict[str, Any]]:
        if self._raw.description is None:
            return []
        return [dict(r) for r in self._raw.fetchall()]

    def fetchone(self) -> Optional[Dict[str, Any]]:
        if self._raw.description is None:
            return None
        row = self._raw.fetchone()
        return dict(row) if row is not None else None

    @property
    def rowcount(self) -> int:
        n = self._raw.rowcount
        return n if n and n > 0 else 0

    @property
    def description(self):
        return self._raw.description

    def close(self) -> None:
        self._raw.close()


class Database:
    def __init__(self, backend):
        self.backend = backend

    @property
    def dialect(self) -> str:
        return self.backend.dialect

    def open(self) -> None:
        self.backend.open()

    def close(self) -> None:
        self.backend.close()

    @contextmanager
    def cursor(self) -> Iterator[Tuple[Any, Cursor]]:
        with self.backend.connection() as conn:
            raw = self.backend.cursor(conn)
            try:
                yield conn, Cursor(raw, self.dialect)
            finally:
                raw.close()

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self.cursor() as (conn, cur):
            cur.execute(sql, params)
            return cur.fetchall()

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        with self.cursor() as (conn, cur):
            cur.execute(sql, params)
            return cur.rowcount


def create_database(settings: Settings) -> Database:
    if not settings.uses_database_url:
        return Database(SQLiteBackend(settings.sqlite_path))

    url = settings.database_url or ""
    scheme = urlparse(url).scheme.lower()
    if scheme in ("postgres", "postgresql"):
        return Database(PostgresBackend(url, max_size=settings.db_pool_size))
    if scheme == "mysql" or scheme.startswith("mysql+"):
        return Database(MySQLBackend(url, pool_size=settings.db_pool_size))
    raise RuntimeError(f"Unsupported DATABASE_URL scheme: {scheme!r}")


# =============================================================================
# Module-level facade used by the routers
# =============================================================================

_db: Optional[Database] = None


def init_db(settings: Settings) -> Database:
    global _db
    _db = create_database(settings)
    return _db


def get_db() -> Database:
    if _db is None:
        raise RuntimeError("database is not initialised; call init_db() first")
    return _db


def open_pool():
    get_db().open()


def close_pool():
    if _db is not None:
        _db.close()


def query_db(sql: str, params=()):
    return get_db().query(sql, params)


def query_one(sql: str, params=()):
    return get_db().query_one(sql, params)


def execute_db(sql: str, params=()) -> int:
    return get_db().execute(sql, params)


@contextmanager
def with_db_cursor():
    with get_db().cursor() as (conn, cur):
        yield conn, cur


# =============================================================================
# Cross-dialect helpers
# =============================================================================

def upsert_record(cur: Cursor, table: str, data: Dict[str, Any], unique_key) -> int:
    keys = [unique_key] if isinstance(unique_key, str) else list(unique_key)
    cols = list(data.keys())
    placeholders = ", ".join(f"${i}" for i in range(1, len(cols) + 1))
    updates = [c for c in cols if c not in keys and c != "id"]

    sql = f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({placeholders}) ON CONFLICT ({', '.join(keys)}) "
    if updates:
        sql += "DO UPDATE SET " + ", ".join(f"{c} = EXCLUDED.{c}" for c in updates)
    else:
        sql += "DO NOTHING"
    cur.execute(sql, list(data.values()))
    return cur.rowcount


def escape_like(text: str, esc: str = LIKE_ESCAPE) -> str:
    """Escape LIKE wildcards; pair with ``LIKE $n ESCAPE '!'`` in the query."""
    return text.replace(esc, esc + esc).replace("%", esc + "%").replace("_", esc + "_")


def is_duplicate_index_error(exc: Exception) -> bool:
    return getattr(exc, "errno", None) == MYSQL_DUP_KEYNAME


def is_unique_violation(exc: Exception) -> bool:
    if isinstance(exc, sqlite3.IntegrityError):
        return "UNIQUE constraint failed" in str(exc)
    if isinstance(exc, pg_errors.UniqueViolation):
        return True
    return getattr(exc, "errno", None) == MYSQL_DUP_ENTRY


def new_id(prefix: str = "") -> str:
    return f"{prefix}{uuid.uuid4().hex[:20]}"


def to_bool(v) -> bool:
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "t", "yes")
    return bool(v)
