"""
Rewrites Postgres-flavoured SQL for the engine actually behind the pool.

Every query in the app is written once, in Postgres dialect with ``$1``-style
placeholders. ``convert_query`` applies a fixed list of regex substitutions
for SQLite (development) and MySQL, and only renumbers placeholders for
Postgres. There is no parser here: anything the patterns don't know about
passes through untouched, ``UNNEST`` included, and ``DISTINCT ON`` is
downgraded to a plain ``DISTINCT``.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence

logger = logging.getLogger(__name__)

SQLITE = "sqlite"
POSTGRES = "postgres"
MYSQL = "mysql"
DIALECTS = (SQLITE, POSTGRES, MYSQL)


class QueryConversionError(ValueError):
    pass


class ConvertedQuery(NamedTuple):
    sql: str
    params: List[Any]


# one level of nested parentheses, e.g. COALESCE(a, b) inside EXTRACT(...)
_EXPR = r"[^()]*?(?:\([^()]*\)[^()]*?)*"

_PLACEHOLDER_RE = re.compile(r"\$(\d+)")
_SCHEMA_RE = re.compile(r"^\s*(CREATE|ALTER|DROP|PRAGMA|USE)\b", re.IGNORECASE)
_CREATE_INDEX_IF_RE = re.compile(
    r"CREATE\s+(UNIQUE\s+)?INDEX\s+IF\s+NOT\s+EXISTS\s+", re.IGNORECASE
)

_CONFLICT_TARGET = r"(?:\([^)]*\)|ON\s+CONSTRAINT\s+\w+)?"
_ON_CONFLICT_NOTHING_RE = re.compile(
    r"\s*ON\s+CONFLICT\s*" + _CONFLICT_TARGET + r"\s*DO\s+NOTHING", re.IGNORECASE
)
_ON_CONFLICT_UPDATE_RE = re.compile(
    r"ON\s+CONFLICT\s*" + _CONFLICT_TARGET + r"\s*DO\s+UPDATE\s+SET", re.IGNORECASE
)
_INSERT_INTO_RE = re.compile(r"^(\s*)INSERT\s+INTO\b", re.IGNORECASE)
_EXCLUDED_RE = re.compile(r"\bEXCLUDED\.(\w+)", re.IGNORECASE)

_EXTRACT_RE = re.compile(
    r"\bEXTRACT\s*\(\s*(\w+)\s+FROM\s+(" + _EXPR + r")\s*\)", re.IGNORECASE
)
_DATE_TRUNC_RE = re.compile(
    r"\bDATE_TRUNC\s*\(\s*'(\w+)'\s*,\s*(" + _EXPR + r")\s*\)", re.IGNORECASE
)
_LEFT_RE = re.compile(
    r"\bLEFT\s*\(\s*(" + _EXPR + r")\s*,\s*(\d+|\$\d+)\s*\)", re.IGNORECASE
)

_ILIKE_RE = re.compile(r"\bILIKE\b", re.IGNORECASE)
_SIMILAR_TO_RE = re.compile(r"\bSIMILAR\s+TO\b", re.IGNORECASE)
_NOT_REGEX_CI_RE = re.compile(r"\s*!~\*\s*")
_NOT_REGEX_RE = re.compile(r"\s*!~\s*")
_REGEX_CI_RE = re.compile(r"\s*~\*\s*")
_REGEX_RE = re.compile(r"\s*~\s*")

_INTERVAL_RE = re.compile(
    r"\b(NOW\s*\(\s*\)|CURRENT_TIMESTAMP|CURRENT_DATE)\s*([+-])\s*"
    r"INTERVAL\s*'\s*(\d+)\s*([A-Za-z]+?)s?\s*'",
    re.IGNORECASE,
)
_NOW_RE = re.compile(r"\bNOW\s*\(\s*\)", re.IGNORECASE)
_CURRENT_DATE_RE = re.compile(r"\bCURRENT_DATE\b", re.IGNORECASE)
_CAST_RE = re.compile(
    r"::\s*[A-Za-z_]\w*(?:\s+precision|\s+varying)?(?:\s*\(\s*\d+(?:\s*,\s*\d+)?\s*\))?(?:\[\])?",
    re.IGNORECASE,
)
_DISTINCT_ON_RE = re.compile(r"\bDISTINCT\s+ON\s*\([^()]*\)", re.IGNORECASE)
_UNNEST_RE = re.compile(r"\bUNNEST\s*\(", re.IGNORECASE)

SQLITE_EXTRACT_FORMATS: Dict[str, str] = {
    "YEAR": "%Y",
    "MONTH": "%m",
    "DAY": "%d",
    "HOUR": "%H",
    "MINUTE": "%M",
    "SECOND": "%S",
    "DOW": "%w",
    "DOY": "%j",
    "WEEK": "%W",
}

SQLITE_TRUNC_FORMATS: Dict[str, str] = {
    "year": "%Y-01-01",
    "month": "%Y-%m-01",
    "day": "%Y-%m-%d",
    "hour": "%Y-%m-%d %H:00:00",
    "minute": "%Y-%m-%d %H:%M:00",
}

MYSQL_TRUNC_FORMATS: Dict[str, str] = {
    "year": "%Y-01-01",
    "month": "%Y-%m-01",
    "day": "%Y-%m-%d",
    "hour": "%Y-%m-%d %H:00:00",
    "minute": "%Y-%m-%d %H:%i:00",
}

INTERVAL_UNITS = ("second", "minute", "hour", "day", "week", "month", "year")


def is_schema_statement(sql: str) -> bool:
    return bool(_SCHEMA_RE.match(sql or ""))


def renumber_placeholders(sql: str, params: Optional[Sequence[Any]], marker: str) -> ConvertedQuery:
    """
    Replace ``$n`` with ``marker`` and rebuild the parameter list in textual
    order, so ``$2 ... $1 ... $1`` yields ``[p2, p1, p1]``.
    """
    params = list(params or [])
    if not _PLACEHOLDER_RE.search(sql):
        return ConvertedQuery(sql, params)

    ordered: List[Any] = []

    def _sub(m: re.Match) -> str:
        idx = int(m.group(1))
        if idx < 1 or idx > len(params):
            raise QueryConversionError(
                f"placeholder ${idx} has no matching parameter ({len(params)} given)"
            )
        ordered.append(params[idx - 1])
        return marker

    return ConvertedQuery(_PLACEHOLDER_RE.sub(_sub, sql), ordered)


# ------------------------------------------------------------
# SQLite
# ------------------------------------------------------------

def _sqlite_extract(m: re.Match) -> str:
    unit = m.group(1).upper()
    expr = m.group(2).strip()
    fmt = SQLITE_EXTRACT_FORMATS.get(unit)
    if fmt is None:
        logger.warning("EXTRACT(%s ...) has no strftime equivalent, using the date", unit)
        return f"strftime('%Y-%m-%d', {expr})"
    return f"CAST(strftime('{fmt}', {expr}) AS INTEGER)"


def _sqlite_date_trunc(m: re.Match) -> str:
    unit = m.group(1).lower()
    expr = m.group(2).strip()
    if unit == "week":
        return f"date({expr}, 'weekday 0', '-6 days')"
    fmt = SQLITE_TRUNC_FORMATS.get(unit)
    if fmt is None:
        logger.warning("DATE_TRUNC('%s', ...) is not translated for sqlite", unit)
        return m.group(0)
    return f"strftime('{fmt}', {expr})"


def _interval_parts(m: re.Match):
    base = re.sub(r"\s+", "", m.group(1).upper())
    sign = m.group(2)
    amount = int(m.group(3))
    unit = m.group(4).lower()
    return base, sign, amount, unit


def _sqlite_interval(m: re.Match) -> str:
    base, sign, amount, unit = _interval_parts(m)
    if unit not in INTERVAL_UNITS:
        return m.group(0)
    if unit == "week":
        amount, unit = amount * 7, "day"
    func = "date" if base == "CURRENT_DATE" else "datetime"
    return f"{func}('now', '{sign}{amount} {unit}s')"


def _to_sqlite(sql: str) -> str:
    if _ON_CONFLICT_NOTHING_RE.search(sql):
        sql = _ON_CONFLICT_NOTHING_RE.sub("", sql)
        sql = _INSERT_INTO_RE.sub(r"\1INSERT OR IGNORE INTO", sql, count=1)

    sql = _EXTRACT_RE.sub(_sqlite_extract, sql)
    sql = _DATE_TRUNC_RE.sub(_sqlite_date_trunc, sql)
    sql = _LEFT_RE.sub(lambda m: f"substr({m.group(1).strip()}, 1, {m.group(2)})", sql)

    sql = _ILIKE_RE.sub("LIKE", sql)
    sql = _SIMILAR_TO_RE.sub("LIKE", sql)
    sql = _NOT_REGEX_CI_RE.sub(" NOT LIKE ", sql)
    sql = _NOT_REGEX_RE.sub(" NOT GLOB ", sql)
    sql = _REGEX_CI_RE.sub(" LIKE ", sql)
    sql = _REGEX_RE.sub(" GLOB ", sql)

    sql = _INTERVAL_RE.sub(_sqlite_interval, sql)
    sql = _NOW_RE.sub("CURRENT_TIMESTAMP", sql)
    return sql


# ------------------------------------------------------------
# MySQL
# ------------------------------------------------------------

def _mysql_date_trunc(m: re.Match) -> str:
    unit = m.group(1).lower()
    expr = m.group(2).strip()
    if unit == "week":
        return f"DATE_SUB(DATE({expr}), INTERVAL WEEKDAY({expr}) DAY)"
    fmt = MYSQL_TRUNC_FORMATS.get(unit)
    if fmt is None:
        logger.warning("DATE_TRUNC('%s', ...) is not translated for mysql", unit)
        return m.group(0)
    return f"DATE_FORMAT({expr}, '{fmt}')"


def _mysql_interval(m: re.Match) -> str:
    base, sign, amount, unit = _interval_parts(m)
    if unit not in INTERVAL_UNITS:
        return m.group(0)
    func = "DATE_SUB" if sign == "-" else "DATE_ADD"
    anchor = "CURDATE()" if base == "CURRENT_DATE" else "NOW()"
    return f"{func}({anchor}, INTERVAL {amount} {unit.upper()})"


def _to_mysql(sql: str) -> str:
    if _ON_CONFLICT_NOTHING_RE.search(sql):
        sql = _ON_CONFLICT_NOTHING_RE.sub("", sql)
        sql = _INSERT_INTO_RE.sub(r"\1INSERT IGNORE INTO", sql, count=1)
    if _ON_CONFLICT_UPDATE_RE.search(sql):
        sql = _ON_CONFLICT_UPDATE_RE.sub("ON DUPLICATE KEY UPDATE", sql)
        sql = _EXCLUDED_RE.sub(r"VALUES(\1)", sql)

    sql = _DATE_TRUNC_RE.sub(_mysql_date_trunc, sql)

    sql = _ILIKE_RE.sub("LIKE", sql)
    sql = _SIMILAR_TO_RE.sub("LIKE", sql)
    sql = _NOT_REGEX_CI_RE.sub(" NOT REGEXP ", sql)
    sql = _NOT_REGEX_RE.sub(" NOT REGEXP BINARY ", sql)
    sql = _REGEX_CI_RE.sub(" REGEXP ", sql)
    sql = _REGEX_RE.sub(" REGEXP BINARY ", sql)

    sql = _INTERVAL_RE.sub(_mysql_interval, sql)
    sql = _CURRENT_DATE_RE.sub("CURDATE()", sql)
    return sql


def _common_rewrites(sql: str) -> str:
    if _DISTINCT_ON_RE.search(sql):
        logger.warning("DISTINCT ON is approximated with DISTINCT; duplicate rows may remain")
        sql = _DISTINCT_ON_RE.sub("DISTINCT", sql)
    if _UNNEST_RE.search(sql):
        logger.warning("UNNEST is not supported outside postgres, sending query as-is")
    return _CAST_RE.sub("", sql)


_REWRITERS: Dict[str, Callable[[str], str]] = {
    SQLITE: _to_sqlite,
    MYSQL: _to_mysql,
}

_MARKERS = {SQLITE: "?", POSTGRES: "%s", MYSQL: "%s"}


def convert_query(sql: str, params: Optional[Sequence[Any]] = None, dialect: str = SQLITE) -> ConvertedQuery:
    if dialect not in DIALECTS:
        raise QueryConversionError(f"unknown dialect: {dialect!r}")

    if is_schema_statement(sql):
        if dialect == MYSQL:
            sql = _CREATE_INDEX_IF_RE.sub(lambda m: f"CREATE {m.group(1) or ''}INDEX ", sql)
        return ConvertedQuery(sql, list(params or []))

    if dialect == POSTGRES:
        if params:
            sql = sql.replace("%", "%%")
    else:
        sql = _common_rewrites(sql)
        sql = _REWRITERS[dialect](sql)

    converted = renumber_placeholders(sql, params, _MARKERS[dialect])
    logger.debug("converted query for %s: %s", dialect, converted.sql)
    return converted
