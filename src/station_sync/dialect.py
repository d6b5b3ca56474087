"""
dialect.py - Statement translation between the remote and local dialects.

Callers write statements in the remote (PostgreSQL) dialect with
``$1, $2, ...`` markers. When a statement has to run on the local
SQLite store instead, it is rewritten by a small, fixed rule table
rather than a SQL parser: the constructs in use are few and known.

Rules, applied in order:
1. ``$N`` markers become ``?``; parameters are re-ordered to marker order.
2. Remote "current time" calls become the local epoch-seconds expression.
3. ``RETURNING`` clauses are stripped, whatever their column list.
"""

import re
from dataclasses import dataclass
from typing import Any, Sequence

from station_sync.errors import ValidationError

LOCAL_MARKER = "?"
LOCAL_NOW = "strftime('%s', 'now')"

# Whole-token match: "$1" never matches the prefix of "$10"
_MARKER_RE = re.compile(r"\$(\d+)(?!\d)")
_RETURNING_RE = re.compile(r"\s*\bRETURNING\b[^;]*", re.IGNORECASE)

# (pattern, replacement) applied after marker rewriting
FUNCTION_RULES: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\bNOW\s*\(\s*\)", re.IGNORECASE), LOCAL_NOW),
    (re.compile(r"\bCURRENT_TIMESTAMP\b", re.IGNORECASE), LOCAL_NOW),
)

CLAUSE_RULES: tuple[tuple[re.Pattern, str], ...] = (
    (_RETURNING_RE, ""),
)


@dataclass(frozen=True)
class LocalStatement:
    """A statement rewritten for the local store, with its bound parameters."""
    sql: str
    params: tuple[Any, ...]


def rewrite_markers(sql: str, params: Sequence[Any], marker: str) -> tuple[str, tuple[Any, ...]]:
    """
    Replace ``$N`` markers with ``marker`` and order params by appearance.

    Raises:
        ValidationError: If a marker refers past the end of params
    """
    ordered: list[Any] = []

    def _replace(match: re.Match) -> str:
        index = int(match.group(1))
        if index < 1 or index > len(params):
            raise ValidationError(
                f"Parameter marker ${index} has no bound value",
                field="params",
                value=len(params),
            )
        ordered.append(params[index - 1])
        return marker

    return _MARKER_RE.sub(_replace, sql), tuple(ordered)


def convert_remote_to_local(sql: str, params: Sequence[Any] = ()) -> LocalStatement:
    """Translate a remote-dialect statement for the local store."""
    local_sql, local_params = rewrite_markers(sql, params, LOCAL_MARKER)

    for pattern, replacement in FUNCTION_RULES:
        local_sql = pattern.sub(replacement, local_sql)
    for pattern, replacement in CLAUSE_RULES:
        local_sql = pattern.sub(replacement, local_sql)

    return LocalStatement(sql=local_sql.strip(), params=local_params)


def to_pyformat(sql: str, params: Sequence[Any] = ()) -> tuple[str, tuple[Any, ...]]:
    """
    Translate ``$N`` markers to the ``%s`` style psycopg2 expects.

    Literal percent signs are escaped first so they survive formatting.
    """
    escaped = sql.replace("%", "%%")
    return rewrite_markers(escaped, params, "%s")


def has_returning(sql: str) -> bool:
    return _RETURNING_RE.search(sql) is not None


def append_returning(sql: str, column: str = "id") -> str:
    """Request the generated key from the remote store."""
    if has_returning(sql):
        return sql
    return f"{sql.rstrip().rstrip(';')} RETURNING {column}"


def quote_identifier(name: str) -> str:
    """Double-quote an identifier; valid in both dialects."""
    return '"' + name.replace('"', '""') + '"'


def build_insert(table_name: str, columns: Sequence[str]) -> str:
    """Build a remote-dialect INSERT with ``$N`` markers."""
    placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
    return f"INSERT INTO {table_name} ({', '.join(columns)}) VALUES ({placeholders})"
