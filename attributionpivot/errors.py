"""Failure types and database error classification.

Request problems raise PivotValidationError; data-source failures are turned
into a DataSourceError whose message is safe to hand back to a caller.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any


class PivotValidationError(ValueError):
    pass


class DataSourceError(RuntimeError):
    def __init__(self, message: str, *, kind: str = "query", code: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.code = code


_NETWORK_PATTERNS = [
    (re.compile(r"timed? ?out|timeout", re.I), "Database connection timed out"),
    (re.compile(r"connection refused|ECONNREFUSED", re.I), "Database connection refused"),
    (re.compile(r"host not found|ENOTFOUND|name or service not known|getaddrinfo", re.I), "Database host not found"),
    (re.compile(r"connection reset|ECONNRESET|broken pipe", re.I), "Database connection was reset"),
    (re.compile(r"database is locked", re.I), "Database is locked by another connection"),
    (re.compile(r"unable to open database file", re.I), "Database file could not be opened"),
]

_SQLITE_PATTERNS = [
    (re.compile(r"no such table", re.I), "Database table not found"),
    (re.compile(r"no such column", re.I), "Database column not found"),
    (re.compile(r"syntax error", re.I), "Invalid query syntax"),
]


@dataclass(frozen=True)
class ErrorClassifierConfig:
    name: str
    code_map: dict[str, str] = field(default_factory=dict)
    extract_code: Callable[[BaseException], str | None] = lambda exc: None


def _attr_code(*attrs: str) -> Callable[[BaseException], str | None]:
    def extract(exc: BaseException) -> str | None:
        for attr in attrs:
            value = getattr(exc, attr, None)
            if value is not None:
                return str(value)
        args = getattr(exc, "args", ())
        if args and isinstance(args[0], int):
            return str(args[0])
        return None

    return extract


MARIADB_ERRORS = ErrorClassifierConfig(
    name="mariadb",
    code_map={
        "1045": "Database access denied",
        "1049": "Unknown database",
        "1054": "Database column not found",
        "1146": "Database table not found",
        "1064": "Invalid query syntax",
        "1205": "Database lock wait timed out",
        "2003": "Database connection refused",
        "2006": "Database server has gone away",
        "2013": "Lost connection to database during query",
    },
    extract_code=_attr_code("errno"),
)

POSTGRES_ERRORS = ErrorClassifierConfig(
    name="postgres",
    code_map={
        "28P01": "Database authentication failed",
        "3D000": "Unknown database",
        "42P01": "Database table not found",
        "42703": "Database column not found",
        "42601": "Invalid query syntax",
        "57014": "Database query was cancelled (statement timeout)",
        "53300": "Too many database connections",
    },
    extract_code=_attr_code("sqlstate", "pgcode"),
)

SQLITE_ERRORS = ErrorClassifierConfig(name="sqlite", extract_code=_attr_code("sqlite_errorname"))


def classify_database_error(exc: BaseException, config: ErrorClassifierConfig = SQLITE_ERRORS) -> DataSourceError:
    if isinstance(exc, DataSourceError):
        return exc

    message = str(exc) or exc.__class__.__name__

    if isinstance(exc, FileNotFoundError):
        return DataSourceError(f"Database not found: {message}", kind="connection")

    for pattern, label in _NETWORK_PATTERNS:
        if pattern.search(message):
            return DataSourceError(f"Database connection failed: {label}", kind="connection")

    code = config.extract_code(exc)
    if code and code in config.code_map:
        return DataSourceError(f"{config.code_map[code]}: {message}", kind="query", code=code)

    for pattern, label in _SQLITE_PATTERNS:
        if pattern.search(message):
            return DataSourceError(f"{label}: {message}", kind="query", code=code)

    return DataSourceError(f"Database query failed: {message}", kind="query", code=code)


def describe_query(sql: str, params: Any, limit: int = 200) -> str:
    text = " ".join(sql.split())
    if len(text) > limit:
        text = text[:limit] + "..."
    count = len(params) if params is not None else 0
    return f"{text} [params={count}]"
