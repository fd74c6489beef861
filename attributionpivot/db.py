from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Protocol


PlaceholderStyle = Literal["qmark", "numeric"]


@dataclass(frozen=True)
class SqlDialect:
    name: str
    placeholder_style: PlaceholderStyle
    concat_style: Literal["function", "pipes"]

    def placeholder(self, position: int) -> str:
        if self.placeholder_style == "numeric":
            return f"${position}"
        return "?"

    def concat(self, *parts: str) -> str:
        if self.concat_style == "function":
            return f"CONCAT({', '.join(parts)})"
        return "(" + " || ".join(parts) + ")"


SQLITE = SqlDialect("sqlite", "qmark", "pipes")
MARIADB = SqlDialect("mariadb", "qmark", "function")
POSTGRES = SqlDialect("postgres", "numeric", "pipes")


class SqlParams:
    """Collects bound values for one query and renders the dialect's placeholder for each."""

    def __init__(self, dialect: SqlDialect) -> None:
        self.dialect = dialect
        self.values: list[Any] = []

    def bind(self, value: Any) -> str:
        self.values.append(value)
        return self.dialect.placeholder(len(self.values))


@dataclass(frozen=True)
class SqlQuery:
    sql: str
    params: list[Any]


class DataSource(Protocol):
    dialect: SqlDialect

    def execute(self, query: str, params: Sequence[Any]) -> list[dict[str, Any]]:
        ...


@dataclass(frozen=True)
class QueryResult:
    rows: list[dict[str, Any]]
    columns: list[str]
    row_count: int
    sql: str
    params: list[Any]
    db_path: str


def connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def query(db_path: str, sql: str, params: Sequence[Any] | None = None) -> QueryResult:
    if not Path(db_path).exists():
        raise FileNotFoundError(f"SQLite db not found: {db_path}")

    conn = connect(db_path)
    try:
        cur = conn.execute(sql, list(params or []))
        rows = [dict(r) for r in cur.fetchall()]
        columns = [d[0] for d in (cur.description or [])]
    finally:
        conn.close()
    return QueryResult(
        rows=rows,
        columns=columns,
        row_count=len(rows),
        sql=sql,
        params=list(params or []),
        db_path=db_path,
    )


class SqliteDataSource:
    """A file-backed SQLite database exposed through the DataSource interface."""

    dialect = SQLITE

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def execute(self, query_text: str, params: Sequence[Any]) -> list[dict[str, Any]]:
        return query(self.db_path, query_text, params).rows

    def __repr__(self) -> str:
        return f"SqliteDataSource({self.db_path!r})"
