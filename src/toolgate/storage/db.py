"""
Toolgate Storage Backend

One connection shared by the approval, policy and audit repositories.
The backend follows the URL:

- ``postgresql://`` / ``postgres://`` -> psycopg
- a file path or ``:memory:`` -> sqlite3

Repositories write SQL with ``?`` placeholders; PostgreSQL gets them
rewritten to ``%s``. Rows always come back as plain dicts.

Usage::

    from toolgate.storage.db import connect

    db = connect(os.environ.get("TOOLGATE_DATABASE_URL", "toolgate.db"))
    db.create_schema("CREATE TABLE IF NOT EXISTS ...")
    rows = db.execute("SELECT * FROM audit_records ORDER BY sequence").all()
"""

from __future__ import annotations

import sqlite3
from typing import Any


class QueryResult:
    """Rows and affected-row count of one statement."""

    def __init__(self, cursor: Any) -> None:
        self._cursor = cursor

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount

    def one(self) -> dict[str, Any] | None:
        row = self._cursor.fetchone()
        return None if row is None else dict(row)

    def all(self) -> list[dict[str, Any]]:
        return [dict(row) for row in self._cursor.fetchall()]


class DbConnection:
    def __init__(self, raw: Any, *, is_postgres: bool = False) -> None:
        self._raw = raw
        self.is_postgres = is_postgres

    def execute(self, sql: str, params: tuple = ()) -> QueryResult:
        if self.is_postgres:
            cursor = self._raw.cursor()
            cursor.execute(sql.replace("?", "%s"), params or None)
            return QueryResult(cursor)
        return QueryResult(self._raw.execute(sql, params))

    def create_schema(self, ddl: str) -> None:
        """Run ``;``-separated DDL and commit."""
        for statement in filter(None, (s.strip() for s in ddl.split(";"))):
            self.execute(statement)
        self.commit()

    def upsert(self, table: str, row: dict[str, Any], key: str = "id") -> None:
        columns = list(row)
        marks = ", ".join("?" for _ in columns)
        if self.is_postgres:
            updates = ", ".join(f"{c} = EXCLUDED.{c}" for c in columns if c != key)
            sql = (
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({marks}) "
                f"ON CONFLICT ({key}) DO UPDATE SET {updates}"
            )
        else:
            sql = f"INSERT OR REPLACE INTO {table} ({', '.join(columns)}) VALUES ({marks})"
        self.execute(sql, tuple(row.values()))
        self.commit()

    def compare_and_set(
        self,
        table: str,
        key: tuple[str, Any],
        expected: dict[str, Any],
        changes: dict[str, Any],
    ) -> bool:
        """Apply ``changes`` only while every ``expected`` column still holds its value.

        Returns False when another writer got there first.
        """
        assignments = ", ".join(f"{c} = ?" for c in changes)
        guards = " AND ".join(f"{c} = ?" for c in [key[0], *expected])
        params = (*changes.values(), key[1], *expected.values())
        updated = self.execute(f"UPDATE {table} SET {assignments} WHERE {guards}", params).rowcount
        self.commit()
        return updated == 1

    def commit(self) -> None:
        self._raw.commit()

    def close(self) -> None:
        self._raw.close()


def connect(db_url: str) -> DbConnection:
    if db_url.startswith(("postgresql://", "postgres://")):
        try:
            import psycopg
            from psycopg.rows import dict_row
        except ImportError:
            raise ImportError(
                "PostgreSQL support requires psycopg. Install with: pip install 'toolgate[postgres]'"
            ) from None
        return DbConnection(psycopg.connect(db_url, row_factory=dict_row), is_postgres=True)

    raw = sqlite3.connect(db_url, check_same_thread=False)
    raw.row_factory = sqlite3.Row
    return DbConnection(raw)
