"""SQLite connection adapter and schema bootstrap.

Wraps a raw :class:`sqlite3.Connection` to satisfy the
:class:`~flowspine.core.protocols.Connection` protocol. A bare
``sqlite3.Connection`` exposes ``execute()`` (returns a cursor) but not
``fetchone()`` / ``fetchall()`` at the connection level; this adapter bridges
the gap so store code works identically against other drivers.

Usage::

    from flowspine.core.connection import SqliteConnection, init_schema

    conn = SqliteConnection(":memory:")
    init_schema(conn)
"""

from __future__ import annotations

import sqlite3
import threading
from importlib import resources
from typing import Any

from flowspine.core.logging import get_logger

logger = get_logger(__name__)

SCHEMA_FILES = ("00_workflows.sql", "01_scheduler.sql")


class SqliteConnection:
    """Adapter: ``sqlite3.Connection`` → ``Connection`` protocol.

    Maintains a single cursor so that ``execute`` / ``fetchone`` /
    ``fetchall`` operate on the same result set. A re-entrant lock
    serializes statements because the scheduler thread and request
    threads share one connection.
    """

    def __init__(self, path: str = ":memory:", *, row_factory: Any = sqlite3.Row) -> None:
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = row_factory
        self._cursor = self._conn.cursor()
        self.lock = threading.RLock()
        self.path = path

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> Any:
        with self.lock:
            self._cursor.execute(sql, params)
            return self._cursor

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        with self.lock:
            self._cursor.executemany(sql, params)
            return self._cursor

    def executescript(self, script: str) -> None:
        with self.lock:
            self._conn.executescript(script)

    def fetchone(self) -> Any:
        return self._cursor.fetchone()

    def fetchall(self) -> list:
        return self._cursor.fetchall()

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    @property
    def raw(self) -> sqlite3.Connection:
        """Access the underlying ``sqlite3.Connection`` (e.g. for pragmas)."""
        return self._conn

    def __repr__(self) -> str:
        return f"SqliteConnection({self.path!r})"


def load_schema_sql() -> str:
    """Concatenate the bundled DDL files in order."""
    package = resources.files("flowspine.core.schema")
    return "\n".join(package.joinpath(name).read_text(encoding="utf-8") for name in SCHEMA_FILES)


def init_schema(conn: SqliteConnection) -> None:
    """Create all flowspine tables if they do not exist (idempotent)."""
    conn.executescript(load_schema_sql())
    conn.commit()
    logger.debug("schema_initialized", path=conn.path)


def open_database(path: str, *, init: bool = True) -> SqliteConnection:
    """Open ``path`` and (by default) ensure the schema exists."""
    conn = SqliteConnection(path)
    conn.raw.execute("PRAGMA foreign_keys = ON")
    if init:
        init_schema(conn)
    return conn
