"""
Canonical protocol definitions for flowspine.

Stores depend on the *shape* of a database connection, not on a concrete
driver. Any object matching :class:`Connection` works: the bundled
:class:`~flowspine.core.connection.SqliteConnection`, a psycopg adapter, or a
test double.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """Minimal SYNCHRONOUS connection interface for database operations.

    ::

        execute(sql, params)   → Execute single statement
        executemany(sql, list) → Execute for multiple params
        fetchone()             → Get one result row
        fetchall()             → Get all result rows
        commit()               → Commit transaction
        rollback()             → Rollback transaction
    """

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute SQL statement with optional parameters."""
        ...

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        """Execute SQL statement for multiple parameter sets."""
        ...

    def fetchone(self) -> Any:
        """Fetch one row from last query."""
        ...

    def fetchall(self) -> list:
        """Fetch all rows from last query."""
        ...

    def commit(self) -> None:
        """Commit current transaction."""
        ...

    def rollback(self) -> None:
        """Rollback current transaction."""
        ...
