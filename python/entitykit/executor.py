"""Statement execution boundary and the bundled SQLite engine."""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import structlog

from entitykit.exceptions import ExecutionError

logger = structlog.get_logger(__name__)


@dataclass
class QueryResult:
    """Rows and counters returned by a statement.

    ``rows`` are positional tuples in select-list order, which keeps joined
    selects with repeated column names unambiguous.
    """

    columns: list[str] = field(default_factory=list)
    rows: list[tuple[Any, ...]] = field(default_factory=list)
    rowcount: int = -1
    lastrowid: Any = None

    def __len__(self) -> int:
        return len(self.rows)

    def all(self) -> list[dict[str, Any]]:
        """Rows as dictionaries keyed by column name."""
        return [dict(zip(self.columns, row, strict=True)) for row in self.rows]

    def first(self) -> dict[str, Any] | None:
        if not self.rows:
            return None
        return dict(zip(self.columns, self.rows[0], strict=True))


@runtime_checkable
class StatementExecutor(Protocol):
    """Anything that can run SQL text with positional parameters."""

    dialect: str

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> QueryResult: ...


class SqliteExecutor:
    """Executor over a single ``sqlite3`` connection in autocommit mode.

    Example:
        >>> engine = SqliteExecutor(":memory:", echo=True)
        >>> engine.execute("SELECT 1").rows
        [(1,)]
    """

    dialect = "sqlite"

    def __init__(self, database: str = ":memory:", *, echo: bool = False) -> None:
        self.database = database
        self.echo = echo
        self._connection = sqlite3.connect(database, isolation_level=None)

    def __enter__(self) -> SqliteExecutor:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        self.close()

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> QueryResult:
        """Run one statement and collect its rows."""
        params = list(params or [])
        if self.echo:
            logger.info("statement", sql=sql, params=params)

        try:
            cursor = self._connection.execute(sql, params)
            rows = cursor.fetchall() if cursor.description else []
        except sqlite3.Error as e:
            logger.warning("statement_failed", sql=sql, error=str(e))
            raise ExecutionError(f"Statement failed: {e}", sql=sql) from e

        columns = [description[0] for description in cursor.description or ()]
        return QueryResult(columns, rows, cursor.rowcount, cursor.lastrowid)

    def execute_script(self, script: str) -> None:
        """Run several semicolon-separated statements, e.g. test schema setup."""
        try:
            self._connection.executescript(script)
        except sqlite3.Error as e:
            raise ExecutionError(f"Script failed: {e}", sql=script) from e

    def close(self) -> None:
        self._connection.close()


def create_engine(url: str = "sqlite::memory:", *, echo: bool = False) -> SqliteExecutor:
    """Create a statement executor from a database URL.

    Args:
        url: Database URL.
            - SQLite in memory: sqlite::memory: or sqlite://
            - SQLite file: sqlite:///path/to/db.sqlite
        echo: Log every statement at info level.

    Returns:
        A SqliteExecutor instance.

    Raises:
        ValueError: If the URL scheme is not supported.

    Example:
        >>> engine = create_engine("sqlite::memory:")
        >>> engine = create_engine("sqlite:///app.db", echo=True)
    """
    if url in ("sqlite::memory:", "sqlite://", "sqlite:///:memory:"):
        database = ":memory:"
    elif url.startswith("sqlite:///"):
        database = url.removeprefix("sqlite:///")
    else:
        raise ValueError(f"Unsupported database URL: {url}")

    logger.debug("engine_created", database=database, echo=echo)
    return SqliteExecutor(database, echo=echo)
