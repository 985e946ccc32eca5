"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
from collections.abc import Iterator, Sequence
from typing import Any

import pytest

from entitykit import EntityManager, QueryResult, SqliteExecutor, create_engine
from entities import SCHEMA


class RecordingExecutor:
    """Executor wrapper that remembers every statement it runs."""

    def __init__(self, inner: SqliteExecutor) -> None:
        self.inner = inner
        self.dialect = inner.dialect
        self.statements: list[str] = []

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> QueryResult:
        self.statements.append(sql)
        return self.inner.execute(sql, params)

    def selects(self) -> list[str]:
        return [sql for sql in self.statements if sql.startswith("SELECT")]

    def updates(self) -> list[str]:
        return [sql for sql in self.statements if sql.startswith("UPDATE")]

    def reset(self) -> None:
        self.statements.clear()


@pytest.fixture
def sqlite_engine() -> Iterator[SqliteExecutor]:
    """Create an in-memory SQLite engine with the test schema."""
    engine = create_engine("sqlite::memory:")
    engine.execute_script(SCHEMA)
    yield engine
    engine.close()


@pytest.fixture
def file_engine(tmp_path) -> Iterator[SqliteExecutor]:
    """Create a file-backed SQLite engine.

    Set DATABASE_URL to a sqlite:/// URL to run against a specific file.
    """
    url = os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'entitykit.db'}"
    if not url.startswith("sqlite:///"):
        pytest.skip("DATABASE_URL is not a SQLite file URL")

    engine = create_engine(url)
    engine.execute_script(SCHEMA.replace("CREATE TABLE", "CREATE TABLE IF NOT EXISTS"))
    yield engine
    engine.close()


@pytest.fixture
def recorder(sqlite_engine: SqliteExecutor) -> RecordingExecutor:
    """Record the statements entity managers send to the engine."""
    return RecordingExecutor(sqlite_engine)


@pytest.fixture
def em(recorder: RecordingExecutor) -> Iterator[EntityManager]:
    """Entity manager over the recording engine."""
    with EntityManager(recorder) as manager:
        yield manager


@pytest.fixture
def seeded(sqlite_engine: SqliteExecutor) -> SqliteExecutor:
    """Insert a few rows directly, bypassing the entity manager."""
    sqlite_engine.execute("INSERT INTO orders (id, orderNumber) VALUES (1, 'A-1')")
    sqlite_engine.execute("INSERT INTO orders (id, orderNumber) VALUES (2, 'A-2')")
    sqlite_engine.execute("INSERT INTO order_items (id, product, quantity, order_id) VALUES (1, 'pen', 2, 1)")
    sqlite_engine.execute("INSERT INTO order_items (id, product, quantity, order_id) VALUES (2, 'ink', 5, 1)")
    sqlite_engine.execute("INSERT INTO authors (id, name) VALUES (1, 'Ann')")
    sqlite_engine.execute("INSERT INTO books (id, title, author_id) VALUES (1, 'First', 1)")
    sqlite_engine.execute("INSERT INTO books (id, title, author_id) VALUES (2, 'Second', 1)")
    sqlite_engine.execute("INSERT INTO person1 (id, name, age) VALUES (1, 'Pat', 30)")
    return sqlite_engine
