"""entitykit - a minimal object-relational mapper with an identity-mapped entity manager."""

from __future__ import annotations

from entitykit.base import Base, entity
from entitykit.columns import Column, FieldColumn, IdColumn, OneToManyColumn
from entitykit.config import EntityKitConfig
from entitykit.exceptions import (
    EntityKitError,
    EntityNotFoundError,
    ExecutionError,
    InvalidStateError,
    MappingError,
)
from entitykit.executor import QueryResult, SqliteExecutor, StatementExecutor, create_engine
from entitykit.fields import FetchType, Mapped, mapped_column, one_to_many
from entitykit.lazy import LazyCollection, LazyReference, LoadState
from entitykit.logging import configure_logging
from entitykit.metadata import EntityMetadata, get_metadata
from entitykit.query import (
    DeleteStatement,
    InsertStatement,
    SelectStatement,
    UpdateStatement,
    id_predicate,
    select_column_list,
)
from entitykit.session import EntityManager, EntityState

__version__ = "0.1.0"

__all__ = [
    # Core
    "create_engine",
    "EntityManager",
    "EntityState",
    "StatementExecutor",
    "SqliteExecutor",
    "QueryResult",
    # Entity definition
    "Base",
    "entity",
    "Mapped",
    "mapped_column",
    "one_to_many",
    "FetchType",
    # Metadata
    "EntityMetadata",
    "get_metadata",
    "Column",
    "IdColumn",
    "FieldColumn",
    "OneToManyColumn",
    # Query building
    "id_predicate",
    "select_column_list",
    "SelectStatement",
    "InsertStatement",
    "UpdateStatement",
    "DeleteStatement",
    # Lazy loading
    "LazyReference",
    "LazyCollection",
    "LoadState",
    # Configuration
    "EntityKitConfig",
    "configure_logging",
    # Errors
    "EntityKitError",
    "MappingError",
    "ExecutionError",
    "EntityNotFoundError",
    "InvalidStateError",
]
