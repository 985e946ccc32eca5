"""Schema descriptors derived from entity classes."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Generic, TypeVar, assert_never

import structlog

from entitykit.base import get_model, is_entity, resolve_field_types
from entitykit.columns import Column, FieldColumn, IdColumn, OneToManyColumn
from entitykit.exceptions import MappingError
from entitykit.fields import ColumnInfo, OneToManyInfo

if TYPE_CHECKING:
    from entitykit.base import Base

T = TypeVar("T", bound="Base")

logger = structlog.get_logger(__name__)

# Process-wide descriptor cache, filled on first use of each entity class
_metadata_cache: dict[type, EntityMetadata[Any]] = {}
_metadata_lock = threading.Lock()


def get_metadata(entity_type: type[T]) -> EntityMetadata[T]:
    """Get the cached descriptor for an entity class, building it on first use.

    Concurrent first calls for the same class block on a lock and all receive
    the single instance that was built. A class that fails to map leaves no
    cache entry behind, so every call raises the same ``MappingError``.
    """
    metadata = _metadata_cache.get(entity_type)
    if metadata is not None:
        return metadata

    with _metadata_lock:
        metadata = _metadata_cache.get(entity_type)
        if metadata is None:
            metadata = EntityMetadata(entity_type)
            _metadata_cache[entity_type] = metadata
            logger.debug(
                "entity_metadata_built",
                entity=entity_type.__name__,
                table=metadata.table_name,
                columns=metadata.column_names(),
            )
    return metadata


def clear_metadata_cache() -> None:
    """Drop every cached descriptor (for tests)."""
    with _metadata_lock:
        _metadata_cache.clear()


class EntityMetadata(Generic[T]):
    """Table, column and association layout of one entity class.

    Example:
        >>> metadata = get_metadata(Order)
        >>> metadata.table_name
        'orders'
        >>> metadata.column_names_with_alias()
        ['orders.id', 'orders.orderNumber', 'order_items.id', ...]
    """

    def __init__(self, entity_type: type[T]) -> None:
        if not is_entity(entity_type):
            raise MappingError(f"{entity_type.__name__} is not marked with @entity")

        self._entity_type = entity_type
        self._table_name: str = entity_type.__dict__.get("__tablename__") or entity_type.__name__

        field_types = resolve_field_types(entity_type)
        id_column: IdColumn | None = None
        columns: list[Column] = []

        for attr_name, declaration in entity_type.__declarations__.items():
            match declaration:
                case ColumnInfo(primary_key=True):
                    if id_column is not None:
                        raise MappingError(
                            f"{entity_type.__name__} declares more than one identifier: "
                            f"'{id_column.field_name}' and '{attr_name}'"
                        )
                    id_column = IdColumn(
                        column_name=declaration.column_name,
                        field_name=attr_name,
                        table_name=self._table_name,
                        python_type=field_types[attr_name][0],
                        generated=declaration.generated,
                    )
                case ColumnInfo():
                    python_type, optional = field_types[attr_name]
                    columns.append(
                        FieldColumn(
                            column_name=declaration.column_name,
                            field_name=attr_name,
                            table_name=self._table_name,
                            python_type=python_type,
                            nullable=declaration.nullable or optional,
                            insertable=declaration.insertable,
                        )
                    )
                case OneToManyInfo():
                    columns.append(
                        OneToManyColumn(
                            field_name=attr_name,
                            table_name=self._table_name,
                            target_type=self._resolve_target(declaration),
                            join_column=declaration.join_column,
                            fetch=declaration.fetch,
                        )
                    )
                case _:
                    assert_never(declaration)

        if id_column is None:
            raise MappingError(f"{entity_type.__name__} has no identifier column")

        self._id_column = id_column
        self._columns: tuple[Column, ...] = (id_column, *columns)

        seen: set[str] = set()
        for name in self.column_names():
            if name in seen:
                raise MappingError(f"{entity_type.__name__} maps more than one attribute to column '{name}'")
            seen.add(name)

    def _resolve_target(self, declaration: OneToManyInfo) -> type:
        target = declaration.target
        if isinstance(target, str):
            resolved = get_model(target)
            if resolved is None:
                raise MappingError(
                    f"{self._entity_type.__name__}.{declaration.attr_name} targets unknown entity '{target}'"
                )
            target = resolved
        if not is_entity(target):
            raise MappingError(
                f"{self._entity_type.__name__}.{declaration.attr_name} targets {target.__name__}, "
                "which is not marked with @entity"
            )
        return target

    def __repr__(self) -> str:
        return f"<EntityMetadata {self._entity_type.__name__} table={self._table_name!r}>"

    @property
    def entity_type(self) -> type[T]:
        return self._entity_type

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def id_column(self) -> IdColumn:
        return self._id_column

    @property
    def id_type(self) -> type | None:
        return self._id_column.python_type

    @property
    def id_name(self) -> str:
        """Attribute name of the identifier."""
        return self._id_column.field_name

    @property
    def id_column_name(self) -> str:
        return self._id_column.column_name

    def columns(self) -> tuple[Column, ...]:
        """All columns, identifier first, then in declaration order."""
        return self._columns

    def field_columns(self) -> list[FieldColumn]:
        return [column for column in self._columns if isinstance(column, FieldColumn)]

    def _table_columns(self) -> list[IdColumn | FieldColumn]:
        return [column for column in self._columns if not isinstance(column, OneToManyColumn)]

    def column_names(self) -> list[str]:
        return [column.column_name for column in self._table_columns()]

    def column_field_names(self) -> list[str]:
        return [column.field_name for column in self._table_columns()]

    def insertable_columns(self) -> list[IdColumn | FieldColumn]:
        return [column for column in self._table_columns() if column.is_insertable]

    def insertable_column_names(self) -> list[str]:
        return [column.column_name for column in self.insertable_columns()]

    def association_columns(self) -> list[OneToManyColumn]:
        return [column for column in self._columns if isinstance(column, OneToManyColumn)]

    def lazy_association_columns(self) -> list[OneToManyColumn]:
        return [column for column in self.association_columns() if column.is_lazy]

    def eager_association_columns(self) -> list[OneToManyColumn]:
        return [column for column in self.association_columns() if column.is_eager]

    def is_associated_with(self, other: EntityMetadata[Any]) -> bool:
        """Check whether any association of this entity targets ``other``'s entity."""
        return any(column.target_type is other.entity_type for column in self.association_columns())

    def column_names_with_alias(self) -> list[str]:
        """Table-qualified column names covering this entity and its eager associations.

        Own columns come first, followed by each eager association's columns
        (recursively) in declaration order. Lazy associations are not joined
        and contribute nothing.
        """
        return self._aliased_column_names(frozenset(), set())

    def _aliased_column_names(self, visiting: frozenset[type], joined: set[str]) -> list[str]:
        if self._entity_type in visiting:
            raise MappingError(f"Eager association cycle through {self._entity_type.__name__}")
        if self._table_name in joined:
            # Each table may appear once per joined SELECT
            raise MappingError(f"Table '{self._table_name}' is joined more than once by eager associations")
        visiting = visiting | {self._entity_type}
        joined.add(self._table_name)

        names = [column.alias for column in self._table_columns()]
        for association in self.eager_association_columns():
            names.extend(get_metadata(association.target_type)._aliased_column_names(visiting, joined))
        return names

    def id_value(self, instance: Any) -> Any:
        return self._id_column.value_of(instance)

    def snapshot(self, instance: Any) -> dict[str, Any]:
        """Current field-column values of ``instance`` keyed by attribute name."""
        return {column.field_name: column.value_of(instance) for column in self.field_columns()}
