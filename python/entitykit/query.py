"""SQL builders driven by entity metadata.

Nothing here executes a statement: each builder turns an ``EntityMetadata``
(plus runtime values) into SQL text and positional parameters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from entitykit.columns import IdColumn, OneToManyColumn
from entitykit.metadata import EntityMetadata, get_metadata

if TYPE_CHECKING:
    from entitykit.columns import FieldColumn


def render_literal(value: Any) -> str:
    """Render a value as SQL literal text.

    Numbers render bare, strings are single-quoted with embedded quotes
    doubled, booleans render as 1/0.
    """
    match value:
        case None:
            return "NULL"
        case bool():
            return "1" if value else "0"
        case int() | float() | Decimal():
            return str(value)
        case str():
            return "'" + value.replace("'", "''") + "'"
        case _:
            return "'" + str(value).replace("'", "''") + "'"


def id_predicate(metadata: EntityMetadata[Any], id: Any) -> str:
    """Build the ``<table>.<id column>=<value>`` predicate.

    Example:
        >>> id_predicate(get_metadata(Person1), 1)
        'person1.id=1'
    """
    return f"{metadata.table_name}.{metadata.id_column_name}={render_literal(id)}"


def join_column_predicate(metadata: EntityMetadata[Any], join_column: str, owner_id: Any) -> str:
    """Build the predicate selecting the children of one association owner."""
    return f"{metadata.table_name}.{join_column}={render_literal(owner_id)}"


def select_column_list(metadata: EntityMetadata[Any]) -> str:
    """Comma-joined aliased columns of an entity and its eager associations."""
    return ", ".join(metadata.column_names_with_alias())


def _placeholder(dialect: str, index: int) -> str:
    return f"${index}" if dialect == "postgresql" else "?"


@dataclass(frozen=True)
class JoinNode:
    """One entity in a joined SELECT and the slice of each row it occupies."""

    metadata: EntityMetadata[Any]
    start: int
    width: int
    association: OneToManyColumn | None = None  # association leading here from the parent
    children: tuple[JoinNode, ...] = ()

    @property
    def id_offset(self) -> int:
        # The identifier is always the first column of an entity's slice
        return self.start

    def walk(self) -> list[JoinNode]:
        nodes = [self]
        for child in self.children:
            nodes.extend(child.walk())
        return nodes


def build_join_plan(metadata: EntityMetadata[Any]) -> JoinNode:
    """Lay out the eager join tree in ``column_names_with_alias()`` order."""
    # Raises MappingError on an eager cycle before recursing below
    metadata.column_names_with_alias()
    node, _ = _plan_node(metadata, 0, None)
    return node


def _plan_node(
    metadata: EntityMetadata[Any],
    start: int,
    association: OneToManyColumn | None,
) -> tuple[JoinNode, int]:
    width = len(metadata.column_names())
    offset = start + width
    children = []
    for eager in metadata.eager_association_columns():
        child, offset = _plan_node(get_metadata(eager.target_type), offset, eager)
        children.append(child)
    return JoinNode(metadata, start, width, association, tuple(children)), offset


@dataclass
class SelectStatement:
    """SELECT of an entity joined with its eager associations.

    Example:
        >>> SelectStatement.by_id(get_metadata(Order), 1).to_sql()
        ('SELECT orders.id, orders.orderNumber, order_items.id, ... FROM orders
          LEFT JOIN order_items ON orders.id=order_items.order_id
          WHERE orders.id=1 ORDER BY orders.id, order_items.id', [])
    """

    metadata: EntityMetadata[Any]
    where: str | None = None

    @classmethod
    def by_id(cls, metadata: EntityMetadata[Any], id: Any) -> SelectStatement:
        return cls(metadata, id_predicate(metadata, id))

    @classmethod
    def by_join_column(cls, metadata: EntityMetadata[Any], join_column: str, owner_id: Any) -> SelectStatement:
        return cls(metadata, join_column_predicate(metadata, join_column, owner_id))

    def plan(self) -> JoinNode:
        return build_join_plan(self.metadata)

    def to_sql(self, dialect: str = "sqlite") -> tuple[str, list[Any]]:
        """Generate SQL string and parameters."""
        root = self.plan()
        sql = f"SELECT {select_column_list(self.metadata)} FROM {self.metadata.table_name}"

        for parent in root.walk():
            for child in parent.children:
                assert child.association is not None
                sql += (
                    f" LEFT JOIN {child.metadata.table_name}"
                    f" ON {parent.metadata.id_column.alias}"
                    f"={child.metadata.table_name}.{child.association.join_column}"
                )

        if self.where:
            sql += f" WHERE {self.where}"

        sql += " ORDER BY " + ", ".join(node.metadata.id_column.alias for node in root.walk())
        return sql, []


@dataclass
class InsertStatement:
    """INSERT restricted to the insertable columns of an entity.

    ``values`` maps column names to values in column order. Join-key columns
    of a cascading association may be appended after the entity's own.
    """

    metadata: EntityMetadata[Any]
    values: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_instance(
        cls,
        metadata: EntityMetadata[Any],
        instance: Any,
        extra: dict[str, Any] | None = None,
    ) -> InsertStatement:
        values = {column.column_name: column.value_of(instance) for column in metadata.insertable_columns()}
        if extra:
            values.update(extra)
        return cls(metadata, values)

    def column_list(self) -> str:
        return ", ".join(self.values)

    def to_sql(self, dialect: str = "sqlite") -> tuple[str, list[Any]]:
        """Generate SQL string and parameters."""
        table = self.metadata.table_name
        params = list(self.values.values())

        if self.values:
            placeholders = ", ".join(_placeholder(dialect, i + 1) for i in range(len(params)))
            sql = f"INSERT INTO {table} ({self.column_list()}) VALUES ({placeholders})"
        else:
            sql = f"INSERT INTO {table} DEFAULT VALUES"

        id_column: IdColumn = self.metadata.id_column
        if id_column.generated and dialect == "postgresql":
            sql += f" RETURNING {id_column.column_name}"
        return sql, params


@dataclass
class UpdateStatement:
    """UPDATE of the changed field columns of one entity."""

    metadata: EntityMetadata[Any]
    id: Any
    changes: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_changes(
        cls,
        metadata: EntityMetadata[Any],
        snapshot: dict[str, Any],
        instance: Any,
    ) -> UpdateStatement | None:
        """Diff ``instance`` against ``snapshot``; ``None`` when nothing changed."""
        changed: list[FieldColumn] = [
            column
            for column in metadata.field_columns()
            if snapshot.get(column.field_name) != column.value_of(instance)
        ]
        if not changed:
            return None
        return cls(
            metadata,
            metadata.id_value(instance),
            {column.column_name: column.value_of(instance) for column in changed},
        )

    def to_sql(self, dialect: str = "sqlite") -> tuple[str, list[Any]]:
        """Generate SQL string and parameters."""
        set_parts = [f"{column} = {_placeholder(dialect, i + 1)}" for i, column in enumerate(self.changes)]
        sql = (
            f"UPDATE {self.metadata.table_name} SET {', '.join(set_parts)}"
            f" WHERE {id_predicate(self.metadata, self.id)}"
        )
        return sql, list(self.changes.values())


@dataclass
class DeleteStatement:
    """DELETE of one entity row by identifier."""

    metadata: EntityMetadata[Any]
    id: Any

    def to_sql(self, dialect: str = "sqlite") -> tuple[str, list[Any]]:
        """Generate SQL string and parameters."""
        return f"DELETE FROM {self.metadata.table_name} WHERE {id_predicate(self.metadata, self.id)}", []
