"""Entity manager: the unit-of-work persistence context."""

from __future__ import annotations

import weakref
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, TypeVar, assert_never

import structlog

from entitykit.base import Base
from entitykit.columns import FieldColumn, IdColumn, OneToManyColumn
from entitykit.exceptions import EntityKitError, EntityNotFoundError, ExecutionError, InvalidStateError
from entitykit.executor import QueryResult, StatementExecutor
from entitykit.lazy import LazyCollection, LazyReference
from entitykit.metadata import EntityMetadata, get_metadata
from entitykit.query import DeleteStatement, InsertStatement, JoinNode, SelectStatement, UpdateStatement

T = TypeVar("T", bound=Base)

logger = structlog.get_logger(__name__)


class EntityState(Enum):
    """Lifecycle of an entity instance relative to one EntityManager."""

    TRANSIENT = "transient"
    MANAGED = "managed"
    REMOVED = "removed"
    DETACHED = "detached"


@dataclass
class EntityEntry:
    """Bookkeeping for one instance tracked by an EntityManager.

    ``snapshot`` holds the field values last read from or written to the
    database; it is ``None`` while the instance is an unresolved reference.
    """

    instance: Base
    metadata: EntityMetadata[Any]
    state: EntityState
    snapshot: dict[str, Any] | None = None


class EntityManager:
    """Persistence context with an identity map and dirty checking.

    One EntityManager serves one unit of work and is not meant to be shared
    between threads. Statements run immediately through the executor.

    Example:
        >>> with EntityManager(engine) as em:
        ...     order = Order(orderNumber="A-1", items=[OrderItem(product="pen", quantity=2)])
        ...     em.persist(order)
        ...     order.orderNumber = "A-2"
        ...     em.merge(order)           # UPDATE orders SET orderNumber = ? ...
        ...     assert em.find(Order, order.id) is order
    """

    def __init__(self, executor: StatementExecutor) -> None:
        self._executor = executor
        self._dialect = getattr(executor, "dialect", "sqlite")
        self._identity_map: dict[tuple[type, Any], Base] = {}
        self._entries: dict[int, EntityEntry] = {}
        self._detached: weakref.WeakSet[Base] = weakref.WeakSet()
        self._closed = False

    def __enter__(self) -> EntityManager:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    # ========== Entity Manager API ==========

    def find(self, entity_type: type[T], id: Any) -> T | None:
        """Load an entity by identifier, or return None if no row matches.

        Eager associations are fetched by the same joined query; lazy ones
        are wired as unloaded collections. An unresolved reference from
        ``get_reference()`` is resolved here; when its row does not exist it
        is dropped from the context and None is returned.

        Example:
            >>> order = em.find(Order, 1)
            >>> em.find(Order, 1) is order
            True
        """
        self._check_open()
        metadata = get_metadata(entity_type)
        id = self._coerce_id(metadata, id)

        instance = self._identity_map.get((entity_type, id))
        if instance is not None and self._entries[id_of(instance)].snapshot is not None:
            return instance  # type: ignore[return-value]

        roots = self._select(SelectStatement.by_id(metadata, id))
        if not roots:
            if instance is not None:
                self._forget(instance, metadata, id)
            return None
        return roots[0]  # type: ignore[return-value]

    def find_or_raise(self, entity_type: type[T], id: Any) -> T:
        """Load an entity by identifier, raise if not found.

        Example:
            >>> order = em.find_or_raise(Order, 1)
        """
        instance = self.find(entity_type, id)
        if instance is None:
            raise EntityNotFoundError(entity_type, id)
        return instance

    def get_reference(self, entity_type: type[T], id: Any) -> T:
        """Return an instance that loads itself on first attribute access.

        No query runs until a mapped attribute other than the identifier is
        read or written; that access runs exactly one query. A missing row
        raises EntityNotFoundError at that point.

        Example:
            >>> order = em.get_reference(Order, 1)   # no query
            >>> order.orderNumber                    # one query
            'A-1'
        """
        self._check_open()
        metadata = get_metadata(entity_type)
        id = self._coerce_id(metadata, id)
        key = (entity_type, id)
        instance = self._identity_map.get(key)
        if instance is not None:
            return instance  # type: ignore[return-value]

        instance = object.__new__(entity_type)
        object.__setattr__(instance, metadata.id_name, id)
        reference = LazyReference(
            partial(self._resolve_reference, instance, metadata, id),
            key=(entity_type.__name__, id),
        )
        object.__setattr__(instance, "_reference", reference)

        self._identity_map[key] = instance
        self._entries[id_of(instance)] = EntityEntry(instance, metadata, EntityState.MANAGED)
        return instance

    def persist(self, entity: Base) -> None:
        """Insert a transient entity and start managing it.

        Transient children of eager associations are inserted too, with the
        association's join column set to the new identifier.
        """
        self._check_open()
        metadata = get_metadata(type(entity))
        state = self.state_of(entity)
        if state is not EntityState.TRANSIENT:
            raise InvalidStateError(f"Cannot persist {entity!r}: entity is {state.value}")
        self._insert(entity, metadata, None)

    def merge(self, entity: Base) -> None:
        """Write changed field columns of an entity back to its row.

        A managed entity is diffed against its snapshot. An entity this
        context does not track is loaded by identifier first and its set
        field values are copied onto the managed instance. No statement runs
        when nothing differs.
        """
        self._check_open()
        metadata = get_metadata(type(entity))
        entry = self._entries.get(id_of(entity))

        if entry is not None:
            if entry.state is not EntityState.MANAGED:
                raise InvalidStateError(f"Cannot merge {entity!r}: entity is {entry.state.value}")
            self._update(entry)
            return

        id_value = metadata.id_value(entity)
        if id_value is None:
            raise InvalidStateError(f"Cannot merge {entity!r}: entity has no identifier")

        managed = self.find_or_raise(type(entity), id_value)
        assigned = entity.assigned_attributes()
        for column in metadata.field_columns():
            if column.field_name not in entity.__dict__:
                continue
            if assigned is not None and column.field_name not in assigned:
                # Constructor defaults never overwrite stored values
                continue
            setattr(managed, column.field_name, entity.__dict__[column.field_name])
        self._update(self._entries[id_of(managed)])

    def remove(self, entity: Base) -> None:
        """Delete a managed entity's row and stop managing it."""
        self._check_open()
        entry = self._entries.get(id_of(entity))
        if entry is None or entry.state is not EntityState.MANAGED:
            state = entry.state if entry is not None else self.state_of(entity)
            raise InvalidStateError(f"Cannot remove {entity!r}: entity is {state.value}")

        metadata = entry.metadata
        id_value = metadata.id_value(entity)
        self._run(DeleteStatement(metadata, id_value))

        self._identity_map.pop((metadata.entity_type, id_value), None)
        entry.state = EntityState.REMOVED
        logger.debug("entity_removed", entity=metadata.entity_type.__name__, id=id_value)

    # ========== Context Management ==========

    def contains(self, entity: Base) -> bool:
        """Check whether the entity is managed by this context."""
        entry = self._entries.get(id_of(entity))
        return entry is not None and entry.state is EntityState.MANAGED

    def state_of(self, entity: Base) -> EntityState:
        entry = self._entries.get(id_of(entity))
        if entry is not None:
            return entry.state
        if entity in self._detached:
            return EntityState.DETACHED
        return EntityState.TRANSIENT

    def detach(self, entity: Base) -> None:
        """Stop tracking an entity without touching the database."""
        entry = self._entries.pop(id_of(entity), None)
        if entry is None:
            return
        if entry.state is EntityState.MANAGED:
            self._identity_map.pop((entry.metadata.entity_type, entry.metadata.id_value(entity)), None)
        self._detached.add(entity)

    def flush(self) -> None:
        """Write every changed managed entity."""
        self._check_open()
        for entry in list(self._entries.values()):
            if entry.state is EntityState.MANAGED:
                self._update(entry)

    def clear(self) -> None:
        """Detach every tracked entity."""
        for entry in self._entries.values():
            self._detached.add(entry.instance)
        self._entries.clear()
        self._identity_map.clear()

    def close(self) -> None:
        """Detach everything and refuse further work, including lazy loads."""
        self.clear()
        self._closed = True

    # ========== Internal Methods ==========

    def _check_open(self) -> None:
        if self._closed:
            raise InvalidStateError("EntityManager is closed")

    def _coerce_id(self, metadata: EntityMetadata[Any], id: Any) -> Any:
        """Convert a caller's identifier to the mapped identifier type.

        Identity-map keys must equal the values the database returns, so
        ``"1"`` and ``1`` address the same ``int``-keyed entity.
        """
        id_type = metadata.id_type
        if id is None or id_type is None or isinstance(id, id_type):
            return id
        try:
            return id_type(id)
        except (TypeError, ValueError) as e:
            raise TypeError(
                f"{metadata.entity_type.__name__} identifier must be {id_type.__name__}, got {id!r}"
            ) from e

    def _forget(self, instance: Base, metadata: EntityMetadata[Any], id_value: Any) -> None:
        """Drop an unresolved reference whose row does not exist."""
        self._identity_map.pop((metadata.entity_type, id_value), None)
        self._entries.pop(id_of(instance), None)
        self._detached.add(instance)
        logger.debug("reference_dropped", entity=metadata.entity_type.__name__, id=id_value)

    def _execute(self, sql: str, params: list[Any]) -> QueryResult:
        logger.debug("statement_executing", sql=sql, params=params)
        try:
            return self._executor.execute(sql, params)
        except EntityKitError:
            raise
        except Exception as e:
            raise ExecutionError(f"Statement failed: {e}", sql=sql) from e

    def _run(self, statement: InsertStatement | UpdateStatement | DeleteStatement) -> QueryResult:
        sql, params = statement.to_sql(self._dialect)
        return self._execute(sql, params)

    def _select(self, statement: SelectStatement) -> list[Base]:
        """Run a joined SELECT and hydrate one root instance per root identifier."""
        sql, params = statement.to_sql(self._dialect)
        plan = statement.plan()
        result = self._execute(sql, params)

        roots: dict[Any, Base] = {}
        fresh: set[int] = set()
        linked: set[tuple[int, str, Any]] = set()
        for row in result.rows:
            self._hydrate_node(plan, row, None, roots, fresh, linked)
        return list(roots.values())

    def _hydrate_node(
        self,
        node: JoinNode,
        row: tuple[Any, ...],
        parent: Base | None,
        roots: dict[Any, Base],
        fresh: set[int],
        linked: set[tuple[int, str, Any]],
    ) -> None:
        id_value = row[node.id_offset]
        if id_value is None:
            # LEFT JOIN found no child for this parent
            return

        instance = self._materialize(node.metadata, row[node.start : node.start + node.width], fresh)

        if parent is None:
            roots.setdefault(id_value, instance)
        elif id_of(parent) in fresh:
            association = node.association
            assert association is not None
            link = (id_of(parent), association.field_name, id_value)
            if link not in linked:
                linked.add(link)
                parent.__dict__[association.field_name].append(instance)

        for child in node.children:
            self._hydrate_node(child, row, instance, roots, fresh, linked)

    def _materialize(self, metadata: EntityMetadata[Any], values: tuple[Any, ...], fresh: set[int]) -> Base:
        """Return the identity-mapped instance for a row slice, creating it if needed."""
        key = (metadata.entity_type, values[0])
        existing = self._identity_map.get(key)
        if existing is not None:
            entry = self._entries[id_of(existing)]
            if entry.snapshot is None:
                # Unresolved reference: fill it in place from this row
                self._populate(existing, metadata, values)
                entry.snapshot = metadata.snapshot(existing)
                fresh.add(id_of(existing))
            return existing

        instance = object.__new__(metadata.entity_type)
        self._populate(instance, metadata, values)
        self._register(instance, metadata)
        fresh.add(id_of(instance))
        return instance

    def _populate(self, instance: Base, metadata: EntityMetadata[Any], values: tuple[Any, ...]) -> None:
        remaining = iter(values)
        id_value = values[0]
        for column in metadata.columns():
            match column:
                case IdColumn() | FieldColumn():
                    object.__setattr__(instance, column.field_name, next(remaining))
                case OneToManyColumn() if column.is_lazy:
                    collection = LazyCollection(
                        partial(self._load_association, column, id_value),
                        key=(metadata.entity_type.__name__, id_value, column.field_name),
                    )
                    object.__setattr__(instance, column.field_name, collection)
                case OneToManyColumn():
                    object.__setattr__(instance, column.field_name, [])
                case _:
                    assert_never(column)
        object.__setattr__(instance, "_reference", None)

    def _register(self, instance: Base, metadata: EntityMetadata[Any]) -> None:
        self._identity_map[(metadata.entity_type, metadata.id_value(instance))] = instance
        self._entries[id_of(instance)] = EntityEntry(
            instance, metadata, EntityState.MANAGED, metadata.snapshot(instance)
        )
        self._detached.discard(instance)

    def _resolve_reference(self, instance: Base, metadata: EntityMetadata[Any], id_value: Any) -> Base:
        self._check_open()
        if id_of(instance) not in self._entries:
            raise InvalidStateError(f"Cannot load {instance!r}: reference is detached")
        roots = self._select(SelectStatement.by_id(metadata, id_value))
        if not roots:
            raise EntityNotFoundError(metadata.entity_type, id_value)
        logger.debug("reference_resolved", entity=metadata.entity_type.__name__, id=id_value)
        return instance

    def _load_association(self, association: OneToManyColumn, owner_id: Any) -> list[Base]:
        self._check_open()
        target = get_metadata(association.target_type)
        children = self._select(SelectStatement.by_join_column(target, association.join_column, owner_id))
        logger.debug(
            "association_loaded",
            association=f"{association.table_name}.{association.field_name}",
            owner_id=owner_id,
            count=len(children),
        )
        return children

    def _insert(self, entity: Base, metadata: EntityMetadata[Any], join: dict[str, Any] | None) -> None:
        id_column = metadata.id_column
        id_value = metadata.id_value(entity)
        if not id_column.generated:
            if id_value is None:
                raise InvalidStateError(f"Cannot persist {entity!r}: assigned identifier is not set")
            if (metadata.entity_type, id_value) in self._identity_map:
                raise InvalidStateError(f"Cannot persist {entity!r}: another instance with this identifier is managed")

        result = self._run(InsertStatement.for_instance(metadata, entity, join))

        if id_column.generated:
            row = result.first()
            id_value = row[id_column.column_name] if row is not None else result.lastrowid
            object.__setattr__(entity, id_column.field_name, id_value)

        # Unset insertable fields were written as NULL
        for column in metadata.field_columns():
            if column.is_insertable and column.field_name not in entity.__dict__:
                object.__setattr__(entity, column.field_name, None)

        self._register(entity, metadata)
        logger.debug("entity_persisted", entity=metadata.entity_type.__name__, id=id_value)

        for column in metadata.columns():
            match column:
                case IdColumn() | FieldColumn():
                    pass
                case OneToManyColumn() if column.is_eager:
                    target = get_metadata(column.target_type)
                    for child in column.value_of(entity) or []:
                        if not isinstance(child, column.target_type):
                            raise TypeError(
                                f"{metadata.entity_type.__name__}.{column.field_name} holds {child!r}, "
                                f"expected {column.target_type.__name__}"
                            )
                        if self.state_of(child) is EntityState.TRANSIENT:
                            self._insert(child, target, {column.join_column: id_value})
                case OneToManyColumn():
                    # Lazy associations keep their collection as given; children are not cascaded
                    pass
                case _:
                    assert_never(column)

    def _update(self, entry: EntityEntry) -> None:
        if entry.snapshot is None:
            # An unresolved reference loads itself before any write, so it is clean
            return

        statement = UpdateStatement.for_changes(entry.metadata, entry.snapshot, entry.instance)
        if statement is None:
            return

        self._run(statement)
        entry.snapshot = entry.metadata.snapshot(entry.instance)
        logger.debug(
            "entity_merged",
            entity=entry.metadata.entity_type.__name__,
            id=statement.id,
            columns=list(statement.changes),
        )


def id_of(instance: object) -> int:
    """Object identity used to key entries; entries hold the instance alive."""
    return id(instance)
