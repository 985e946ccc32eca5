"""Mapped column kinds.

A column is exactly one of ``IdColumn``, ``FieldColumn`` or
``OneToManyColumn``. Code that branches on the kind matches all three and
ends with ``assert_never`` so a new kind cannot slip through unhandled.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from entitykit.fields import FetchType


@dataclass(frozen=True)
class IdColumn:
    """The identifier column of an entity."""

    column_name: str
    field_name: str
    table_name: str
    python_type: type | None = None
    generated: bool = True

    @property
    def nullable(self) -> bool:
        return False

    @property
    def is_insertable(self) -> bool:
        # Generated identifiers are assigned by the database
        return not self.generated

    @property
    def is_association(self) -> bool:
        return False

    @property
    def alias(self) -> str:
        return f"{self.table_name}.{self.column_name}"

    def value_of(self, instance: Any) -> Any:
        return instance.__dict__.get(self.field_name)


@dataclass(frozen=True)
class FieldColumn:
    """A plain mapped attribute."""

    column_name: str
    field_name: str
    table_name: str
    python_type: type | None = None
    nullable: bool = False
    insertable: bool = True

    @property
    def is_insertable(self) -> bool:
        return self.insertable

    @property
    def is_association(self) -> bool:
        return False

    @property
    def alias(self) -> str:
        return f"{self.table_name}.{self.column_name}"

    def value_of(self, instance: Any) -> Any:
        return getattr(instance, self.field_name, None)


@dataclass(frozen=True)
class OneToManyColumn:
    """A one-to-many association held as a collection attribute.

    ``join_column`` lives on the target table and holds the owner's
    identifier.
    """

    field_name: str
    table_name: str
    target_type: type
    join_column: str
    fetch: FetchType = FetchType.EAGER

    @property
    def column_name(self) -> str:
        return self.field_name

    @property
    def is_insertable(self) -> bool:
        return False

    @property
    def is_association(self) -> bool:
        return True

    @property
    def is_lazy(self) -> bool:
        return self.fetch is FetchType.LAZY

    @property
    def is_eager(self) -> bool:
        return self.fetch is FetchType.EAGER

    def value_of(self, instance: Any) -> Any:
        return instance.__dict__.get(self.field_name)


Column = IdColumn | FieldColumn | OneToManyColumn
