"""Column and association declarations for entity classes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class Mapped(Generic[T]):
    """Type annotation wrapper indicating a mapped attribute.

    Example:
        >>> @entity
        ... class User(Base):
        ...     id: Mapped[int] = mapped_column(primary_key=True)
        ...     name: Mapped[str]
        ...     age: Mapped[int | None]
    """

    pass


class FetchType(str, Enum):
    """How a one-to-many association is loaded alongside its owner."""

    LAZY = "lazy"
    EAGER = "eager"


@dataclass
class ColumnInfo:
    """Declared options for a single mapped attribute."""

    name: str | None = None  # SQL column name, defaults to the attribute name
    attr_name: str | None = None
    primary_key: bool = False
    nullable: bool = False
    insertable: bool = True
    generated: bool = False  # identifier assigned by the database

    @property
    def column_name(self) -> str:
        return self.name or self.attr_name or ""


@dataclass
class OneToManyInfo:
    """Declared one-to-many association.

    ``target`` may be the entity class itself or its class name, so that
    associations can point at classes defined further down a module.
    """

    target: type | str
    join_column: str
    fetch: FetchType = FetchType.EAGER
    attr_name: str | None = None

    @property
    def target_name(self) -> str:
        return self.target if isinstance(self.target, str) else self.target.__name__


def mapped_column(
    name: str | None = None,
    /,
    *,
    primary_key: bool = False,
    nullable: bool = False,
    insertable: bool = True,
    generated: bool | None = None,
) -> Any:
    """Declare a mapped column.

    Args:
        name: SQL column name, if it differs from the attribute name
        primary_key: Whether this attribute is the entity identifier
        nullable: Whether NULL values are allowed
        insertable: Whether the column is written by INSERT statements
        generated: Whether the database assigns the identifier value
            (defaults to True for primary keys)

    Returns:
        A ColumnInfo declaration

    Example:
        >>> id: Mapped[int] = mapped_column(primary_key=True)
        >>> column: Mapped[str] = mapped_column("test_column")
        >>> created_at: Mapped[str] = mapped_column(insertable=False)
    """
    if primary_key:
        nullable = False
        if generated is None:
            generated = True

    return ColumnInfo(
        name=name,
        primary_key=primary_key,
        nullable=nullable,
        insertable=insertable,
        generated=bool(generated),
    )


def one_to_many(
    target: type | str,
    *,
    join_column: str,
    fetch: FetchType | str = FetchType.EAGER,
) -> Any:
    """Declare a one-to-many association.

    Args:
        target: The associated entity class, or its class name
        join_column: Foreign key column on the target table that holds the
            owner's identifier
        fetch: ``FetchType.EAGER`` (default) joins the association into the
            owner's SELECT, ``FetchType.LAZY`` loads it on first access

    Example:
        >>> @entity
        ... class Order(Base):
        ...     __tablename__ = "orders"
        ...     id: Mapped[int] = mapped_column(primary_key=True)
        ...     items: Mapped[list[OrderItem]] = one_to_many(
        ...         "OrderItem", join_column="order_id", fetch=FetchType.LAZY
        ...     )
    """
    return OneToManyInfo(target=target, join_column=join_column, fetch=FetchType(fetch))
