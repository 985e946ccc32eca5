"""Exceptions raised by entitykit."""

from __future__ import annotations


class EntityKitError(Exception):
    """Base class for all entitykit errors."""


class MappingError(EntityKitError):
    """An entity class cannot be turned into a schema descriptor.

    Raised the first time the offending class is used: missing ``@entity``
    marker, zero or several identifier columns, two attributes mapped to the
    same column name, or an association pointing at an unknown entity.
    """


class ExecutionError(EntityKitError):
    """The statement executor failed to run a statement."""

    def __init__(self, message: str, sql: str | None = None) -> None:
        super().__init__(message)
        self.sql = sql


class EntityNotFoundError(EntityKitError, LookupError):
    """No row exists for the requested identifier."""

    def __init__(self, entity_type: type, id: object) -> None:
        super().__init__(f"{entity_type.__name__} with id={id!r} not found")
        self.entity_type = entity_type
        self.id = id


class InvalidStateError(EntityKitError):
    """An operation was attempted on an entity in the wrong lifecycle state."""
