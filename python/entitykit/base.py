"""Declarative base and entity marker for mapped classes."""

from __future__ import annotations

import inspect
import sys
import types
import typing
from typing import Any, ClassVar, get_type_hints

import structlog

from entitykit.exceptions import MappingError
from entitykit.fields import ColumnInfo, Mapped, OneToManyInfo

logger = structlog.get_logger(__name__)

# Entity registry - maps class names to entity classes for association lookup
_model_registry: dict[str, type[Base]] = {}


def register_model(model_cls: type[Base]) -> None:
    """Register an entity class for association resolution."""
    existing = _model_registry.get(model_cls.__name__)
    if existing is not None and existing is not model_cls:
        logger.debug(
            "entity_registration_replaced",
            entity=model_cls.__name__,
            previous_module=existing.__module__,
            module=model_cls.__module__,
        )
    _model_registry[model_cls.__name__] = model_cls


def get_model(name: str) -> type[Base] | None:
    """Get an entity class by class name."""
    return _model_registry.get(name)


def entity(cls: type[Base]) -> type[Base]:
    """Mark a ``Base`` subclass as a mapped entity.

    Example:
        >>> @entity
        ... class Person(Base):
        ...     __tablename__ = "person1"
        ...     id: Mapped[int] = mapped_column(primary_key=True)
        ...     name: Mapped[str]
    """
    if not isinstance(cls, ModelMeta):
        raise MappingError(f"{cls.__name__} must derive from entitykit.Base to be an entity")
    cls.__entity__ = True  # type: ignore[attr-defined]
    register_model(cls)
    return cls


def is_entity(cls: type) -> bool:
    """Check whether a class carries the entity marker itself (not inherited)."""
    return isinstance(cls, ModelMeta) and cls.__dict__.get("__entity__", False) is True


class ModelMeta(type):
    """Metaclass that collects column and association declarations.

    Declarations are gathered in declaration order into ``__declarations__``
    and removed from the class namespace, so that unset attributes fall
    through to ``Base.__getattr__``.
    """

    def __new__(
        mcs,
        name: str,
        bases: tuple[type, ...],
        namespace: dict[str, Any],
        **kwargs: Any,
    ) -> ModelMeta:
        cls = super().__new__(mcs, name, bases, namespace, **kwargs)

        # Skip processing for the Base class itself
        if name == "Base" and not bases:
            cls.__declarations__ = {}  # type: ignore[attr-defined]
            return cls

        declarations: dict[str, ColumnInfo | OneToManyInfo] = {}
        annotations = inspect.get_annotations(cls)

        for attr_name, hint in annotations.items():
            if attr_name.startswith("_"):
                continue
            value = namespace.get(attr_name)
            if isinstance(value, (ColumnInfo, OneToManyInfo)):
                declarations[attr_name] = value
            elif "Mapped" in str(hint) and "ClassVar" not in str(hint):
                # Bare Mapped[T] annotation maps a plain field column
                declarations[attr_name] = ColumnInfo()

            declaration = declarations.get(attr_name)
            if isinstance(declaration, ColumnInfo) and not declaration.primary_key and _is_optional_hint(hint):
                declaration.nullable = True

        # Declarations assigned without an annotation
        for attr_name, value in namespace.items():
            if attr_name.startswith("_") or attr_name in declarations:
                continue
            if isinstance(value, (ColumnInfo, OneToManyInfo)):
                declarations[attr_name] = value

        for attr_name, declaration in declarations.items():
            declaration.attr_name = attr_name
            if attr_name in namespace:
                delattr(cls, attr_name)

        cls.__declarations__ = declarations  # type: ignore[attr-defined]
        return cls


def _is_optional_hint(hint: Any) -> bool:
    """Check whether a (possibly stringified) ``Mapped[...]`` hint admits None."""
    text = str(hint)
    return "None" in text or "Optional[" in text


def resolve_field_types(cls: type[Base]) -> dict[str, tuple[type | None, bool]]:
    """Resolve ``Mapped[T]`` annotations to ``(python_type, optional)`` pairs.

    Resolution happens lazily, once every entity of the module is defined, so
    forward references between entities resolve. Unresolvable annotations
    yield ``(None, False)``.
    """
    module = sys.modules.get(cls.__module__, None)
    globalns = dict(getattr(module, "__dict__", {})) if module else {}
    globalns["ClassVar"] = ClassVar
    globalns["Any"] = Any
    globalns["Mapped"] = Mapped
    globalns.update(_model_registry)
    try:
        hints = get_type_hints(cls, globalns=globalns, localns={})
    except Exception:
        hints = {}

    return {
        attr_name: _unwrap_mapped(hints[attr_name]) if attr_name in hints else (None, False)
        for attr_name in cls.__declarations__
    }


def _unwrap_mapped(hint: Any) -> tuple[type | None, bool]:
    """Extract the inner type from ``Mapped[T]`` and whether it is optional."""
    if typing.get_origin(hint) is Mapped:
        args = typing.get_args(hint)
        hint = args[0] if args else None

    origin = typing.get_origin(hint)
    if origin is typing.Union or origin is types.UnionType:
        non_none = [a for a in typing.get_args(hint) if a is not type(None)]
        optional = len(non_none) != len(typing.get_args(hint))
        inner = non_none[0] if len(non_none) == 1 else None
        return (inner if isinstance(inner, type) else None), optional
    if origin is not None:
        return origin, False
    return (hint if isinstance(hint, type) else None), False


class Base(metaclass=ModelMeta):
    """Base class for all mapped entities.

    Example:
        >>> @entity
        ... class User(Base):
        ...     __tablename__ = "users"
        ...     id: Mapped[int] = mapped_column(primary_key=True)
        ...     name: Mapped[str]
    """

    __declarations__: ClassVar[dict[str, Any]]

    def __init__(self, **kwargs: Any) -> None:
        """Initialize an entity instance with the given attribute values.

        Defaults (``None`` for nullable columns and the identifier, ``[]`` for
        associations) are not counted as assigned; see ``assigned_attributes()``.
        """
        declarations = type(self).__declarations__
        object.__setattr__(self, "_reference", None)
        object.__setattr__(self, "_assigned", set())

        for key, value in kwargs.items():
            if key not in declarations:
                raise TypeError(f"Unknown column or association: {key}")
            setattr(self, key, value)

        for attr_name, declaration in declarations.items():
            if attr_name in kwargs:
                continue
            if isinstance(declaration, OneToManyInfo):
                object.__setattr__(self, attr_name, [])
            elif declaration.nullable or declaration.primary_key:
                object.__setattr__(self, attr_name, None)
            # Required columns without a value stay unset until assigned

    def __repr__(self) -> str:
        for attr_name, declaration in type(self).__declarations__.items():
            if isinstance(declaration, ColumnInfo) and declaration.primary_key:
                return f"<{type(self).__name__} {attr_name}={self.__dict__.get(attr_name)!r}>"
        return f"<{type(self).__name__}>"

    def __getattr__(self, name: str) -> Any:
        """Resolve an unloaded reference on first access to a mapped attribute."""
        if name.startswith("_"):
            raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

        reference = self.__dict__.get("_reference")
        if reference is not None and not reference.is_loaded():
            reference.get()
            if name in self.__dict__:
                return self.__dict__[name]

        if name in type(self).__declarations__:
            raise AttributeError(f"'{type(self).__name__}' attribute '{name}' has not been set")
        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        # Writing through an unloaded reference loads it first so the
        # database state cannot overwrite the new value afterwards
        if not name.startswith("_"):
            reference = self.__dict__.get("_reference")
            if reference is not None and not reference.is_loaded():
                reference.get()
            assigned = self.__dict__.get("_assigned")
            if assigned is not None:
                assigned.add(name)
        object.__setattr__(self, name, value)

    def assigned_attributes(self) -> set[str] | None:
        """Names assigned since construction, or None for a loaded instance.

        Instances built with ``__init__`` track their assignments. Instances
        hydrated from a row hold every column value and return None.
        """
        assigned = self.__dict__.get("_assigned")
        return set(assigned) if assigned is not None else None

    def to_dict(self) -> dict[str, Any]:
        """Convert the mapped column values of this instance to a dictionary."""
        result = {}
        for attr_name, declaration in type(self).__declarations__.items():
            if isinstance(declaration, ColumnInfo) and hasattr(self, attr_name):
                result[attr_name] = getattr(self, attr_name)
        return result
