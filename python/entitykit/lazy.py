"""Deferred loading for entity references and lazy associations."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator, MutableSequence
from enum import Enum
from typing import Any, Generic, TypeVar, overload

from entitykit.exceptions import InvalidStateError

T = TypeVar("T")


class LoadState(Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"


class LazyReference(Generic[T]):
    """A value that is loaded once, on first ``get()``.

    Moves ``UNLOADED -> LOADING -> LOADED``. The loader runs at most once per
    successful load; a failed load returns the reference to ``UNLOADED`` so
    the error surfaces again on the next access. A nested ``get()`` from
    inside the loader raises ``InvalidStateError``.
    """

    __slots__ = ("key", "_loader", "_value", "_state", "_lock")

    def __init__(self, loader: Callable[[], T], key: Any = None) -> None:
        self.key = key
        self._loader: Callable[[], T] | None = loader
        self._value: T | None = None
        self._state = LoadState.UNLOADED
        self._lock = threading.RLock()

    def __repr__(self) -> str:
        return f"<LazyReference {self.key!r} {self._state.value}>"

    @property
    def state(self) -> LoadState:
        return self._state

    def is_loaded(self) -> bool:
        return self._state is LoadState.LOADED

    def get(self) -> T:
        if self._state is LoadState.LOADED:
            return self._value  # type: ignore[return-value]

        with self._lock:
            if self._state is LoadState.LOADED:  # Double-check
                return self._value  # type: ignore[return-value]
            if self._state is LoadState.LOADING:
                raise InvalidStateError(f"{self.key!r} was accessed while it is being loaded")

            assert self._loader is not None
            self._state = LoadState.LOADING
            try:
                value = self._loader()
            except BaseException:
                self._state = LoadState.UNLOADED
                raise
            self._value = value
            self._loader = None
            self._state = LoadState.LOADED
        return value


class LazyCollection(MutableSequence[T]):
    """List-like association collection loaded on first use.

    Any read or write of the collection resolves the underlying reference;
    ``repr()`` and ``is_loaded()`` do not.

    Example:
        >>> order = em.find(Order, 1)      # one query, items not loaded
        >>> order.items.is_loaded()
        False
        >>> len(order.items)               # second query loads the items
        2
    """

    def __init__(self, loader: Callable[[], list[T]], key: Any = None) -> None:
        self._reference: LazyReference[list[T]] = LazyReference(loader, key)

    def __repr__(self) -> str:
        if not self._reference.is_loaded():
            return f"<LazyCollection {self._reference.key!r} unloaded>"
        return f"<LazyCollection {self._reference.get()!r}>"

    def is_loaded(self) -> bool:
        return self._reference.is_loaded()

    @property
    def state(self) -> LoadState:
        return self._reference.state

    def _items(self) -> list[T]:
        return self._reference.get()

    @overload
    def __getitem__(self, index: int) -> T: ...
    @overload
    def __getitem__(self, index: slice) -> list[T]: ...
    def __getitem__(self, index: int | slice) -> T | list[T]:
        return self._items()[index]

    def __setitem__(self, index: Any, value: Any) -> None:
        self._items()[index] = value

    def __delitem__(self, index: int | slice) -> None:
        del self._items()[index]

    def __len__(self) -> int:
        return len(self._items())

    def __iter__(self) -> Iterator[T]:
        return iter(self._items())

    def __eq__(self, other: object) -> bool:
        if isinstance(other, LazyCollection):
            return self._items() == other._items()
        if isinstance(other, list):
            return self._items() == other
        return NotImplemented

    def insert(self, index: int, value: T) -> None:
        self._items().insert(index, value)
