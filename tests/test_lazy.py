"""Tests for deferred loading primitives."""

import threading
import time

import pytest

from entitykit import InvalidStateError, LazyCollection, LazyReference, LoadState


class Counter:
    """Loader that counts its invocations."""

    def __init__(self, value):
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.value


class TestLazyReference:
    def test_loads_once(self) -> None:
        loader = Counter(42)
        reference = LazyReference(loader, key="answer")
        assert reference.state is LoadState.UNLOADED
        assert not reference.is_loaded()

        assert reference.get() == 42
        assert reference.get() == 42
        assert loader.calls == 1
        assert reference.state is LoadState.LOADED

    def test_failed_load_can_be_retried(self) -> None:
        attempts = []

        def loader():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("database unavailable")
            return "ok"

        reference = LazyReference(loader)
        with pytest.raises(RuntimeError):
            reference.get()
        assert reference.state is LoadState.UNLOADED

        assert reference.get() == "ok"
        assert len(attempts) == 2

    def test_reentrant_access_is_rejected(self) -> None:
        reference: LazyReference[int] = LazyReference(lambda: reference.get(), key="self")
        with pytest.raises(InvalidStateError, match="being loaded"):
            reference.get()
        assert reference.state is LoadState.UNLOADED

    def test_concurrent_get_loads_once(self) -> None:
        calls = []

        def slow_loader():
            calls.append(1)
            time.sleep(0.05)
            return "value"

        reference = LazyReference(slow_loader)
        results = []
        threads = [threading.Thread(target=lambda: results.append(reference.get())) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results == ["value"] * 8
        assert len(calls) == 1

    def test_repr_does_not_load(self) -> None:
        loader = Counter(1)
        reference = LazyReference(loader, key=("Order", 1))
        assert "unloaded" in repr(reference)
        assert loader.calls == 0


class TestLazyCollection:
    def test_repr_and_state_do_not_load(self) -> None:
        loader = Counter([1, 2])
        collection = LazyCollection(loader, key="items")
        assert "unloaded" in repr(collection)
        assert not collection.is_loaded()
        assert collection.state is LoadState.UNLOADED
        assert loader.calls == 0

    def test_first_read_loads(self) -> None:
        loader = Counter([1, 2, 3])
        collection = LazyCollection(loader)
        assert len(collection) == 3
        assert collection[0] == 1
        assert list(collection) == [1, 2, 3]
        assert collection[1:] == [2, 3]
        assert 2 in collection
        assert loader.calls == 1
        assert collection.is_loaded()

    def test_mutation(self) -> None:
        collection = LazyCollection(Counter([1]))
        collection.append(2)
        collection[0] = 0
        del collection[1]
        assert collection == [0]

    def test_equality(self) -> None:
        assert LazyCollection(Counter([1, 2])) == LazyCollection(Counter([1, 2]))
        assert LazyCollection(Counter([1])) != [2]
