import threading
from collections.abc import Hashable, Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")
T = TypeVar("T", bound=Hashable)


class InMemoryKeyValueDatabase(Generic[K, V]):
    """
    Simple in-memory key/value database.

    Every primitive runs under one re-entrant lock, so a caller can hold
    `locked()` across a read-check-write sequence and see no interleaving.
    """

    def __init__(self) -> None:
        self._store: MutableMapping[K, V] = {}
        self._lock = threading.RLock()

    @contextmanager
    def locked(self) -> Iterator[None]:
        with self._lock:
            yield

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._store[key] = value

    def put_many(self, items: Mapping[K, V]) -> None:
        """
        Write several keys as one step. Readers see either none or all of them.
        """
        with self._lock:
            self._store.update(items)

    def get(self, key: K) -> V | None:
        with self._lock:
            return self._store.get(key)

    def delete(self, key: K) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    def all(self) -> list[V]:
        with self._lock:
            return list(self._store.values())


class KeyedLocks(Generic[T]):
    """
    Registry of named mutexes. `hold(*keys)` acquires every lock in sorted
    order and releases in reverse, so two callers asking for overlapping key
    sets cannot deadlock.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[T, threading.Lock] = {}

    def _lock_for(self, key: T) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, *keys: T) -> Iterator[None]:
        ordered = sorted(set(keys))
        acquired: list[threading.Lock] = []
        try:
            for key in ordered:
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
