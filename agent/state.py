"""Key-value tables for active sessions, tool contexts and playbook executions.

The agent loop and playbook engine only depend on the ``KeyValueStore``
protocol, so a distributed store can replace ``InMemoryStore`` without
touching orchestration code.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Generic, Protocol, TypeVar

V = TypeVar("V")


class KeyValueStore(Protocol[V]):
    def get(self, key: str) -> V | None: ...

    def put(self, key: str, value: V) -> None: ...

    def put_if_absent(self, key: str, factory: Callable[[], V]) -> V: ...

    def remove(self, key: str) -> V | None: ...

    def items(self) -> list[tuple[str, V]]: ...

    def __contains__(self, key: object) -> bool: ...

    def __len__(self) -> int: ...


class InMemoryStore(Generic[V]):
    """Thread-safe dict with insert-if-absent semantics."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, V] = {}

    def get(self, key: str) -> V | None:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, value: V) -> None:
        with self._lock:
            self._data[key] = value

    def put_if_absent(self, key: str, factory: Callable[[], V]) -> V:
        """Return the existing value for *key*, creating it with *factory* if missing."""
        with self._lock:
            existing = self._data.get(key)
            if existing is None:
                existing = factory()
                self._data[key] = existing
            return existing

    def remove(self, key: str) -> V | None:
        with self._lock:
            return self._data.pop(key, None)

    def items(self) -> list[tuple[str, V]]:
        with self._lock:
            return list(self._data.items())

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
