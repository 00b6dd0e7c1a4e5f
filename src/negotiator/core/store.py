"""Key-value store abstraction backing every service.

Services only use the methods on ``KeyValueStore``, so a durable backend can
replace ``MemoryStore`` without touching them. Entities reference each other
by id, never by holding live objects.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Generic, Protocol, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class KeyValueStore(Protocol[K, V]):
    def get(self, key: K) -> V | None: ...

    def put(self, key: K, value: V) -> None: ...

    def delete(self, key: K) -> bool: ...

    def __contains__(self, key: object) -> bool: ...

    def __len__(self) -> int: ...

    def keys(self) -> list[K]: ...

    def values(self) -> list[V]: ...

    def items(self) -> list[tuple[K, V]]: ...


class MemoryStore(Generic[K, V]):
    """Insertion-ordered in-memory table."""

    def __init__(self) -> None:
        self._data: dict[K, V] = {}

    def get(self, key: K) -> V | None:
        return self._data.get(key)

    def put(self, key: K, value: V) -> None:
        self._data[key] = value

    def delete(self, key: K) -> bool:
        return self._data.pop(key, None) is not None

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[K]:
        return iter(list(self._data))

    def keys(self) -> list[K]:
        return list(self._data)

    def values(self) -> list[V]:
        return list(self._data.values())

    def items(self) -> list[tuple[K, V]]:
        return list(self._data.items())

    def filter(self, predicate: Callable[[V], bool]) -> list[V]:
        return [v for v in self._data.values() if predicate(v)]

    def clear(self) -> None:
        self._data.clear()
