"""A fixed-size chained hash table keyed by strings."""

from __future__ import annotations

from typing import Any

PRIME_HASH = 131


def key_hash(key: str, modulo: int) -> int:
    """Polynomial string hash reduced modulo ``modulo``."""
    if modulo <= 0:
        raise ValueError("modulo must be positive")
    value = 0
    for byte in key.encode():
        value = (PRIME_HASH * value + byte) % modulo
    return value


class HashTable:
    """Hash table with separate chaining; newer entries shadow older ones."""

    def __init__(self, size: int) -> None:
        if size <= 0:
            raise ValueError("size must be positive")
        self.size = size
        self._buckets: list[list[tuple[str, Any]]] = [[] for _ in range(size)]

    def insert(self, key: str, value: Any) -> None:
        """Add an entry at the head of its bucket."""
        self._buckets[key_hash(key, self.size)].insert(0, (key, value))

    def search(self, key: str) -> Any | None:
        """Return the most recently inserted value for ``key``, or None."""
        for stored_key, value in self._buckets[key_hash(key, self.size)]:
            if stored_key == key:
                return value
        return None