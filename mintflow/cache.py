"""
Bounded in-memory cache with a pluggable eviction policy.

Owned by the object that uses it (never module-global), so tests and
long-running hosts can reset it with clear(). Not synchronized: safe only
when mutated from a single event loop.
"""

from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Generic, Hashable, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class EvictionPolicy(ABC):
    """Chooses which key to drop when the cache is full."""

    @abstractmethod
    def select_victim(self, entries: "OrderedDict") -> Hashable:
        ...

    def on_access(self, entries: "OrderedDict", key: Hashable) -> None:
        """Hook for recency-aware policies. Insertion-order policies ignore it."""
        return None


class OldestFirstEviction(EvictionPolicy):
    """Evict the entry inserted first."""

    def select_victim(self, entries: "OrderedDict") -> Hashable:
        return next(iter(entries))


class LeastRecentlyUsedEviction(EvictionPolicy):
    """Evict the entry read or written least recently."""

    def select_victim(self, entries: "OrderedDict") -> Hashable:
        return next(iter(entries))

    def on_access(self, entries: "OrderedDict", key: Hashable) -> None:
        entries.move_to_end(key)


class BoundedCache(Generic[K, V]):

    def __init__(self, max_size: int = 100, eviction: Optional[EvictionPolicy] = None):
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self._max_size = max_size
        self._eviction = eviction or OldestFirstEviction()
        self._entries: OrderedDict = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: K) -> Optional[V]:
        if key not in self._entries:
            self.misses += 1
            return None
        self.hits += 1
        self._eviction.on_access(self._entries, key)
        return self._entries[key]

    def set(self, key: K, value: V) -> None:
        if key in self._entries:
            self._entries[key] = value
            self._eviction.on_access(self._entries, key)
            return
        while len(self._entries) >= self._max_size:
            victim = self._eviction.select_victim(self._entries)
            del self._entries[victim]
        self._entries[key] = value

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def max_size(self) -> int:
        return self._max_size
