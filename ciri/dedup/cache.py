"""
Dedup Cache Module

Bounded, per-chat "already posted" sets used to avoid sending the same
gallery item twice. Each chat (scope) keeps its own FIFO window of ids.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Iterable, Iterator, Optional

from ciri.errors import CapacityInvariantViolation

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 128


class BoundedDedupSet:
    """
    Fixed-capacity set of seen ids with FIFO eviction.

    The deque keeps insertion order (oldest first), the set is a derived
    membership index over the same ids. Re-inserting a known id does not
    refresh it: this is a "seen before" window, not an LRU.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._order: deque[int] = deque()
        self._index: set[int] = set()

    @classmethod
    def from_sequence(
        cls, items: Iterable[int], capacity: int = DEFAULT_CAPACITY
    ) -> "BoundedDedupSet":
        """
        Build a set from a persisted sequence (oldest first).

        Duplicates keep their first position, and only the newest
        `capacity` entries survive.
        """
        dedup = cls(capacity)
        seen: set[int] = set()
        ordered = []
        for item in items:
            if item not in seen:
                seen.add(item)
                ordered.append(item)
        dedup._order.extend(ordered[-capacity:])
        dedup.rebuild_index()
        return dedup

    @property
    def capacity(self) -> int:
        return self._capacity

    def contains(self, item: int) -> bool:
        return item in self._index

    def insert(self, item: int) -> Optional[int]:
        """
        Remember `item`. Returns the evicted id when the window was full.

        No-op (returns None) if `item` is already present.
        """
        if item in self._index:
            return None

        evicted = None
        if len(self._order) >= self._capacity:
            evicted = self._order.popleft()
            self._index.discard(evicted)

        self._order.append(item)
        self._index.add(item)

        if __debug__:
            self._check_invariant()
        return evicted

    def clear(self) -> None:
        self._order.clear()
        self._index.clear()

    def rebuild_index(self) -> None:
        """Recompute the membership index from the ordered sequence."""
        self._index = set(self._order)
        if __debug__:
            self._check_invariant()

    def to_list(self) -> list[int]:
        return list(self._order)

    def _check_invariant(self) -> None:
        if len(self._order) > self._capacity:
            raise CapacityInvariantViolation(
                f"{len(self._order)} entries exceed capacity {self._capacity}"
            )
        if len(self._order) != len(self._index):
            raise CapacityInvariantViolation(
                f"sequence has {len(self._order)} entries, index has {len(self._index)}"
            )

    def __contains__(self, item: object) -> bool:
        return item in self._index

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self) -> Iterator[int]:
        return iter(self._order)

    def __repr__(self) -> str:
        return f"BoundedDedupSet(capacity={self._capacity}, size={len(self)})"


class ScopedCache:
    """
    Per-scope dedup sets behind one coarse lock.

    Scopes are created on first insert and never removed. The lock is
    held only for in-memory work; callers persist a `snapshot()` outside it.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._scopes: dict[int, BoundedDedupSet] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_snapshot(
        cls, data: dict[int, Iterable[int]], capacity: int = DEFAULT_CAPACITY
    ) -> "ScopedCache":
        """Rebuild a cache from `{scope: [ids oldest first]}`."""
        cache = cls(capacity)
        for scope, items in data.items():
            dedup = BoundedDedupSet.from_sequence(items, capacity)
            if len(dedup):
                cache._scopes[scope] = dedup
        return cache

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def scope_count(self) -> int:
        with self._lock:
            return len(self._scopes)

    def scopes(self) -> list[int]:
        with self._lock:
            return list(self._scopes)

    def contains(self, scope: int, item: int) -> bool:
        with self._lock:
            dedup = self._scopes.get(scope)
            return dedup is not None and item in dedup

    def insert(self, scope: int, item: int) -> Optional[int]:
        """Remember `item` for `scope`, returning the evicted id if any."""
        with self._lock:
            dedup = self._scopes.get(scope)
            if dedup is None:
                dedup = BoundedDedupSet(self._capacity)
                self._scopes[scope] = dedup
                logger.debug(f"New dedup scope: {scope}")
            evicted = dedup.insert(item)

        if evicted is not None:
            logger.debug(f"Scope {scope}: evicted {evicted} for {item}")
        return evicted

    def filter_unseen(self, scope: int, items: Iterable[int]) -> list[int]:
        """Return the ids from `items` that `scope` has not seen yet."""
        with self._lock:
            dedup = self._scopes.get(scope)
            if dedup is None:
                return list(items)
            return [i for i in items if i not in dedup]

    def total_entries(self) -> int:
        with self._lock:
            return sum(len(d) for d in self._scopes.values())

    def snapshot(self) -> dict[int, list[int]]:
        """Consistent copy of all non-empty scopes, safe to serialize unlocked."""
        with self._lock:
            return {
                scope: dedup.to_list()
                for scope, dedup in self._scopes.items()
                if len(dedup)
            }

    def __repr__(self) -> str:
        return (
            f"ScopedCache(capacity={self._capacity}, "
            f"scopes={self.scope_count}, entries={self.total_entries()})"
        )
