"""
Query cache keyed by (query name, canonical parameters)

Entries are written only by a completed fetch for their own key and cleared
only by invalidation. A key with fetches in flight carries a generation
counter: invalidation bumps it, and a fetch that started under an older
generation cannot write. Counters are dropped once the last fetch ends.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Literal, Optional, Tuple

Status = Literal["success", "error"]


@dataclass(frozen=True)
class QueryKey:
    """Structured cache key"""
    name: str
    params: Tuple = ()

    @classmethod
    def of(cls, name: str, *params: Any) -> "QueryKey":
        return cls(name, tuple(str(p) for p in params))


@dataclass
class CacheEntry:
    status: Status
    value: Any = None
    error: Optional[BaseException] = None
    fetched_at: float = 0.0

    def age(self, now: float) -> float:
        return now - self.fetched_at


class QueryCache:
    """In-memory cache owned by one FundsCycleContext."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[QueryKey, CacheEntry] = {}
        self._generations: Dict[QueryKey, int] = {}
        self._in_flight: Dict[QueryKey, int] = {}
        self.clock = clock

    def get(self, key: QueryKey) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def generation(self, key: QueryKey) -> int:
        return self._generations.get(key, 0)

    def begin(self, key: QueryKey) -> int:
        """Register a fetch for key and return the generation it runs under."""
        self._in_flight[key] = self._in_flight.get(key, 0) + 1
        return self._generations.setdefault(key, 0)

    def end(self, key: QueryKey) -> None:
        """Unregister a fetch started with begin()."""
        remaining = self._in_flight.get(key, 0) - 1
        if remaining > 0:
            self._in_flight[key] = remaining
        else:
            self._in_flight.pop(key, None)
            self._generations.pop(key, None)

    def in_flight(self, key: QueryKey) -> bool:
        return key in self._in_flight

    def write(self, key: QueryKey, entry: CacheEntry, generation: int) -> bool:
        """
        Store an entry if no invalidation happened since the fetch began.

        Returns:
            True if written
        """
        if self.generation(key) != generation:
            return False
        self._entries[key] = entry
        return True

    def set_success(self, key: QueryKey, value: Any, generation: int) -> bool:
        return self.write(key, CacheEntry("success", value=value, fetched_at=self.clock()), generation)

    def set_error(self, key: QueryKey, error: BaseException, generation: int) -> bool:
        return self.write(key, CacheEntry("error", error=error, fetched_at=self.clock()), generation)

    def invalidate(self, keys: Iterable[QueryKey]) -> int:
        """Drop the given keys. Returns the number of entries removed."""
        removed = 0
        for key in keys:
            if key in self._in_flight:
                self._generations[key] = self.generation(key) + 1
            if self._entries.pop(key, None) is not None:
                removed += 1
        return removed

    def invalidate_names(self, names: Iterable[str]) -> int:
        """Drop every key belonging to the named queries, whatever the params."""
        names = set(names)
        known = set(self._entries) | set(self._in_flight)
        return self.invalidate([k for k in known if k.name in names])

    def keys(self):
        return list(self._entries)

    def clear(self):
        self.invalidate(list(self._entries))

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key):
        return key in self._entries
