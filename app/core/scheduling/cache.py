"""
Memoization Cache

Process-local store of previously computed pure-function results
(compatibility scores and the like). Owned by the engine and injected
into the scorer; the host clears it between unrelated runs. There is no
TTL: stale entries only go away through ``clear()``.
"""

import logging
import threading
from typing import Any, Callable, Hashable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


class MemoizationCache:
    """
    Thread-safe memoization map.

    Features:
    - Composite tuple keys (("compatibility", "t1", "c1"))
    - Lazy population via get_or_compute
    - Hit/miss counters for diagnostics
    - Explicit clear()

    The lock only guards the map; computations run outside it so
    parallel scorers do not serialize on slow work. Two threads racing
    on the same key may both compute, and the first stored value wins.
    """

    def __init__(self, name: str = "schedule"):
        self.name = name
        self._store: dict[Hashable, Any] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def make_key(namespace: str, *parts: Any) -> tuple:
        """Build a composite key: ``make_key("compatibility", "t1", "c1")``.

        Parts stay separate, so ("a_b", "c") and ("a", "b_c") are different keys.
        """
        return (namespace, *(str(part) for part in parts))

    def get(self, key: Hashable, default: Optional[Any] = None) -> Any:
        """Get a cached value without computing."""
        with self._lock:
            return self._store.get(key, default)

    def set(self, key: Hashable, value: Any) -> None:
        """Store a value, replacing any previous one."""
        with self._lock:
            self._store[key] = value

    def get_or_compute(self, key: Hashable, compute: Callable[[], T]) -> T:
        """Return the cached value for key, computing and storing it on a miss."""
        with self._lock:
            value = self._store.get(key, _MISSING)
            if value is not _MISSING:
                self._hits += 1
                return value
            self._misses += 1

        result = compute()

        with self._lock:
            return self._store.setdefault(key, result)

    def clear(self) -> None:
        """Drop every cached entry and reset counters."""
        with self._lock:
            size = len(self._store)
            self._store.clear()
            self._hits = 0
            self._misses = 0
        logger.info(f"Cleared {self.name} cache ({size} entries)")

    def stats(self) -> dict[str, int]:
        """Current size and hit/miss counters."""
        with self._lock:
            return {
                "size": len(self._store),
                "hits": self._hits,
                "misses": self._misses,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._store
