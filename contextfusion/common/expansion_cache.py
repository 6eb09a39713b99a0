"""
Expansion Cache

Process-wide cache of query expansions keyed by normalized query.
Entries expire after a TTL; beyond the size cap the oldest entry is evicted.
Created once at startup and injected into the expander.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .similarity import normalize_text


@dataclass(frozen=True)
class CachedExpansion:
    """Expansion terms stored for one normalized query"""
    terms: Tuple[str, ...]
    confidence: float
    strategy: str


class ExpansionCache:
    """TTL + size-capped cache, safe for concurrent readers and writers"""

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, CachedExpansion]]" = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def make_key(query: str, strategy: str = "") -> str:
        normalized = normalize_text(query)
        return f"{strategy}:{normalized}" if strategy else normalized

    def get(self, key: str) -> Optional[CachedExpansion]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at > self._ttl:
                del self._entries[key]
                return None
            return value

    def put(self, key: str, value: CachedExpansion) -> None:
        with self._lock:
            # Re-inserting moves the key to the newest position
            self._entries.pop(key, None)
            self._entries[key] = (self._clock(), value)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def purge_expired(self) -> int:
        """Drop expired entries, returning how many were removed"""
        now = self._clock()
        with self._lock:
            expired = [k for k, (ts, _) in self._entries.items() if now - ts > self._ttl]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
