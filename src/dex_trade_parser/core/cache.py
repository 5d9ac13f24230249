"""
Bounded TTL cache of signature -> trade outcome.

Entries are evicted oldest-inserted first once capacity is exceeded and are
treated as expired lazily, on read. Outcomes are frozen dataclasses, so
handing the stored object to callers never shares mutable state.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from dex_trade_parser.core.models import TradeOutcome


@dataclass(frozen=True)
class CacheEntry:
    signature: str
    outcome: TradeOutcome
    inserted_at: float


class ResultCache:
    """Thread-safe insertion-ordered cache with a TTL."""

    def __init__(
        self,
        capacity: int = 500,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, signature: str) -> Optional[TradeOutcome]:
        with self._lock:
            entry = self._entries.get(signature)
            if entry is None:
                self.misses += 1
                return None
            if self._clock() - entry.inserted_at > self.ttl_seconds:
                del self._entries[signature]
                self.misses += 1
                return None
            self.hits += 1
            return entry.outcome

    def put(self, signature: str, outcome: TradeOutcome) -> None:
        with self._lock:
            # Re-insertion refreshes both age and position
            self._entries.pop(signature, None)
            self._entries[signature] = CacheEntry(signature, outcome, self._clock())
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)
                self.evictions += 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "size": len(self._entries),
                "capacity": self.capacity,
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
            }
