"""
apilink Response Cache — TTL + Capacity Bound, In-Memory.

Only GET responses are cached. Keys are the exact
``METHOD:url:json(params)`` serialization; parameter order is significant.

Eviction on write:
1. Drop every expired entry
2. While over ``max_size``, drop the oldest entry

``fifo`` and ``ttl`` order entries by insertion; ``lru`` moves an entry to
the back of the queue on every hit.
"""
from __future__ import annotations
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable
import json
import logging
import time

from apilink.integrations.config import CacheConfig, CacheStrategy

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


def make_cache_key(method: str, url: str, params: dict[str, Any] | None) -> str:
    return f"{method.upper()}:{url}:{json.dumps(params or {}, default=str)}"


class ResponseCache:
    """Bounded response store owned by a single executor."""

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        if self.config.strategy == CacheStrategy.LRU:
            self._entries.move_to_end(key)
        return entry.value

    def put(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self.config.ttl if ttl is None else ttl
        self.purge_expired()
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)
        evicted = 0
        while len(self._entries) > self.config.max_size:
            self._entries.popitem(last=False)
            evicted += 1
        if evicted:
            logger.debug("Cache over capacity, evicted %d entries", evicted)

    def purge_expired(self) -> int:
        """Remove all expired entries. Returns count removed."""
        now = self._clock()
        expired = [k for k, v in self._entries.items() if v.is_expired(now)]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count
