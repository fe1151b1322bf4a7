"""In-memory embedding cache.

This module provides a bounded, content-hash-keyed LRU cache for embedding
vectors. It is shared across jobs, so every operation runs under the cache's
own asyncio lock.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from callscribe.utils import get_current_timestamp_est

DEFAULT_CACHE_CAPACITY = 1000
DEFAULT_CACHE_TTL = timedelta(days=30)


# -------------------------------------------------------------- #
# Cache Entry
# -------------------------------------------------------------- #


@dataclass
class EmbeddingCacheEntry:
    """A cached embedding.

    Attributes:
        content_hash: SHA-256 of the normalized text
        embedding: The vector
        model: Model that produced the vector
        token_count: Tokens billed by the generator
        created_at: When the vector was generated
    """

    content_hash: str
    embedding: list[float]
    model: str
    token_count: int = 0
    created_at: datetime = field(default_factory=get_current_timestamp_est)

    def size_bytes(self) -> int:
        """Approximate memory footprint of the entry."""
        return len(self.embedding) * 8 + len(self.content_hash) * 2 + len(self.model) * 2 + 100


# -------------------------------------------------------------- #
# LRU Cache
# -------------------------------------------------------------- #


class EmbeddingLRUCache:
    """Bounded LRU cache of embeddings keyed by content hash."""

    def __init__(self, capacity: int = DEFAULT_CACHE_CAPACITY, ttl: timedelta | None = DEFAULT_CACHE_TTL):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")

        self.capacity = capacity
        self.ttl = ttl
        self._entries: OrderedDict[str, EmbeddingCacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def _is_stale(self, entry: EmbeddingCacheEntry, now: datetime) -> bool:
        return self.ttl is not None and now - entry.created_at > self.ttl

    async def get(self, content_hash: str) -> EmbeddingCacheEntry | None:
        """Get an entry, marking it most recently used.

        Entries older than the TTL are dropped and reported as misses.
        """
        async with self._lock:
            entry = self._entries.get(content_hash)
            if entry is not None and self._is_stale(entry, get_current_timestamp_est()):
                del self._entries[content_hash]
                entry = None

            if entry is None:
                self._misses += 1
                return None

            self._entries.move_to_end(content_hash)
            self._hits += 1
            return entry

    async def set(self, entry: EmbeddingCacheEntry) -> None:
        """Store an entry, evicting the least recently used one when full."""
        async with self._lock:
            if entry.content_hash in self._entries:
                self._entries.move_to_end(entry.content_hash)
            elif len(self._entries) >= self.capacity:
                self._entries.popitem(last=False)
                self._evictions += 1

            self._entries[entry.content_hash] = entry

    async def delete(self, content_hash: str) -> bool:
        """Remove an entry. Returns True if it was present."""
        async with self._lock:
            return self._entries.pop(content_hash, None) is not None

    async def clear(self) -> None:
        """Drop every entry and reset the statistics."""
        async with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def contains(self, content_hash: str) -> bool:
        return content_hash in self._entries

    def size_bytes(self) -> int:
        """Approximate memory held by the cache."""
        return sum(entry.size_bytes() for entry in self._entries.values())

    def get_stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total else 0.0,
            "entries": len(self._entries),
            "capacity": self.capacity,
            "evictions": self._evictions,
            "size_bytes": self.size_bytes(),
        }
