"""In-memory byte caching for tiles, style documents and assets.

Provides a bounded cache with TTL-based expiration. Expired entries are
dropped lazily on lookup; once the entry bound is reached the oldest
entry is evicted.
"""

import threading
import time
from collections import OrderedDict
from typing import Callable, NamedTuple


class CacheEntry(NamedTuple):
    """Cached payload."""

    payload: bytes
    content_type: str
    expires_at: float


class ByteCache:
    """Bounded key -> bytes store with per-entry expiry.

    Safe to share between concurrent request handlers; every access to the
    map happens under one lock.
    """

    def __init__(
        self,
        default_ttl: float = 86400,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            default_ttl: Default time-to-live in seconds (default: 24 hours)
            max_entries: Entry count bound before the oldest entry is evicted
            clock: Monotonic time source, injectable for tests
        """
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> CacheEntry | None:
        """Get an entry if it exists and has not expired.

        Args:
            key: Cache key (e.g., "demo/base/5/10/12")

        Returns:
            CacheEntry or None if not found/expired
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if now >= entry.expires_at:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry

    def put(
        self,
        key: str,
        payload: bytes,
        content_type: str,
        ttl: float | None = None,
    ) -> CacheEntry:
        """Store an entry, evicting the oldest ones beyond the bound.

        Args:
            key: Cache key
            payload: Raw bytes
            content_type: MIME type
            ttl: Optional TTL override in seconds

        Returns:
            The stored entry
        """
        entry = CacheEntry(
            payload=payload,
            content_type=content_type,
            expires_at=self._clock() + (self.default_ttl if ttl is None else ttl),
        )
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = entry
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return entry

    def invalidate(self, prefix: str | None = None) -> int:
        """Invalidate cache entries.

        Args:
            prefix: Drop keys starting with this prefix, or None for all

        Returns:
            Count of dropped entries
        """
        with self._lock:
            if prefix is None:
                count = len(self._entries)
                self._entries.clear()
                return count
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict:
        """Get cache statistics.

        Returns:
            Dict with entries, max_entries, total_size_bytes, hits and misses
        """
        with self._lock:
            total_size = sum(len(entry.payload) for entry in self._entries.values())
            return {
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "total_size_bytes": total_size,
                "hits": self.hits,
                "misses": self.misses,
            }
