"""Thread-safe in-memory LRU cache for embedding vectors.

Design decisions
────────────────
• **OrderedDict** for O(1) LRU eviction and promotion.
• **Size tracking** in bytes, estimated as 8 bytes per float (vectors are
  held as Python floats, which serialise to float64 on the wire).
• **threading.Lock** so the cache can be shared by concurrent requests
  and by the thread pool FastAPI uses for sync endpoints.
• **Mode-prefixed keys** (``search_query:<text>``) so a query embedding is
  never served for a document embedding of the same text.
• Purely ephemeral - data is lost on process restart.

Usage in EmbeddingClient
────────────────────────
>>> cache = EmbeddingCache(max_bytes=16 * 1024 * 1024)
>>> cache.put(EmbeddingCache.key("search_query", "how does shipping work"), vector)
>>> cache.get(EmbeddingCache.key("search_query", "how does shipping work"))
[0.012, -0.031, ...]
"""

from __future__ import annotations

import hashlib
import logging
import threading
from collections import OrderedDict

logger = logging.getLogger(__name__)

# Default ceiling: 16 MB (~2 000 vectors of 1 024 dimensions)
DEFAULT_MAX_BYTES = 16 * 1024 * 1024
_BYTES_PER_FLOAT = 8


class EmbeddingCache:
    """Least-Recently-Used vector cache bounded by total estimated byte size."""

    def __init__(self, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self._max_bytes = max_bytes
        self._current_bytes = 0
        # key → (vector, estimated_size_bytes)
        self._store: OrderedDict[str, tuple[list[float], int]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(mode: str, text: str) -> str:
        """Build a cache key; long texts are hashed to keep keys small."""
        normalized = " ".join(text.split())
        if len(normalized) > 256:
            normalized = hashlib.sha256(normalized.encode("utf-8")).hexdigest()
        return f"{mode}:{normalized}"

    # ── Core operations ──────────────────────────────────────────────

    def get(self, key: str) -> list[float] | None:
        """Return a copy of the cached vector (promoting it to MRU) or ``None``."""
        with self._lock:
            if key not in self._store:
                self.misses += 1
                return None
            self._store.move_to_end(key)
            self.hits += 1
            vector, _ = self._store[key]
            return list(vector)

    def put(self, key: str, vector: list[float]) -> None:
        """Insert or overwrite *key*.  Evicts LRU entries if needed."""
        size = len(vector) * _BYTES_PER_FLOAT

        if size > self._max_bytes:
            logger.debug(
                "Cache: skipping key %s (size %d > max %d)",
                key, size, self._max_bytes,
            )
            return

        with self._lock:
            if key in self._store:
                _, old_size = self._store.pop(key)
                self._current_bytes -= old_size

            while self._current_bytes + size > self._max_bytes and self._store:
                evicted_key, (_, evicted_size) = self._store.popitem(last=False)
                self._current_bytes -= evicted_size
                logger.debug("Cache: evicted %s (%d bytes)", evicted_key, evicted_size)

            self._store[key] = (list(vector), size)
            self._current_bytes += size

    def invalidate(self, key: str) -> bool:
        """Remove a single key.  Returns ``True`` if the key existed."""
        with self._lock:
            if key in self._store:
                _, size = self._store.pop(key)
                self._current_bytes -= size
                return True
            return False

    def clear(self) -> None:
        """Drop all entries (e.g. after switching embedding model)."""
        with self._lock:
            self._store.clear()
            self._current_bytes = 0

    # ── Introspection ────────────────────────────────────────────────

    @property
    def current_bytes(self) -> int:
        return self._current_bytes

    @property
    def entry_count(self) -> int:
        return len(self._store)
