"""Bounded deduplication cache mapping content digests to remote locations.

Eviction is first-in-first-out over *insertion* order: when the cache is
full, the earliest-inserted entry still present is dropped. Lookups never
reorder entries; persisted snapshots are restored in the same order.

The cache is advisory: a hit is trusted without checking that the file
still exists in the repository.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping

from ghimg.constants import MAX_CACHE_SIZE
from ghimg.models import CacheEntry

logger = logging.getLogger(__name__)


class DeduplicationCache:
    """Thread-safe FIFO cache of uploaded digests.

    Usage::

        cache = DeduplicationCache()
        cache.load_snapshot(saved)
        if not cache.has(digest):
            cache.put(digest, url, path)
        saved = cache.export_snapshot()
    """

    def __init__(self, max_size: int = MAX_CACHE_SIZE) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self._max_size = max_size
        # dicts preserve insertion order; the first key is the oldest entry
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    @property
    def max_size(self) -> int:
        return self._max_size

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def has(self, digest: str) -> bool:
        """Return ``True`` if *digest* has a cached location."""
        with self._lock:
            return digest in self._entries

    def get(self, digest: str) -> CacheEntry | None:
        """Return the cached entry for *digest* without touching its order."""
        with self._lock:
            return self._entries.get(digest)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, digest: object) -> bool:
        return isinstance(digest, str) and self.has(digest)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def put(
        self,
        digest: str,
        url: str,
        path: str,
        timestamp: int | None = None,
    ) -> CacheEntry:
        """Insert *digest* as the newest entry, evicting the oldest if full.

        Re-inserting a known digest replaces its entry and moves it to the
        newest position.

        Returns:
            The stored :class:`CacheEntry`.
        """
        entry = CacheEntry(
            digest=digest,
            url=url,
            path=path,
            timestamp=CacheEntry.now_millis() if timestamp is None else timestamp,
        )
        with self._lock:
            if digest in self._entries:
                del self._entries[digest]
            elif len(self._entries) >= self._max_size:
                self._evict_oldest()
            self._entries[digest] = entry
        return entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    # ------------------------------------------------------------------
    # Persistence boundary
    # ------------------------------------------------------------------

    def load_snapshot(self, entries: Mapping[str, Mapping[str, Any]]) -> None:
        """Replace the cache contents with a persisted snapshot.

        Entries are restored oldest-first by ``timestamp`` to rebuild the
        insertion order, then the oldest are trimmed until the cache fits.
        Entries without a ``url`` or ``path`` are skipped.

        Args:
            entries: Mapping of digest to persisted entry dicts, as produced
                by :meth:`export_snapshot`.
        """
        restored: list[CacheEntry] = []
        for digest, data in entries.items():
            try:
                restored.append(CacheEntry.from_dict(digest, data))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed cache entry for %s", digest)

        restored.sort(key=lambda e: e.timestamp)

        with self._lock:
            self._entries = {entry.digest: entry for entry in restored}
            trimmed = 0
            while len(self._entries) > self._max_size:
                self._evict_oldest()
                trimmed += 1

        logger.debug(
            "Loaded %d cached images (%d trimmed to fit %d)",
            len(restored) - trimmed,
            trimmed,
            self._max_size,
        )

    def export_snapshot(self) -> dict[str, dict[str, object]]:
        """Return digest -> persisted entry dict, oldest first."""
        with self._lock:
            return {digest: entry.to_dict() for digest, entry in self._entries.items()}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _evict_oldest(self) -> None:
        """Drop the earliest-inserted entry. Caller holds the lock."""
        oldest = next(iter(self._entries))
        del self._entries[oldest]
        logger.debug("Evicted oldest cache entry %s", oldest)
