"""
merchant_cache.py
------------------
Bounded, thread-safe LRU cache for merchant enrichment results.

The resolver owns one of these (injected, not global). Any crowdsourced
registry write clears it wholesale through invalidate(): a write can change
the outcome for arbitrary keys, and tracking which keys a merchant name
touched costs more than re-resolving.
"""

import threading
from collections import OrderedDict
from typing import Hashable, Optional

from core.models import EnrichmentResult


class MerchantCache:
    """
    Usage:
        cache = MerchantCache(max_size=10_000)
        cache.put(key, result)
        cache.get(key)
        cache.invalidate()
    """

    def __init__(self, max_size: int = 10_000):
        if max_size < 1:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self.max_size = max_size
        self._entries: "OrderedDict[Hashable, EnrichmentResult]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Optional[EnrichmentResult]:
        with self._lock:
            result = self._entries.get(key)
            if result is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return result.copy()

    def put(self, key: Hashable, result: EnrichmentResult) -> None:
        with self._lock:
            self._entries[key] = result.copy()
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def invalidate(self) -> None:
        """Drops every cached entry."""
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __repr__(self) -> str:
        return f"MerchantCache(size={len(self)}, max_size={self.max_size}, hits={self.hits}, misses={self.misses})"
