"""
Search result cache in front of any vector store.

Identical query + filters within the TTL are answered from memory. The
cache is bounded and evicts the least recently used entry. Failed searches
are never cached.
"""

import json
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional, Tuple

from ...context_engine.models import SearchResult
from ...core.config import settings
from ..vector_store_base import VectorStoreInterface


class CachedVectorStore(VectorStoreInterface):
    """LRU + TTL cache wrapper around a vector store"""

    def __init__(
        self,
        store: VectorStoreInterface,
        ttl_seconds: Optional[float] = None,
        max_entries: Optional[int] = None,
        enabled: Optional[bool] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.ttl_seconds = settings.SEARCH_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.max_entries = max_entries or settings.SEARCH_CACHE_MAX_ENTRIES
        self.enabled = settings.SEARCH_CACHE_ENABLED if enabled is None else enabled
        self._clock = clock
        self._cache: "OrderedDict[str, Tuple[float, List[SearchResult]]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    async def search(
        self,
        query: str,
        filters: Optional[Dict[str, Any]] = None
    ) -> List[SearchResult]:
        if not self.enabled:
            return await self.store.search(query, filters)

        key = self._cache_key(query, filters)
        cached = self._cache.get(key)
        if cached is not None:
            stored_at, results = cached
            if self._clock() - stored_at < self.ttl_seconds:
                self._cache.move_to_end(key)
                self.hits += 1
                return list(results)
            del self._cache[key]

        self.misses += 1
        results = await self.store.search(query, filters)
        self._cache[key] = (self._clock(), list(results))
        self._cache.move_to_end(key)
        while len(self._cache) > self.max_entries:
            self._cache.popitem(last=False)
        return results

    def clear_cache(self) -> None:
        """Drop all cached results, e.g. after the corpus or embedding model changed"""
        self._cache.clear()

    async def get_stats(self) -> Dict[str, Any]:
        stats = await self.store.get_stats()
        attempts = self.hits + self.misses
        return {
            **stats,
            "cache_size": len(self._cache),
            "cache_hits": self.hits,
            "cache_misses": self.misses,
            "cache_hit_rate": self.hits / attempts if attempts else 0.0,
        }

    async def health_check(self) -> bool:
        return await self.store.health_check()

    @staticmethod
    def _cache_key(query: str, filters: Optional[Dict[str, Any]]) -> str:
        return json.dumps({"query": query, "filters": filters or {}}, sort_keys=True, default=str)
