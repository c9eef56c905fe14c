# search/service.py
import logging

from .breaker import CircuitBreaker, CircuitOpenError
from .cache import SearchCache
from .index import build_index
from .models import DEFAULT_LIMIT, MAX_LIMIT, SearchRequest, SearchResponse
from .relational import RelationalSearch
from .stats import SearchStats

logger = logging.getLogger("search")


class SearchService:
    """
    Answers offer searches: cache, then full-text index, then catalog store.

    Args:
        cache (SearchCache): Response cache; failures inside it are misses
        index: ElasticSearchIndex, or DisabledSearchIndex when switched off
        relational (RelationalSearch): Fallback query path
        breaker (CircuitBreaker): Guards calls to the index
        stats (SearchStats): Counters shared with the cache and breaker

    Flow:
        1. cache hit -> returned as is (source "cache")
        2. index enabled and circuit not open -> index results (source "index")
        3. otherwise, or when the index call fails -> relational results
           (source "fallback", or "database" when the index is disabled)
        4. the response is cached best-effort

    Note:
        search() never raises. If even the relational path fails the caller
        gets an empty response, which is not cached.
    """

    def __init__(self, cache=None, index=None, relational=None, breaker=None, stats=None):
        self.stats = stats or SearchStats()
        self.cache = cache or SearchCache(stats=self.stats)
        self.index = index or build_index()
        self.relational = relational or RelationalSearch()
        self.breaker = breaker or CircuitBreaker(on_transition=self._on_breaker_transition)

    def _on_breaker_transition(self, old_state, new_state):
        self.stats.record(f"breaker_{new_state.value}")

    async def _from_index(self, request):
        try:
            return await self.breaker.call(self.index.search, request)
        except CircuitOpenError:
            self.stats.record("breaker_rejections")
            logger.info("Search index circuit open, using fallback")
        except Exception as e:
            self.stats.record("index_failures")
            logger.warning(f"Search index query failed, using fallback: {e}")
        return None

    async def search(self, request: SearchRequest) -> SearchResponse:
        key = await self.cache.search_key(request)
        cached = await self.cache.get_search(key)
        if cached is not None:
            return cached.model_copy(update={"source": "cache"})

        offers = None
        source = "database"
        if self.index.enabled:
            offers = await self._from_index(request)
            source = "index"
            if offers is None:
                self.stats.record("fallbacks")
                source = "fallback"

        if offers is None:
            try:
                offers = await self.relational.search(request)
            except Exception as e:
                logger.exception(f"Relational search failed: {e}")
                return SearchResponse(query=request.query, source="none")

        response = SearchResponse(
            query=request.query, total_matches=len(offers), offers=offers, source=source
        )
        await self.cache.put_search(key, response)
        return response

    async def cheapest_in_category(self, category, limit=DEFAULT_LIMIT) -> SearchResponse:
        """Lowest-priced in-stock offers of one category, cached for hours."""
        limit = DEFAULT_LIMIT if limit is None or limit <= 0 else min(limit, MAX_LIMIT)
        key = await self.cache.cheapest_key(category, limit)
        cached = await self.cache.get_cheapest(key)
        if cached is not None:
            return cached.model_copy(update={"source": "cache"})

        try:
            offers = await self.relational.cheapest_in_category(category, limit)
        except Exception as e:
            logger.exception(f"Cheapest-by-category query failed: {e}")
            return SearchResponse(query=category, source="none")

        response = SearchResponse(
            query=category, total_matches=len(offers), offers=offers, source="database"
        )
        await self.cache.put_cheapest(key, response)
        return response

    def snapshot(self):
        return {
            "counters": self.stats.snapshot(),
            "breaker_state": self.breaker.state.value,
            "breaker_open": self.breaker.is_open(),
            "breaker_failure_rate": self.breaker.failure_rate(),
            "index_enabled": self.index.enabled,
        }

    def reset(self):
        """Zero the counters and close the breaker, e.g. after an index outage is fixed."""
        self.stats.reset()
        self.breaker.reset()

    async def close(self):
        await self.index.close()
        await self.cache.close()
