# search/cache.py
import hashlib
import logging

import redis.asyncio as redis
from pydantic import ValidationError

from catalog.normalizer import normalize_text
from .config import CHEAPEST_CACHE_TTL, REDIS_URL, SEARCH_CACHE_TTL
from .models import SearchRequest, SearchResponse
from .stats import SearchStats

logger = logging.getLogger("search")

SEARCH_PREFIX = "search:"
CHEAPEST_PREFIX = "cheapest:"
GENERATION_KEY = "cachegen"


def _money(value):
    return "" if value is None else f"{value:.2f}"


def request_fingerprint(request: SearchRequest):
    """
    md5 over the normalized request.

    Text is normalized like product names, filters are lower-cased, shop codes
    are de-duplicated and sorted, so equivalent requests share one key.
    """
    parts = [
        normalize_text(request.query or ""),
        (request.condition or "").lower(),
        (request.color or "").lower(),
        ",".join(request.shop_codes),
        _money(request.min_price),
        _money(request.max_price),
        str(request.limit),
    ]
    return hashlib.md5("|".join(parts).encode("utf-8")).hexdigest()


class SearchCache:
    """
    Redis-backed cache for search and cheapest-by-category responses.

    Keys embed a generation number kept in Redis. ``invalidate_all`` bumps the
    generation before deleting old keys, so a response computed before the
    bump is written under a key no later request reads.

    Any Redis failure is logged and treated as a miss; callers never see it.
    """

    def __init__(self, client=None, stats=None, search_ttl=SEARCH_CACHE_TTL, cheapest_ttl=CHEAPEST_CACHE_TTL):
        self.client = client if client is not None else redis.from_url(REDIS_URL, decode_responses=True)
        self.stats = stats or SearchStats()
        self.search_ttl = search_ttl
        self.cheapest_ttl = cheapest_ttl

    async def _generation(self):
        raw = await self.client.get(GENERATION_KEY)
        return int(raw or 0)

    async def _key(self, prefix, digest):
        try:
            return f"{prefix}{await self._generation()}:{digest}"
        except Exception as e:
            self.stats.record("cache_errors")
            logger.warning(f"Cache unavailable, skipping: {e}")
            return None

    async def _read(self, key, model):
        if key is None:
            return None
        try:
            raw = await self.client.get(key)
        except Exception as e:
            self.stats.record("cache_errors")
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

        if raw is None:
            self.stats.record("cache_misses")
            return None

        try:
            value = model.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Dropping unreadable cache entry {key}: {e}")
            self.stats.record("cache_misses")
            try:
                await self.client.delete(key)
            except Exception as delete_error:
                logger.warning(f"Cache delete failed for {key}: {delete_error}")
            return None

        self.stats.record("cache_hits")
        return value

    async def _write(self, key, value, ttl):
        if key is None:
            return
        try:
            await self.client.set(key, value.model_dump_json(), ex=ttl)
        except Exception as e:
            self.stats.record("cache_errors")
            logger.warning(f"Cache write failed for {key}: {e}")

    async def search_key(self, request: SearchRequest):
        return await self._key(SEARCH_PREFIX, request_fingerprint(request))

    async def get_search(self, key):
        return await self._read(key, SearchResponse)

    async def put_search(self, key, response: SearchResponse):
        await self._write(key, response, self.search_ttl)

    async def cheapest_key(self, category, limit):
        digest = hashlib.md5(f"{(category or '').lower()}|{limit}".encode("utf-8")).hexdigest()
        return await self._key(CHEAPEST_PREFIX, digest)

    async def get_cheapest(self, key):
        return await self._read(key, SearchResponse)

    async def put_cheapest(self, key, response: SearchResponse):
        await self._write(key, response, self.cheapest_ttl)

    async def _delete_prefix(self, prefix):
        keys = [k async for k in self.client.scan_iter(match=f"{prefix}*")]
        if keys:
            await self.client.delete(*keys)
        return len(keys)

    async def invalidate_search(self):
        return await self.invalidate(SEARCH_PREFIX)

    async def invalidate_cheapest(self):
        return await self.invalidate(CHEAPEST_PREFIX)

    async def invalidate(self, *prefixes):
        """Bump the generation and delete every key under ``prefixes``."""
        try:
            await self.client.incr(GENERATION_KEY)
            deleted = 0
            for prefix in prefixes:
                deleted += await self._delete_prefix(prefix)
        except Exception as e:
            self.stats.record("cache_errors")
            logger.warning(f"Cache invalidation failed: {e}")
            return 0
        logger.info(f"Invalidated {deleted} cache entries ({', '.join(prefixes)})")
        return deleted

    async def invalidate_all(self):
        return await self.invalidate(SEARCH_PREFIX, CHEAPEST_PREFIX)

    async def key_counts(self):
        """Number of live keys per cache, plus hit/miss counters."""
        counts = {
            "hits": self.stats.get("cache_hits"),
            "misses": self.stats.get("cache_misses"),
            "errors": self.stats.get("cache_errors"),
        }
        try:
            counts["search_entries"] = len(
                [k async for k in self.client.scan_iter(match=f"{SEARCH_PREFIX}*")]
            )
            counts["cheapest_entries"] = len(
                [k async for k in self.client.scan_iter(match=f"{CHEAPEST_PREFIX}*")]
            )
        except Exception as e:
            logger.warning(f"Cache stats unavailable: {e}")
            counts["search_entries"] = counts["cheapest_entries"] = None
        return counts

    async def close(self):
        await self.client.aclose()
