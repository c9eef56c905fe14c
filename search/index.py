# search/index.py
import logging

from elasticsearch import AsyncElasticsearch

from crawler.utils import parse_price
from .config import ELASTICSEARCH_URL, INDEX_BATCH_SIZE, SEARCH_INDEX_ENABLED, SEARCH_INDEX_NAME
from .models import IndexStats, OfferResult, SearchRequest

logger = logging.getLogger("search")

INDEX_MAPPINGS = {
    "properties": {
        "offer_id": {"type": "keyword"},
        "product_id": {"type": "keyword"},
        "shop_code": {"type": "keyword"},
        "shop_name": {"type": "keyword"},
        "title": {"type": "text"},
        "normalized_name": {"type": "text"},
        "brand": {"type": "text", "fields": {"raw": {"type": "keyword"}}},
        "model": {"type": "text", "fields": {"raw": {"type": "keyword"}}},
        "category": {"type": "keyword"},
        "color": {"type": "keyword"},
        "condition": {"type": "keyword"},
        "price": {"type": "scaled_float", "scaling_factor": 100},
        "old_price": {"type": "scaled_float", "scaling_factor": 100},
        "currency": {"type": "keyword"},
        "url": {"type": "keyword", "index": False},
        "image_url": {"type": "keyword", "index": False},
        "in_stock": {"type": "boolean"},
        "active": {"type": "boolean"},
    }
}

ACTIVE_FILTER = [{"term": {"active": True}}]


def build_search_query(text):
    """
    Weighted multi-field query for free text.

    Exact phrase on the normalized name scores highest, then phrase on model,
    fuzzy brand/model, fuzzy normalized name, and plain title match lowest.
    Only active documents are considered.
    """
    return {
        "bool": {
            "should": [
                {"match_phrase": {"normalized_name": {"query": text, "boost": 10}}},
                {"match_phrase": {"model": {"query": text, "boost": 8}}},
                {"match": {"brand": {"query": text, "fuzziness": "AUTO", "boost": 6}}},
                {"match": {"model": {"query": text, "fuzziness": "AUTO", "boost": 6}}},
                {"match": {"normalized_name": {"query": text, "fuzziness": "AUTO", "boost": 5}}},
                {"match": {"title": {"query": text, "boost": 3}}},
            ],
            "minimum_should_match": 1,
            "filter": ACTIVE_FILTER,
        }
    }


def _as_float(value):
    return float(value) if value is not None else None


def to_document(offer, product, shop):
    """SearchDocument for one offer joined with its product and shop."""
    return {
        "offer_id": offer["_id"],
        "product_id": offer["product_id"],
        "shop_code": offer["shop_code"],
        "shop_name": shop.get("name") if shop else None,
        "title": offer.get("title"),
        "normalized_name": product.get("normalized_name"),
        "brand": product.get("brand"),
        "model": product.get("model"),
        "category": product.get("category"),
        "color": offer.get("color"),
        "condition": offer.get("condition"),
        "price": _as_float(offer.get("price")),
        "old_price": _as_float(offer.get("old_price")),
        "currency": offer.get("currency"),
        "url": offer.get("url"),
        "image_url": offer.get("image_url"),
        "in_stock": offer.get("in_stock", True),
        "active": offer.get("active", True),
    }


def from_document(source):
    data = dict(source)
    data["price"] = parse_price(source.get("price"))
    data["old_price"] = parse_price(source.get("old_price"))
    return OfferResult.model_validate(data)


async def load_documents(db):
    """Build SearchDocuments for every active, in-stock, priced offer."""
    shops = {s["code"]: s for s in await db.shops.find({}).to_list(length=None)}
    products = {p["_id"]: p for p in await db.products.find({}).to_list(length=None)}
    offers = await db.offers.find(
        {"$and": [{"active": True}, {"in_stock": True}, {"price": {"$ne": None}}]}
    ).to_list(length=None)

    docs = []
    for offer in offers:
        product = products.get(offer.get("product_id"))
        if product is None:
            logger.warning(f"Offer {offer['_id']} references missing product {offer.get('product_id')}")
            continue
        docs.append(to_document(offer, product, shops.get(offer.get("shop_code"))))
    return docs


class DisabledSearchIndex:
    """Stand-in used when the full-text index is switched off."""

    enabled = False

    async def search(self, request):
        raise RuntimeError("Search index is disabled")

    async def rebuild(self, db):
        logger.info("Search index disabled, skipping rebuild")
        return IndexStats(error="disabled")

    async def health(self):
        return {"enabled": False, "healthy": False}

    async def close(self):
        return None


class ElasticSearchIndex:
    enabled = True

    def __init__(self, client=None, index_name=SEARCH_INDEX_NAME, batch_size=INDEX_BATCH_SIZE):
        self.client = client if client is not None else AsyncElasticsearch(ELASTICSEARCH_URL)
        self.index_name = index_name
        self.batch_size = batch_size

    async def search(self, request: SearchRequest):
        """
        Query the index and post-filter the hits.

        ``limit * 3`` candidates are fetched (by relevance with text, by price
        without), filtered by condition, color, shops and price range, then
        truncated to ``limit``.

        Raises:
            Exception: Any client/transport error, for the breaker to record.
        """
        size = request.limit * 3
        if request.query:
            resp = await self.client.search(
                index=self.index_name, query=build_search_query(request.query), size=size
            )
        else:
            resp = await self.client.search(
                index=self.index_name,
                query={"bool": {"filter": ACTIVE_FILTER}},
                sort=[{"price": {"order": "asc", "missing": "_last"}}],
                size=size,
            )
        candidates = [from_document(hit["_source"]) for hit in resp["hits"]["hits"]]
        return [c for c in candidates if request.accepts(c)][: request.limit]

    async def rebuild(self, db):
        """
        Drop and recreate the index, then bulk-load every searchable offer.

        Returns:
            IndexStats: indexed/failed counts; ``error`` is set when the index
                could not be recreated at all.
        """
        stats = IndexStats()
        try:
            await self.client.indices.delete(index=self.index_name, ignore_unavailable=True)
        except Exception as e:
            logger.warning(f"Could not delete index {self.index_name}: {e}")

        try:
            await self.client.indices.create(index=self.index_name, mappings=INDEX_MAPPINGS)
        except Exception as e:
            logger.exception(f"Could not create index {self.index_name}: {e}")
            stats.error = str(e)
            return stats

        docs = await load_documents(db)
        for start in range(0, len(docs), self.batch_size):
            batch = docs[start : start + self.batch_size]
            operations = []
            for doc in batch:
                operations.append({"index": {"_index": self.index_name, "_id": doc["offer_id"]}})
                operations.append(doc)
            try:
                resp = await self.client.bulk(operations=operations)
            except Exception as e:
                stats.failed += len(batch)
                logger.exception(f"Bulk batch at {start} failed: {e}")
                continue
            failed = sum(1 for item in resp["items"] if item.get("index", {}).get("error"))
            stats.failed += failed
            stats.indexed += len(batch) - failed

        await self.client.indices.refresh(index=self.index_name)
        logger.info(f"Index {self.index_name} rebuilt: indexed={stats.indexed} failed={stats.failed}")
        return stats

    async def health(self):
        try:
            count = (await self.client.count(index=self.index_name))["count"]
        except Exception as e:
            logger.warning(f"Index health check failed: {e}")
            return {"enabled": True, "healthy": False, "error": str(e)}
        return {"enabled": True, "healthy": True, "index": self.index_name, "documents": count}

    async def close(self):
        await self.client.close()


def build_index():
    if SEARCH_INDEX_ENABLED:
        return ElasticSearchIndex()
    return DisabledSearchIndex()
