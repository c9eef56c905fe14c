# tests/conftest.py
import sys
import os

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT_DIR)

import fnmatch
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List

import pytest
from bson import ObjectId
from fastapi import HTTPException, Request
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from crawler.db import DEFAULT_SHOPS
from crawler.models import ScrapedListing

os.environ.setdefault("API_KEY", "testapikey")

def _match_value(docv, cond):
    """
    Evaluate one field condition against a document value.

    Supports plain equality and the operators the application uses:
    $gte, $lte, $ne, $in, $regex (with $options "i").
    """
    if isinstance(cond, dict) and any(k.startswith("$") for k in cond):
        for op, arg in cond.items():
            if op == "$gte":
                if docv is None or docv < arg:
                    return False
            elif op == "$lte":
                if docv is None or docv > arg:
                    return False
            elif op == "$ne":
                if docv == arg:
                    return False
            elif op == "$in":
                if docv not in arg:
                    return False
            elif op == "$regex":
                flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
                if docv is None or not re.search(arg, str(docv), flags):
                    return False
            elif op == "$options":
                continue
            else:
                raise NotImplementedError(op)
        return True
    return docv == cond

def matches(doc, q):
    for k, v in (q or {}).items():
        if k == "$and":
            if not all(matches(doc, sub) for sub in v):
                return False
        elif k == "$or":
            if not any(matches(doc, sub) for sub in v):
                return False
        elif not _match_value(doc.get(k), v):
            return False
    return True

class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = list(docs)
        self._limit = None

    def sort(self, order):
        """
        Sort by a list of (field, direction) pairs, like Motor's sort().

        None sorts before any value in ascending order, as in MongoDB.
        """
        for field, direction in reversed(order):
            self._docs.sort(
                key=lambda d: (d.get(field) is not None, d.get(field)),
                reverse=(direction < 0),
            )
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    def _window(self):
        return [dict(d) for d in self._docs[: self._limit]]

    async def to_list(self, length=None):
        """Documents after limit(); ``length`` is accepted and ignored."""
        return self._window()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for d in self._window():
            yield d

class UpdateResult:
    def __init__(self, matched_count):
        self.matched_count = matched_count
        self.modified_count = matched_count

class FakeCollection:
    def __init__(self, docs=None):
        self.docs = [dict(d) for d in (docs or [])]
        for d in self.docs:
            if "_id" not in d:
                d["_id"] = str(ObjectId())

    async def find_one(self, q=None):
        for d in self.docs:
            if matches(d, q):
                return dict(d)
        return None

    def find(self, q=None, projection=None):
        """Filter documents; projections are accepted and ignored."""
        return FakeCursor([d for d in self.docs if matches(d, q)])

    async def insert_one(self, doc):
        doc = dict(doc)
        if "_id" not in doc:
            doc["_id"] = str(ObjectId())
        self.docs.append(doc)

        class R:
            inserted_id = doc["_id"]

        return R()

    async def update_one(self, q, u, upsert=False):
        """Apply $set to the first matching document."""
        for sd in self.docs:
            if matches(sd, q):
                sd.update(u.get("$set", {}))
                return UpdateResult(1)
        return UpdateResult(0)

    async def count_documents(self, q=None):
        return sum(1 for d in self.docs if matches(d, q))

    async def create_index(self, *args, **kwargs):
        return "ok"

    def __bool__(self):
        raise NotImplementedError("Collection objects do not implement truth value testing or bool()")

class FakeDB:
    """
    In-memory database with the four collections the application uses.

    Like pymongo's Database, it refuses truth-value testing, so code must
    compare it with None.
    """

    def __init__(self, shops=None, products=None, offers=None, ingestion_jobs=None):
        self.shops = FakeCollection(shops or [])
        self.products = FakeCollection(products or [])
        self.offers = FakeCollection(offers or [])
        self.ingestion_jobs = FakeCollection(ingestion_jobs or [])

    def __bool__(self):
        raise NotImplementedError("Database objects do not implement truth value testing or bool()")

class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis (decode_responses=True)."""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("redis unavailable")

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    async def incr(self, key):
        self._check()
        self.store[key] = str(int(self.store.get(key, 0)) + 1)
        return int(self.store[key])

    async def scan_iter(self, match="*"):
        self._check()
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self):
        return None

class FakeIndices:
    def __init__(self, es):
        self.es = es

    async def delete(self, index, ignore_unavailable=False):
        self.es.docs.clear()

    async def create(self, index, mappings=None):
        self.es.created.append(index)

    async def refresh(self, index):
        return None

class FakeElasticsearch:
    """
    Minimal AsyncElasticsearch double.

    Text queries keep active documents whose normalized name or title contains
    every query token; no-text queries sort by price.
    """

    def __init__(self):
        self.docs = {}
        self.indices = FakeIndices(self)
        self.created = []
        self.bulk_calls = 0
        self.search_calls = 0
        self.fail_search = False

    async def search(self, index, query, size, sort=None):
        self.search_calls += 1
        if self.fail_search:
            raise ConnectionError("elasticsearch unavailable")
        docs = [d for d in self.docs.values() if d.get("active")]
        should = query.get("bool", {}).get("should")
        if should:
            text = should[0]["match_phrase"]["normalized_name"]["query"].lower()
            tokens = text.split()
            docs = [
                d
                for d in docs
                if all(t in f"{d.get('normalized_name')} {d.get('title', '').lower()}" for t in tokens)
            ]
        else:
            docs.sort(key=lambda d: (d.get("price") is None, d.get("price") or 0))
        return {"hits": {"hits": [{"_source": dict(d)} for d in docs[:size]]}}

    async def bulk(self, operations):
        self.bulk_calls += 1
        items = []
        for action, doc in zip(operations[::2], operations[1::2]):
            doc_id = action["index"]["_id"]
            self.docs[doc_id] = doc
            items.append({"index": {"_id": doc_id, "status": 201}})
        return {"items": items}

    async def count(self, index):
        return {"count": len(self.docs)}

    async def close(self):
        return None

class FakeFetchers:
    """
    Fetch resources serving canned pages.

    ``pages`` maps URL -> HTML, or URL -> Exception instance to raise.
    """

    def __init__(self, pages=None):
        self.pages = pages or {}
        self.requested = []
        self.closed = False
        self.static = self
        self.rendered = self

    async def _get(self, url):
        self.requested.append(url)
        page = self.pages.get(url, "<html></html>")
        if isinstance(page, Exception):
            raise page
        return page

    async def fetch(self, url, wait_for=None):
        return await self._get(url)

    async def fetch_with_load_more(self, url, button_selector, max_clicks):
        return await self._get(url)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True

class TickingClock:
    """Deterministic clock: each call advances by ``step`` seconds."""

    def __init__(self, start=None, step=1):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.step = timedelta(seconds=step)

    def __call__(self):
        current = self.now
        self.now = self.now + self.step
        return current

def make_listing(**overrides):
    data = {
        "shop_code": "KONTAKT",
        "title": "iPhone 13 Pro Max 256GB Qara",
        "url": "https://kontakt.az/iphone-13-pro-max-256gb-qara",
        "price": Decimal("2199.00"),
        "availability_text": "stokda",
    }
    data.update(overrides)
    return ScrapedListing(**data)

@pytest.fixture
def shop_docs():
    return [s.model_dump() for s in DEFAULT_SHOPS]

@pytest.fixture
def fake_db(shop_docs):
    return FakeDB(shops=shop_docs)

@pytest.fixture
def fake_redis():
    return FakeRedis()

@pytest.fixture
def fake_es():
    return FakeElasticsearch()

@pytest.fixture
def clock():
    return TickingClock()

@pytest.fixture
def search_service(fake_db, fake_redis, fake_es):
    from search.cache import SearchCache
    from search.index import ElasticSearchIndex
    from search.relational import RelationalSearch
    from search.service import SearchService
    from search.stats import SearchStats

    stats = SearchStats()
    service = SearchService(
        cache=SearchCache(client=fake_redis, stats=stats),
        index=ElasticSearchIndex(client=fake_es),
        relational=RelationalSearch(db=fake_db),
        stats=stats,
    )
    return service

@pytest.fixture
async def client(monkeypatch, fake_db, search_service):
    """
    Async test client with fake storage, search backends and auth.

    Patches get_db and get_search_service in api.main, overrides the API key
    dependency to accept "testapikey", and talks to the app in-process via
    ASGITransport.
    """
    from api.main import app, get_api_key
    from crawler.crawler import Crawler

    monkeypatch.setattr("api.main.get_db", lambda: fake_db)
    monkeypatch.setattr("api.main.get_search_service", lambda: search_service)
    crawler = Crawler(
        db=fake_db,
        index=search_service.index,
        cache=search_service.cache,
        fetchers_factory=FakeFetchers,
        polite_delay=0,
    )
    monkeypatch.setattr("api.main.get_crawler", lambda: crawler)

    async def fake_get_api_key(request: Request):
        key = request.headers.get("x-api-key") or request.headers.get("X-API-Key")
        if key != "testapikey":
            raise HTTPException(status_code=401, detail="Unauthorized")
        return key

    app.dependency_overrides[get_api_key] = fake_get_api_key

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
