# api/main.py
import logging
import os
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from catalog.renormalize import Renormalizer
from crawler.crawler import Crawler
from crawler.db import ensure_indexes, get_db, seed_shops, set_shop_active
from crawler.errors import ShopNotScrapableError, UnknownShopError
from crawler.utils import utcnow
from search.models import DEFAULT_LIMIT, SearchRequest
from search.service import SearchService
from .auth import get_api_key
from .rate_limit import limiter, register_rate_limit

load_dotenv()
API_PORT = int(os.getenv("API_PORT", "8000"))

logger = logging.getLogger("api")
logger.setLevel(logging.INFO)

_search_service = None
_crawler = None


def get_search_service():
    """Process-wide SearchService, created on first use."""
    global _search_service
    if _search_service is None:
        _search_service = SearchService()
    return _search_service


def get_crawler():
    """Process-wide Crawler sharing the search service's index and cache."""
    global _crawler
    if _crawler is None:
        service = get_search_service()
        _crawler = Crawler(index=service.index, cache=service.cache)
    return _crawler


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = get_db()
    await ensure_indexes(db)
    seeded = await seed_shops(db)
    if seeded:
        logger.info(f"Seeded {seeded} shops")
    yield
    if _search_service is not None:
        await _search_service.close()


app = FastAPI(title="Price Aggregator API", version="1.0", lifespan=lifespan)

register_rate_limit(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["*"],
)


def serialize_job(job):
    return job.model_dump(mode="json", by_alias=False)


@app.get("/health")
async def health():
    return {"status": "ok", "time": utcnow().isoformat()}


@app.get("/offers/search", dependencies=[Depends(get_api_key)])
@limiter.limit("100/hour")
async def search_offers(
    request: Request,
    query: Optional[str] = Query(None),
    condition: Optional[str] = Query(None),
    color: Optional[str] = Query(None),
    shop: Optional[List[str]] = Query(None),
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    limit: int = Query(DEFAULT_LIMIT),
):
    """
    Search offers across all shops.

    Args:
        request (Request): FastAPI request object (required for rate limiting)
        query (str, optional): Free text, e.g. "iphone 13"
        condition (str, optional): Offer condition, case-insensitive
        color (str, optional): Color, case-insensitive
        shop (list[str], optional): Shop codes; repeat the parameter for several
        min_price (Decimal, optional): Inclusive lower price bound
        max_price (Decimal, optional): Inclusive upper price bound
        limit (int): Result count, defaults to 3; values <= 0 mean 3, capped at 100

    Returns:
        dict: ``query``, ``total_matches``, ``offers`` and ``source`` (which
            stage answered: cache, index, fallback or database)

    Rate Limit:
        100 requests per hour per client

    Note:
        Backend failures never surface here; the worst case is an empty list.
    """
    search_request = SearchRequest(
        query=query,
        condition=condition,
        color=color,
        shop_codes=shop or [],
        min_price=min_price,
        max_price=max_price,
        limit=limit,
    )
    response = await get_search_service().search(search_request)
    return response.model_dump(mode="json")


@app.get("/offers/cheapest", dependencies=[Depends(get_api_key)])
@limiter.limit("100/hour")
async def cheapest_offers(
    request: Request,
    category: str = Query("SMARTPHONE"),
    limit: int = Query(DEFAULT_LIMIT),
):
    """Cheapest in-stock offers of a category, ascending by price."""
    response = await get_search_service().cheapest_in_category(category, limit)
    return response.model_dump(mode="json")


@app.get("/shops", dependencies=[Depends(get_api_key)])
async def list_shops():
    docs = await get_db().shops.find({}).sort([("code", 1)]).to_list(length=None)
    return {
        "results": [
            {k: d.get(k) for k in ("code", "name", "base_url", "active", "last_scraped_at")}
            for d in docs
        ]
    }


@app.patch("/admin/shops/{shop_code}", dependencies=[Depends(get_api_key)])
async def toggle_shop(shop_code: str, active: bool = Query(...)):
    if not await set_shop_active(shop_code.upper(), active, get_db()):
        raise HTTPException(status_code=404, detail=f"Unknown shop: {shop_code}")
    return {"shop_code": shop_code.upper(), "active": active}


@app.post("/admin/scrape/all", status_code=202, dependencies=[Depends(get_api_key)])
@limiter.limit("10/hour")
async def trigger_scrape_all(request: Request, background_tasks: BackgroundTasks):
    """
    Start a scrape of every active shop in the background.

    Returns immediately with 202; progress is visible through /admin/jobs.
    A started run cannot be cancelled.
    """
    background_tasks.add_task(get_crawler().scrape_all)
    logger.info("Scrape of all shops accepted")
    return {"status": "accepted", "message": "Scraping started for all active shops"}


@app.post("/admin/scrape/{shop_code}", status_code=202, dependencies=[Depends(get_api_key)])
@limiter.limit("30/hour")
async def trigger_scrape_shop(request: Request, shop_code: str, background_tasks: BackgroundTasks):
    """
    Start a scrape of one shop in the background.

    Raises:
        HTTPException: 404 for an unknown shop code, 400 when the shop is
            inactive or has no scraper. Both are decided before anything runs.
    """
    crawler = get_crawler()
    try:
        shop = await crawler.validate_shop_code(shop_code)
    except UnknownShopError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ShopNotScrapableError as e:
        raise HTTPException(status_code=400, detail=str(e))

    background_tasks.add_task(crawler.scrape_shop_by_code, shop.code)
    logger.info(f"Scrape of {shop.code} accepted")
    return {"status": "accepted", "shop_code": shop.code}


@app.get("/admin/jobs", dependencies=[Depends(get_api_key)])
async def list_jobs(limit: int = Query(20, ge=1, le=200)):
    """Ingestion jobs from the last 7 days, newest first."""
    jobs = await get_crawler().recent_jobs(limit)
    return {"results": [serialize_job(j) for j in jobs]}


@app.get("/admin/cache/stats", dependencies=[Depends(get_api_key)])
async def cache_stats():
    return await get_search_service().cache.key_counts()


@app.post("/admin/cache/invalidate", dependencies=[Depends(get_api_key)])
async def invalidate_cache(target: str = Query("all", pattern="^(all|search|cheapest)$")):
    cache = get_search_service().cache
    if target == "search":
        deleted = await cache.invalidate_search()
    elif target == "cheapest":
        deleted = await cache.invalidate_cheapest()
    else:
        deleted = await cache.invalidate_all()
    return {"status": "ok", "target": target, "deleted": deleted}


@app.post("/admin/index/rebuild", dependencies=[Depends(get_api_key)])
async def rebuild_index():
    service = get_search_service()
    if not service.index.enabled:
        raise HTTPException(status_code=400, detail="Search index is disabled")
    stats = await service.index.rebuild(get_db())
    await service.cache.invalidate_search()
    return stats.model_dump()


@app.get("/admin/index/health", dependencies=[Depends(get_api_key)])
async def index_health():
    return await get_search_service().index.health()


@app.get("/admin/search/stats", dependencies=[Depends(get_api_key)])
async def search_stats():
    return get_search_service().snapshot()


@app.post("/admin/search/reset", dependencies=[Depends(get_api_key)])
async def reset_search_stats():
    service = get_search_service()
    service.reset()
    return service.snapshot()


@app.post("/admin/renormalize/all", dependencies=[Depends(get_api_key)])
async def renormalize_all():
    stats = await Renormalizer(db=get_db()).renormalize_all()
    return stats.model_dump()


@app.post("/admin/renormalize/missing", dependencies=[Depends(get_api_key)])
async def renormalize_missing():
    stats = await Renormalizer(db=get_db()).renormalize_missing()
    return stats.model_dump()


# Run uvicorn externally or here
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=API_PORT, reload=True)
