# tests/test_crawler.py
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import FakeFetchers, TickingClock
from crawler.crawler import Crawler
from crawler.errors import FetchError, ShopNotScrapableError, UnknownShopError
from crawler.models import IngestionJob
from search.cache import SearchCache
from search.index import ElasticSearchIndex


class PhoneScraper:
    """Serves two phones on a single page."""

    code = "KONTAKT"

    async def listing_pages(self, ctx):
        yield ["Apple iPhone 13 Pro Max 256GB Qara", "Samsung Galaxy S23 Ultra 256GB"]

    def extract_listing(self, item, ctx):
        slug = item.lower().replace(" ", "-")
        return ctx.listing(
            title=item,
            url=ctx.absolute_url(f"/{slug}"),
            price=Decimal("2199.00"),
            availability_text="Stokda var",
        )


class BrokenScraper:
    code = "IRSHAD"

    async def listing_pages(self, ctx):
        raise RuntimeError("layout changed")
        yield []


class UnreachableScraper:
    code = "BAKU_ELECTRONICS"

    async def listing_pages(self, ctx):
        await ctx.fetch_rendered("https://www.bakuelectronics.az/catalog")
        yield []

    def extract_listing(self, item, ctx):
        return None


class RecordingIndex:
    enabled = True

    def __init__(self, fail=False):
        self.fail = fail
        self.rebuilds = 0

    async def rebuild(self, db):
        self.rebuilds += 1
        if self.fail:
            raise ConnectionError("elasticsearch down")
        from search.models import IndexStats

        return IndexStats()

    async def close(self):
        return None


@pytest.fixture
def make_crawler(fake_db, fake_redis, fake_es):
    def factory(scrapers, index=None, fetchers_factory=FakeFetchers):
        return Crawler(
            db=fake_db,
            index=index or ElasticSearchIndex(client=fake_es),
            cache=SearchCache(client=fake_redis),
            scrapers=scrapers,
            fetchers_factory=fetchers_factory,
            polite_delay=0,
            clock=TickingClock(),
        )

    return factory


@pytest.mark.asyncio
async def test_scrape_all_isolates_shop_failures(make_crawler, fake_db, fake_es, fake_redis):
    """
    Test a full run where one shop succeeds and another one blows up.

    Verifies that the failing shop gets a FAILED job with the error message,
    the healthy shop is persisted normally, and the run ends by rebuilding
    the search index and dropping cached responses.

    Asserts:
        - One job per scrapable shop, with the right statuses and counters
        - Every job has completed_at and duration_seconds set
        - Offers of the healthy shop are stored and indexed
        - Pre-existing cache entries are gone after the run
        - last_scraped_at is recorded only for the successful shop

    Note:
        SHOP3 is inactive and BAKU_ELECTRONICS has no scraper in this run, so
        neither produces a job.
    """
    fake_redis.store["search:0:stale"] = "{}"
    crawler = make_crawler({"KONTAKT": PhoneScraper, "IRSHAD": BrokenScraper})

    jobs = await crawler.scrape_all()

    by_shop = {j.shop_code: j for j in jobs}
    assert set(by_shop) == {"KONTAKT", "IRSHAD"}

    ok, failed = by_shop["KONTAKT"], by_shop["IRSHAD"]
    assert ok.status == "SUCCESS"
    assert (ok.found, ok.created, ok.updated, ok.failed) == (2, 2, 0, 0)
    assert failed.status == "FAILED"
    assert failed.error_message == "layout changed"

    stored = {d["shop_code"]: d for d in fake_db.ingestion_jobs.docs}
    for code in ("KONTAKT", "IRSHAD"):
        assert stored[code]["completed_at"] is not None
        assert stored[code]["duration_seconds"] is not None
        expected = int((stored[code]["completed_at"] - stored[code]["started_at"]).total_seconds())
        assert stored[code]["duration_seconds"] == expected

    assert len(fake_db.offers.docs) == 2
    assert len(fake_es.docs) == 2
    assert "search:0:stale" not in fake_redis.store

    shops = {d["code"]: d for d in fake_db.shops.docs}
    assert shops["KONTAKT"]["last_scraped_at"] is not None
    assert shops["IRSHAD"]["last_scraped_at"] is None


@pytest.mark.asyncio
async def test_unreachable_shop_finishes_with_zero_listings(make_crawler, fake_db):
    """
    Test that a page failing after all fetch retries ends traversal quietly.

    The job succeeds with nothing found rather than failing the shop.
    """

    def fetchers():
        return FakeFetchers(
            {"https://www.bakuelectronics.az/catalog": FetchError("https://www.bakuelectronics.az/catalog", "timeout")}
        )

    crawler = make_crawler({"BAKU_ELECTRONICS": UnreachableScraper}, fetchers_factory=fetchers)

    jobs = await crawler.scrape_all()

    assert len(jobs) == 1
    assert jobs[0].status == "SUCCESS"
    assert jobs[0].found == 0
    assert fake_db.offers.docs == []


@pytest.mark.asyncio
async def test_cache_invalidated_even_if_index_rebuild_fails(make_crawler, fake_redis):
    fake_redis.store["cheapest:0:abc"] = "{}"
    index = RecordingIndex(fail=True)
    crawler = make_crawler({"KONTAKT": PhoneScraper}, index=index)

    jobs = await crawler.scrape_all()

    assert jobs[0].status == "SUCCESS"
    assert index.rebuilds == 1
    assert "cheapest:0:abc" not in fake_redis.store
    assert fake_redis.store["cachegen"] == "1"


@pytest.mark.asyncio
async def test_validate_shop_code(make_crawler):
    """
    Test validation of manual single-shop scrapes.

    Asserts:
        - Unknown code -> UnknownShopError
        - Inactive shop -> ShopNotScrapableError
        - Active shop without a scraper -> ShopNotScrapableError
        - Codes are matched case-insensitively
    """
    crawler = make_crawler({"KONTAKT": PhoneScraper})

    with pytest.raises(UnknownShopError):
        await crawler.validate_shop_code("NOPE")
    with pytest.raises(ShopNotScrapableError):
        await crawler.validate_shop_code("SHOP3")
    with pytest.raises(ShopNotScrapableError):
        await crawler.validate_shop_code("BAKU_ELECTRONICS")

    shop = await crawler.validate_shop_code(" kontakt ")
    assert shop.code == "KONTAKT"


@pytest.mark.asyncio
async def test_scrape_shop_by_code_refreshes_search(make_crawler, fake_db):
    index = RecordingIndex()
    crawler = make_crawler({"KONTAKT": PhoneScraper, "IRSHAD": BrokenScraper}, index=index)

    job = await crawler.scrape_shop_by_code("kontakt")

    assert job.shop_code == "KONTAKT"
    assert job.status == "SUCCESS"
    assert index.rebuilds == 1
    assert len(fake_db.ingestion_jobs.docs) == 1


@pytest.mark.asyncio
async def test_recent_jobs_limited_to_history_window(make_crawler, fake_db):
    """
    Test that job history only covers the last 7 days, newest first.
    """
    crawler = make_crawler({})
    now = crawler.clock.now
    for days, code in ((10, "OLD"), (3, "IRSHAD"), (1, "KONTAKT")):
        job = IngestionJob(shop_code=code, started_at=now - timedelta(days=days))
        fake_db.ingestion_jobs.docs.append(job.model_dump(by_alias=True))

    jobs = await crawler.recent_jobs()

    assert [j.shop_code for j in jobs] == ["KONTAKT", "IRSHAD"]
