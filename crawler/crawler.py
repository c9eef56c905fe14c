# crawler/crawler.py
import asyncio
import logging

from catalog.normalizer import normalize_listing
from catalog.upsert import UpsertEngine
from search.cache import SearchCache
from search.index import build_index
from .config import POLITE_DELAY
from .db import (
    get_db,
    get_shop,
    insert_job,
    list_active_shops,
    mark_shop_scraped,
    recent_jobs,
    save_job,
    seed_shops,
)
from .errors import ShopNotScrapableError, UnknownShopError
from .fetchers import Fetchers
from .models import IngestionJob, JobStatus
from .registry import SCRAPERS
from .scraper import ScrapeContext, run_scraper
from .utils import utcnow

logger = logging.getLogger("crawler")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
logger.addHandler(handler)


class Crawler:
    """
    Ingestion orchestrator.

    Runs every active shop that has a scraper as its own asyncio task, records
    one IngestionJob per shop, then refreshes the search index and drops the
    response caches.
    """

    def __init__(
        self,
        db=None,
        index=None,
        cache=None,
        scrapers=None,
        fetchers_factory=Fetchers,
        polite_delay=POLITE_DELAY,
        clock=utcnow,
    ):
        self.db = db if db is not None else get_db()
        self.index = index or build_index()
        self.cache = cache or SearchCache()
        self.scrapers = scrapers if scrapers is not None else SCRAPERS
        self.fetchers_factory = fetchers_factory
        self.polite_delay = polite_delay
        self.clock = clock
        self.upsert = UpsertEngine(db=self.db, clock=clock)

    async def close(self):
        """
        Release the index and cache clients.

        Fetch resources are owned per shop run and already closed by then.
        """
        await self.index.close()
        await self.cache.close()

    async def scrapable_shops(self):
        shops = await list_active_shops(self.db)
        return [s for s in shops if s.code in self.scrapers]

    async def validate_shop_code(self, code):
        """
        Check that a shop can be scraped on demand.

        Args:
            code (str): Shop code, any case

        Returns:
            Shop: The shop record

        Raises:
            UnknownShopError: No shop with this code
            ShopNotScrapableError: Shop is inactive or has no scraper
        """
        code = (code or "").strip().upper()
        shop = await get_shop(code, self.db)
        if shop is None:
            raise UnknownShopError(code)
        if not shop.active:
            raise ShopNotScrapableError(code, "shop is inactive")
        if code not in self.scrapers:
            raise ShopNotScrapableError(code, "no scraper registered")
        return shop

    async def scrape_shop(self, shop):
        """
        Scrape, normalize and persist one shop's listings.

        Args:
            shop (Shop): Shop to scrape

        Returns:
            IngestionJob: The finalized job record

        Job Lifecycle:
            - inserted as STARTED with ``started_at``
            - SUCCESS with found/created/updated/failed counts, or FAILED with
              the error message if anything in the run raised
            - ``completed_at`` and ``duration_seconds`` are always written,
              whichever way the run ended

        Note:
            The browser and HTTP client for this shop live only inside this
            call (``async with``), so they are released on every exit path.
        """
        job = IngestionJob(shop_code=shop.code, started_at=self.clock())
        await insert_job(job, self.db)
        logger.info(f"[{shop.code}] Job {job.id} started")

        try:
            scraper = self.scrapers[shop.code]()
            async with self.fetchers_factory() as fetchers:
                ctx = ScrapeContext(shop, fetchers, polite_delay=self.polite_delay)
                listings = await run_scraper(scraper, ctx)

            job.found = len(listings)
            if listings:
                stats = await self.upsert.upsert_listings(
                    [normalize_listing(listing) for listing in listings]
                )
                job.created, job.updated, job.failed = stats.created, stats.updated, stats.failed
            else:
                logger.warning(f"[{shop.code}] No listings found")

            job.status = JobStatus.SUCCESS
            await mark_shop_scraped(shop.code, self.clock(), self.db)
        except Exception as e:
            job.status = JobStatus.FAILED
            job.error_message = str(e) or e.__class__.__name__
            logger.exception(f"[{shop.code}] Job {job.id} failed: {e}")
        finally:
            job.finalize(self.clock())
            await save_job(job, self.db)
            logger.info(
                f"[{shop.code}] Job {job.id} {job.status}: found={job.found} created={job.created} "
                f"updated={job.updated} failed={job.failed} in {job.duration_seconds}s"
            )
        return job

    async def refresh_search(self):
        """Rebuild the index (best-effort) and always drop cached responses."""
        try:
            stats = await self.index.rebuild(self.db)
            if stats.error:
                logger.warning(f"Index rebuild incomplete: {stats.error}")
        except Exception as e:
            logger.exception(f"Index rebuild failed: {e}")
        finally:
            await self.cache.invalidate_all()

    async def scrape_all(self):
        """
        Scrape every active shop that has a scraper, concurrently.

        Returns:
            list[IngestionJob]: One finalized job per shop that got far
                enough to record one.

        Note:
            A shop whose run raises outside its own job handling (e.g. the job
            record could not be written) is logged and left out; the other
            shops are not affected.
        """
        shops = await self.scrapable_shops()
        logger.info(f"Scraping {len(shops)} shop(s): {[s.code for s in shops]}")

        results = await asyncio.gather(
            *(self.scrape_shop(shop) for shop in shops), return_exceptions=True
        )
        jobs = []
        for shop, result in zip(shops, results):
            if isinstance(result, BaseException):
                logger.error(f"[{shop.code}] Run aborted: {result}")
            else:
                jobs.append(result)

        await self.refresh_search()
        return jobs

    async def scrape_shop_by_code(self, code):
        """Validate, scrape one shop, then refresh index and caches."""
        shop = await self.validate_shop_code(code)
        job = await self.scrape_shop(shop)
        await self.refresh_search()
        return job

    async def recent_jobs(self, limit=50):
        return await recent_jobs(self.clock(), limit, self.db)


# convenience script
async def main():
    c = Crawler()
    try:
        await seed_shops(c.db)
        await c.scrape_all()
    finally:
        await c.close()


if __name__ == "__main__":
    asyncio.run(main())
