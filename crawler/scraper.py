# crawler/scraper.py
import asyncio
import logging
from typing import AsyncIterator, List, Optional, Protocol

from .config import POLITE_DELAY
from .errors import FetchError
from .models import ScrapedListing, Shop
from .utils import infer_in_stock, normalize_url

logger = logging.getLogger("crawler")


class ScrapeContext:
    """
    Shared helpers handed to a source scraper for one run.

    Holds the shop, the fetch resources and the politeness delay; scrapers
    use it instead of inheriting fetch logic.
    """

    def __init__(self, shop: Shop, fetchers, polite_delay=POLITE_DELAY):
        self.shop = shop
        self.fetchers = fetchers
        self.polite_delay = polite_delay

    async def fetch_static(self, url):
        return await self.fetchers.static.fetch(url)

    async def fetch_rendered(self, url, wait_for=None):
        if self.fetchers.rendered is None:
            logger.warning(f"Rendered fetch unavailable, falling back to static fetch for {url}")
            return await self.fetch_static(url)
        return await self.fetchers.rendered.fetch(url, wait_for=wait_for)

    async def fetch_with_load_more(self, url, button_selector, max_clicks):
        if self.fetchers.rendered is None:
            logger.warning(f"Rendered fetch unavailable, falling back to static fetch for {url}")
            return await self.fetch_static(url)
        return await self.fetchers.rendered.fetch_with_load_more(url, button_selector, max_clicks)

    def absolute_url(self, href):
        return normalize_url(href, self.shop.base_url)

    def listing(self, availability_text=None, **fields):
        """Build a ScrapedListing for this shop."""
        if availability_text is not None and "in_stock" not in fields:
            fields["in_stock"] = infer_in_stock(availability_text)
        return ScrapedListing(
            shop_code=self.shop.code, availability_text=availability_text, **fields
        )

    async def pause(self):
        if self.polite_delay > 0:
            await asyncio.sleep(self.polite_delay)


class SourceScraper(Protocol):
    """What every shop scraper provides."""

    code: str

    def listing_pages(self, ctx: ScrapeContext) -> AsyncIterator[List]:
        """Yield the raw listing items found on each page, one page at a time."""
        ...

    def extract_listing(self, item, ctx: ScrapeContext) -> Optional[ScrapedListing]:
        """Map one raw item to a listing, or None to discard it."""
        ...


async def run_scraper(scraper: SourceScraper, ctx: ScrapeContext):
    """
    Drive a source scraper over all of its listing pages.

    Args:
        scraper (SourceScraper): Source-specific traversal and extraction
        ctx (ScrapeContext): Shared helpers for this run

    Returns:
        list[ScrapedListing]: Every listing extracted before traversal ended

    Behavior:
        - pages are fetched strictly one after another, with ``ctx.pause()``
          between them
        - an item that fails to extract is logged and skipped
        - a page that still fails after fetch retries ends traversal early;
          listings already collected are returned
        - any other traversal error propagates to the caller
    """
    listings = []
    pages = scraper.listing_pages(ctx)
    page_no = 0
    try:
        async for items in pages:
            page_no += 1
            for item in items:
                try:
                    listing = scraper.extract_listing(item, ctx)
                except Exception as e:
                    logger.warning(f"[{scraper.code}] Skipping listing on page {page_no}: {e}")
                    continue
                if listing is not None:
                    listings.append(listing)
            await ctx.pause()
    except FetchError as e:
        logger.error(f"[{scraper.code}] Traversal stopped after page {page_no}: {e}")
    finally:
        await pages.aclose()

    logger.info(f"[{scraper.code}] Scraped {len(listings)} listings from {page_no} page(s)")
    return listings
