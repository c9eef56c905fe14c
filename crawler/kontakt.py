# crawler/kontakt.py
import json
import logging

from .parsing import first_href, first_image, first_text, soup_of
from .utils import parse_price

logger = logging.getLogger("crawler")


class KontaktScraper:
    """
    Kontakt Home smartphone catalog.

    Numbered pages (``?p=N``) rendered client-side; every product card carries
    a ``data-gtm`` JSON attribute with name, price, discount and brand, which
    is read first. Plain CSS selectors are the fallback.
    """

    code = "KONTAKT"
    CATEGORY_URL = "https://kontakt.az/telefoniya/smartfonlar"
    MAX_PAGES = 15
    ITEM_SELECTOR = ".prodItem.product-item[data-gtm]"

    TITLE_SELECTORS = (".prodTitle", "a.prodTitle", ".prodCartContent .prodTitle")
    PRICE_SELECTORS = (".product-price-label strong span", ".price")
    LINK_SELECTORS = (
        "a.prodTitle",
        "a.product-item-link",
        "a[href*='/']",
        ".prodCartContent a[href]",
        "a[href]",
    )
    IMAGE_SELECTORS = (".prodItem img", "img[data-src]", "img[src]")
    STOCK_SELECTORS = (".stock", "[class*='stock']", "[class*='availability']")

    def page_url(self, page):
        return self.CATEGORY_URL if page == 1 else f"{self.CATEGORY_URL}?p={page}"

    async def listing_pages(self, ctx):
        for page in range(1, self.MAX_PAGES + 1):
            html = await ctx.fetch_rendered(self.page_url(page), wait_for=self.ITEM_SELECTOR)
            items = soup_of(html).select(self.ITEM_SELECTOR)
            if not items:
                logger.info(f"[{self.code}] Page {page} is empty, stopping")
                return
            logger.info(f"[{self.code}] Page {page}: {len(items)} products")
            yield items

    def _from_gtm(self, item):
        raw = item.get("data-gtm")
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            logger.debug(f"[{self.code}] Unreadable data-gtm: {raw[:80]}")
            return {}
        return data if isinstance(data, dict) else {}

    def extract_listing(self, item, ctx):
        gtm = self._from_gtm(item)

        title = (gtm.get("item_name") or "").strip() or first_text(item, self.TITLE_SELECTORS)
        price = parse_price(gtm.get("price"))
        old_price = None
        if price is not None and price > 0:
            discount = parse_price(gtm.get("discount"))
            if discount is not None and discount > 0:
                old_price = price + discount
        else:
            price = parse_price(first_text(item, self.PRICE_SELECTORS))

        if not title or price is None or price <= 0:
            logger.debug(f"[{self.code}] Skipping card without title or price: {title!r}")
            return None

        href = first_href(item, self.LINK_SELECTORS)
        if href is None:
            logger.debug(f"[{self.code}] Skipping '{title}': no product link")
            return None

        image = first_image(item, self.IMAGE_SELECTORS)
        return ctx.listing(
            title=title,
            url=ctx.absolute_url(href),
            price=price,
            old_price=old_price,
            image_url=ctx.absolute_url(image) if image else None,
            availability_text=first_text(item, self.STOCK_SELECTORS),
        )
