# crawler/irshad.py
import logging

from .parsing import first_image, first_text, soup_of
from .utils import parse_price

logger = logging.getLogger("crawler")


class IrshadScraper:
    """
    Irshad mobile phones.

    One category page that grows through a "load more" button. The price box
    shows "<old> AZN <new> AZN" for discounted items and a single amount
    otherwise. Cards without a readable price are still returned, with a null
    price, and reconciled on a later run.
    """

    code = "IRSHAD"
    CATEGORY_URL = "https://irshad.az/az/telefon-ve-aksesuarlar/mobil-telefonlar"
    ITEM_SELECTOR = ".product"
    LOAD_MORE_SELECTOR = "#loadMore"
    MAX_LOAD_MORE_CLICKS = 10

    LINK_SELECTOR = "a[href*='/az/mehsullar/']"
    TITLE_SELECTORS = (".product__title", ".product-title", "h3", "h4")
    IMAGE_SELECTORS = (
        "img[src*='storage.irshad.az/products']",
        "img[data-src*='storage.irshad.az']",
        "img[src]",
        "img[data-src]",
    )
    STOCK_SELECTORS = (".product__stock", "[class*='stock']")

    async def listing_pages(self, ctx):
        html = await ctx.fetch_with_load_more(
            self.CATEGORY_URL, self.LOAD_MORE_SELECTOR, self.MAX_LOAD_MORE_CLICKS
        )
        items = soup_of(html).select(self.ITEM_SELECTOR)
        logger.info(f"[{self.code}] {len(items)} products after load-more expansion")
        if items:
            yield items

    def _prices(self, item):
        container = item.select_one(".product__price__current")
        if container is not None:
            parts = [p.strip() for p in container.get_text(" ", strip=True).split("AZN")]
            parts = [p for p in parts if p]
            if len(parts) >= 2:
                return parse_price(parts[1]), parse_price(parts[0])
            if len(parts) == 1:
                return parse_price(parts[0]), None
        return parse_price(first_text(item, (".price", "[class*='price']"))), None

    def extract_listing(self, item, ctx):
        link = item.select_one(self.LINK_SELECTOR)
        if link is None:
            return None

        title = link.get_text(" ", strip=True) or first_text(item, self.TITLE_SELECTORS)
        if not title:
            logger.debug(f"[{self.code}] Skipping card without title: {link.get('href')}")
            return None

        price, old_price = self._prices(item)
        if price is None:
            logger.debug(f"[{self.code}] No price for '{title}', keeping listing without price")

        image = first_image(item, self.IMAGE_SELECTORS)
        return ctx.listing(
            title=title,
            url=ctx.absolute_url(link.get("href")),
            price=price,
            old_price=old_price,
            image_url=ctx.absolute_url(image) if image else None,
            availability_text=first_text(item, self.STOCK_SELECTORS),
        )
