# crawler/baku_electronics.py
import logging
import re

from .parsing import dig, first_image, first_text, json_blob, soup_of
from .utils import parse_price

logger = logging.getLogger("crawler")

_MANAT_AMOUNT_RE = re.compile(r"(\d[\d\s.,]*)₼")


class BakuElectronicsScraper:
    """
    Baku Electronics smartphones.

    Next.js storefront: each numbered page (``?page=N``) embeds its product
    list in ``script#__NEXT_DATA__``. Product links in the markup are used
    only when that blob is missing or malformed.
    """

    code = "BAKU_ELECTRONICS"
    CATEGORY_URL = (
        "https://www.bakuelectronics.az/catalog/telefonlar-qadcetler/smartfonlar-mobil-telefonlar"
    )
    MAX_PAGES = 30
    NEXT_DATA_SELECTOR = "script#__NEXT_DATA__"
    ITEMS_PATH = ("props", "pageProps", "products", "products", "items")
    LINK_SELECTOR = "a[href^='/mehsul/']"
    IMAGE_SELECTORS = ("img[data-src]", "img[src]")

    def page_url(self, page):
        return self.CATEGORY_URL if page == 1 else f"{self.CATEGORY_URL}?page={page}"

    def page_items(self, html):
        """Structured product dicts when available, otherwise product link tags."""
        soup = soup_of(html)
        items = dig(json_blob(soup, self.NEXT_DATA_SELECTOR), *self.ITEMS_PATH)
        if isinstance(items, list) and items:
            return items
        logger.info(f"[{self.code}] No __NEXT_DATA__ products, using markup links")
        return soup.select(self.LINK_SELECTOR)

    async def listing_pages(self, ctx):
        for page in range(1, self.MAX_PAGES + 1):
            html = await ctx.fetch_rendered(self.page_url(page))
            items = self.page_items(html)
            if not items:
                logger.info(f"[{self.code}] Page {page} is empty, stopping")
                return
            logger.info(f"[{self.code}] Page {page}: {len(items)} products")
            yield items

    def extract_listing(self, item, ctx):
        if isinstance(item, dict):
            return self._from_json(item, ctx)
        return self._from_markup(item, ctx)

    def _from_json(self, node, ctx):
        name = (node.get("name") or "").strip()
        if not name:
            return None
        price = parse_price(node.get("discounted_price"))
        if price is None or price <= 0:
            logger.debug(f"[{self.code}] Invalid price for '{name}'")
            return None

        old_price = None
        discount = parse_price(node.get("discount"))
        if discount is not None and discount > 0:
            old_price = parse_price(node.get("price"))

        quantity = node.get("quantity")
        in_stock = quantity is None or (isinstance(quantity, (int, float)) and quantity > 0)
        image = node.get("image")
        return ctx.listing(
            title=name,
            url=ctx.absolute_url(f"/mehsul/{node.get('slug', '')}"),
            price=price,
            old_price=old_price,
            in_stock=in_stock,
            image_url=ctx.absolute_url(image) if image else None,
        )

    def _from_markup(self, link, ctx):
        title = first_text(link, ("h4", "h3", ".product-title"))
        if not title:
            return None

        price = None
        amount_text = first_text(link, ("[class*='price']",)) or link.get_text(" ", strip=True)
        for amount in _MANAT_AMOUNT_RE.findall(amount_text):
            parsed = parse_price(amount)
            if parsed is not None and parsed > 0:
                price = parsed
                break
        if price is None:
            logger.debug(f"[{self.code}] No price for '{title}', keeping listing without price")

        image = first_image(link, self.IMAGE_SELECTORS)
        return ctx.listing(
            title=title,
            url=ctx.absolute_url(link.get("href")),
            price=price,
            image_url=ctx.absolute_url(image) if image else None,
        )
