# search/relational.py
import logging
import re

from catalog.matcher import ci_equals
from catalog.normalizer import normalize_text
from crawler.db import get_db
from .models import OfferResult, SearchRequest

logger = logging.getLogger("search")

PRICE_ORDER = [("price", 1), ("_id", 1)]


def contains(text):
    return {"$regex": re.escape(text), "$options": "i"}


def base_predicates():
    """Always required: active, in stock and priced."""
    return [{"active": True}, {"in_stock": True}, {"price": {"$ne": None}}]


def condition_predicate(condition):
    return {"condition": ci_equals(condition)} if condition else None


def color_predicate(color):
    return {"color": ci_equals(color)} if color else None


def shop_predicate(shop_codes):
    return {"shop_code": {"$in": [c.upper() for c in shop_codes]}} if shop_codes else None


def price_predicate(min_price, max_price):
    bounds = {}
    if min_price is not None:
        bounds["$gte"] = min_price
    if max_price is not None:
        bounds["$lte"] = max_price
    return {"price": bounds} if bounds else None


class RelationalSearch:
    """
    Offer search straight against the catalog store.

    Used when the full-text index is disabled, failing or behind an open
    circuit. Filters are built as independent predicates and joined with
    ``$and``; results are ordered by ascending price.
    """

    def __init__(self, db=None):
        self.db = db if db is not None else get_db()

    async def text_predicate(self, query):
        if not query:
            return None
        normalized = normalize_text(query)
        product_ids = []
        if normalized:
            docs = await self.db.products.find(
                {"normalized_name": contains(normalized)}, {"_id": 1}
            ).to_list(length=None)
            product_ids = [d["_id"] for d in docs]
        return {"$or": [{"title": contains(query)}, {"product_id": {"$in": product_ids}}]}

    async def build_filter(self, request: SearchRequest):
        predicates = base_predicates() + [
            await self.text_predicate(request.query),
            condition_predicate(request.condition),
            color_predicate(request.color),
            shop_predicate(request.shop_codes),
            price_predicate(request.min_price, request.max_price),
        ]
        return {"$and": [p for p in predicates if p is not None]}

    async def search(self, request: SearchRequest):
        query = await self.build_filter(request)
        docs = (
            await self.db.offers.find(query)
            .sort(PRICE_ORDER)
            .limit(request.limit)
            .to_list(length=request.limit)
        )
        return await self.to_results(docs)

    async def cheapest_in_category(self, category, limit):
        products = await self.db.products.find(
            {"category": ci_equals(category)}, {"_id": 1}
        ).to_list(length=None)
        query = {
            "$and": base_predicates()
            + [{"product_id": {"$in": [p["_id"] for p in products]}}]
        }
        docs = await self.db.offers.find(query).sort(PRICE_ORDER).limit(limit).to_list(length=limit)
        return await self.to_results(docs)

    async def to_results(self, offers):
        """Join offers with their product and shop into search results."""
        if not offers:
            return []
        product_ids = list({o["product_id"] for o in offers})
        shop_codes = list({o["shop_code"] for o in offers})
        products = {
            p["_id"]: p
            for p in await self.db.products.find({"_id": {"$in": product_ids}}).to_list(length=None)
        }
        shops = {
            s["code"]: s
            for s in await self.db.shops.find({"code": {"$in": shop_codes}}).to_list(length=None)
        }

        results = []
        for offer in offers:
            product = products.get(offer["product_id"], {})
            shop = shops.get(offer["shop_code"], {})
            results.append(
                OfferResult(
                    offer_id=offer["_id"],
                    product_id=offer["product_id"],
                    shop_code=offer["shop_code"],
                    shop_name=shop.get("name"),
                    title=offer["title"],
                    normalized_name=product.get("normalized_name"),
                    brand=product.get("brand"),
                    model=product.get("model"),
                    category=product.get("category"),
                    color=offer.get("color"),
                    condition=offer.get("condition"),
                    price=offer.get("price"),
                    old_price=offer.get("old_price"),
                    currency=offer.get("currency"),
                    url=offer["url"],
                    image_url=offer.get("image_url"),
                    in_stock=offer.get("in_stock", True),
                )
            )
        return results
