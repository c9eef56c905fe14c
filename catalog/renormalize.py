# catalog/renormalize.py
import logging

from pydantic import BaseModel

from crawler.db import get_db
from crawler.utils import utcnow
from .matcher import CATALOG_ORDER
from .normalizer import extract_brand_model

logger = logging.getLogger("catalog")


class RenormalizeStats(BaseModel):
    total: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: int = 0


class Renormalizer:
    """
    Re-run brand/model extraction over catalog products.

    Each product is re-parsed from the title of its earliest offer. Only new
    non-null values that differ from the stored ones are written, so a
    re-run can correct a brand or model but never blank it out.
    """

    def __init__(self, db=None, clock=utcnow):
        self.db = db if db is not None else get_db()
        self.clock = clock

    async def _first_offer_title(self, product_id):
        docs = (
            await self.db.offers.find({"product_id": product_id})
            .sort([("first_seen_at", 1), ("_id", 1)])
            .limit(1)
            .to_list(length=1)
        )
        return docs[0].get("title") if docs else None

    async def _renormalize(self, query):
        stats = RenormalizeStats()
        products = await self.db.products.find(query).sort(CATALOG_ORDER).to_list(length=None)

        for doc in products:
            stats.total += 1
            try:
                title = await self._first_offer_title(doc["_id"])
                if title is None:
                    stats.unchanged += 1
                    continue

                brand, model = extract_brand_model(title)
                updates = {}
                if brand and brand != doc.get("brand"):
                    updates["brand"] = brand
                if model and model != doc.get("model"):
                    updates["model"] = model

                if not updates:
                    stats.unchanged += 1
                    continue

                updates["updated_at"] = self.clock()
                await self.db.products.update_one({"_id": doc["_id"]}, {"$set": updates})
                stats.updated += 1
                logger.info(
                    f"Renormalized product {doc['_id']}: "
                    f"{doc.get('brand')}/{doc.get('model')} -> "
                    f"{updates.get('brand', doc.get('brand'))}/{updates.get('model', doc.get('model'))}"
                )
            except Exception as e:
                stats.errors += 1
                logger.exception(f"Failed to renormalize product {doc.get('_id')}: {e}")

        logger.info(
            f"Renormalization done: total={stats.total} updated={stats.updated} "
            f"unchanged={stats.unchanged} errors={stats.errors}"
        )
        return stats

    async def renormalize_all(self):
        return await self._renormalize({})

    async def renormalize_missing(self):
        """Only products whose brand or model is still empty."""
        return await self._renormalize({"$or": [{"brand": None}, {"model": None}]})
