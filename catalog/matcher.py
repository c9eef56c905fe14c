# catalog/matcher.py
import logging
import re

from rapidfuzz.distance import Levenshtein

from crawler.db import get_db
from crawler.models import NormalizedListing, Product
from .normalizer import normalize_text

logger = logging.getLogger("catalog")

FUZZY_THRESHOLD = 0.85

# oldest first, so the earliest product always wins a tie
CATALOG_ORDER = [("created_at", 1), ("_id", 1)]


def similarity(a, b):
    """1 - levenshtein(a, b) / max(len(a), len(b)); 0.0 when either is empty."""
    if not a or not b:
        return 0.0
    return 1.0 - Levenshtein.distance(a, b) / max(len(a), len(b))


def ci_equals(value):
    """Mongo filter matching ``value`` exactly, ignoring case."""
    return {"$regex": f"^{re.escape(value)}$", "$options": "i"}


class ProductMatcher:
    """
    Resolve a normalized listing to an existing catalog product.

    Exact match on brand (case-insensitive) plus normalized model first; then a
    fuzzy comparison of normalized names against every product in the catalog.

    Note:
        The fuzzy step is a full collection scan, O(catalog size) per listing.
        It is the known scaling limit of ingestion; narrowing candidates by
        brand or a phonetic key would be needed for a much larger catalog.
    """

    def __init__(self, db=None, threshold=FUZZY_THRESHOLD):
        self.db = db if db is not None else get_db()
        self.threshold = threshold

    async def find_exact(self, brand, model):
        if not brand or not model:
            return None
        wanted = normalize_text(model)
        cursor = self.db.products.find({"brand": ci_equals(brand)}).sort(CATALOG_ORDER)
        async for doc in cursor:
            if normalize_text(doc.get("model")) == wanted:
                return Product.model_validate(doc)
        return None

    async def find_fuzzy(self, normalized_name):
        if not normalized_name:
            return None
        cursor = self.db.products.find({}).sort(CATALOG_ORDER)
        async for doc in cursor:
            score = similarity(normalized_name, doc.get("normalized_name") or "")
            if score > self.threshold:
                logger.debug(
                    f"Fuzzy match '{normalized_name}' -> '{doc.get('normalized_name')}' ({score:.3f})"
                )
                return Product.model_validate(doc)
        return None

    async def match(self, listing: NormalizedListing):
        """Return the matching Product, or None when a new one must be created."""
        product = await self.find_exact(listing.brand, listing.model)
        if product is not None:
            return product
        return await self.find_fuzzy(listing.normalized_name)
