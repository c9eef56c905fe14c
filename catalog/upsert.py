# catalog/upsert.py
import logging

from crawler.db import get_db
from crawler.models import NormalizedListing, Offer, Product, UpsertStats
from crawler.utils import utcnow
from .matcher import ProductMatcher

logger = logging.getLogger("catalog")

# offer fields copied from the listing whenever they change
TRACKED_FIELDS = (
    "title",
    "url",
    "currency",
    "condition",
    "color",
    "availability_text",
    "in_stock",
    "image_url",
)


class UpsertEngine:
    """
    Persist normalized listings as catalog products and per-shop offers.

    Note:
        Two shops ingesting the same unseen product at the same moment can
        each miss the other's insert and create two products. Nothing here
        locks around match-then-create; the duplicate is an accepted outcome
        of concurrent first sightings.
    """

    def __init__(self, db=None, matcher=None, clock=utcnow):
        self.db = db if db is not None else get_db()
        self.matcher = matcher or ProductMatcher(db=self.db)
        self.clock = clock

    async def resolve_product(self, listing: NormalizedListing) -> Product:
        """
        Return the catalog product for a listing, creating or enriching it.

        A matched product whose brand, model or image is still empty receives
        the listing's non-null value; existing non-null values are kept.
        """
        product = await self.matcher.match(listing)
        now = self.clock()

        if product is None:
            product = Product(
                normalized_name=listing.normalized_name,
                brand=listing.brand,
                model=listing.model,
                category=listing.category,
                image_url=listing.image_url,
                created_at=now,
                updated_at=now,
            )
            await self.db.products.insert_one(product.model_dump(by_alias=True))
            logger.info(
                f"Created product {product.id} '{product.normalized_name}' "
                f"(brand={product.brand}, model={product.model})"
            )
            return product

        updates = {}
        if product.brand is None and listing.brand:
            updates["brand"] = listing.brand
        if product.model is None and listing.model:
            updates["model"] = listing.model
        if product.image_url is None and listing.image_url:
            updates["image_url"] = listing.image_url

        if updates:
            updates["updated_at"] = now
            await self.db.products.update_one({"_id": product.id}, {"$set": updates})
            product = product.model_copy(update=updates)
            logger.info(f"Enriched product {product.id}: {sorted(updates)}")

        return product

    async def upsert_offer(self, product: Product, listing: NormalizedListing):
        """
        Create or refresh the offer for (product, shop).

        Returns:
            str: "created" for a new offer, "updated" when a field changed,
                "unchanged" when the sighting only refreshed last_seen_at

        Update Rules:
            - price change: the stored price moves to old_price, then the new
              price is written (one step of history)
            - a missing price in the listing never erases the stored one
            - last_seen_at is written on every sighting
            - a previously deactivated offer is reactivated
        """
        now = self.clock()
        existing = await self.db.offers.find_one(
            {"product_id": product.id, "shop_code": listing.shop_code}
        )

        if existing is None:
            offer = Offer(
                product_id=product.id,
                shop_code=listing.shop_code,
                title=listing.title,
                url=listing.url,
                price=listing.price,
                old_price=listing.old_price,
                currency=listing.currency,
                condition=listing.condition,
                color=listing.color,
                availability_text=listing.availability_text,
                in_stock=listing.in_stock,
                image_url=listing.image_url,
                first_seen_at=now,
                last_seen_at=now,
                active=True,
            )
            await self.db.offers.insert_one(offer.model_dump(by_alias=True))
            return "created"

        changes = {}
        current_price = existing.get("price")
        if listing.price is not None and listing.price != current_price:
            changes["old_price"] = (
                current_price if current_price is not None else listing.old_price
            )
            changes["price"] = listing.price
            logger.info(
                f"Price change {listing.shop_code} offer {existing['_id']}: "
                f"{current_price} -> {listing.price}"
            )

        for field in TRACKED_FIELDS:
            value = getattr(listing, field)
            if value is not None and value != existing.get(field):
                changes[field] = value

        if not existing.get("active", True):
            changes["active"] = True

        outcome = "updated" if changes else "unchanged"
        changes["last_seen_at"] = now
        await self.db.offers.update_one({"_id": existing["_id"]}, {"$set": changes})
        return outcome

    async def upsert_listings(self, listings) -> UpsertStats:
        """
        Persist a batch of normalized listings.

        A failure on one listing is logged and counted; the rest of the batch
        still runs.
        """
        stats = UpsertStats()
        for listing in listings:
            try:
                product = await self.resolve_product(listing)
                outcome = await self.upsert_offer(product, listing)
                if outcome == "created":
                    stats.created += 1
                elif outcome == "updated":
                    stats.updated += 1
                else:
                    stats.unchanged += 1
            except Exception as e:
                stats.failed += 1
                logger.exception(f"Failed to persist listing {listing.url}: {e}")
        logger.info(
            f"Upsert finished: created={stats.created} updated={stats.updated} "
            f"unchanged={stats.unchanged} failed={stats.failed}"
        )
        return stats
