# crawler/db.py
from datetime import timedelta, timezone
from decimal import Decimal

from bson.codec_options import CodecOptions, TypeCodec, TypeRegistry
from bson.decimal128 import Decimal128
from motor.motor_asyncio import AsyncIOMotorClient

from .config import JOB_HISTORY_DAYS, MONGO_DB, MONGO_URI
from .models import IngestionJob, Shop

_client = None
_db = None

DEFAULT_SHOPS = [
    Shop(code="KONTAKT", name="Kontakt Home", base_url="https://kontakt.az"),
    Shop(code="IRSHAD", name="IRSHAD", base_url="https://irshad.az"),
    Shop(
        code="BAKU_ELECTRONICS",
        name="Baku Electronics",
        base_url="https://www.bakuelectronics.az",
    ),
    Shop(
        code="SHOP3", name="Shop 3", base_url="https://shop3.example.az", active=False
    ),
]


class DecimalCodec(TypeCodec):
    """Store prices as BSON Decimal128 so they round-trip exactly."""

    python_type = Decimal
    bson_type = Decimal128

    def transform_python(self, value):
        return Decimal128(value)

    def transform_bson(self, value):
        return value.to_decimal()


CODEC_OPTIONS = CodecOptions(
    type_registry=TypeRegistry([DecimalCodec()]),
    tz_aware=True,
    tzinfo=timezone.utc,
)


def get_client():
    """Initialize and return the MongoDB AsyncIOMotorClient singleton."""
    global _client, _db
    if _client is None:
        _client = AsyncIOMotorClient(MONGO_URI)
        _db = _client.get_database(MONGO_DB, codec_options=CODEC_OPTIONS)
    return _client


def get_db():
    """Return the MongoDB database instance, initializing if needed."""
    global _db
    if _db is None:
        get_client()
    return _db


async def ensure_indexes(db=None):
    """Create the lookup indexes the pipeline relies on."""
    if db is None:
        db = get_db()
    await db.shops.create_index("code", unique=True)
    await db.products.create_index("brand")
    await db.offers.create_index([("product_id", 1), ("shop_code", 1)])
    await db.offers.create_index([("active", 1), ("in_stock", 1), ("price", 1)])
    await db.ingestion_jobs.create_index([("started_at", -1)])


async def seed_shops(db=None):
    """Insert the default shops when the collection is empty."""
    if db is None:
        db = get_db()
    if await db.shops.count_documents({}) > 0:
        return 0
    for shop in DEFAULT_SHOPS:
        await db.shops.insert_one(shop.model_dump())
    return len(DEFAULT_SHOPS)


async def get_shop(code, db=None):
    if db is None:
        db = get_db()
    doc = await db.shops.find_one({"code": code})
    return Shop.model_validate(doc) if doc else None


async def list_active_shops(db=None):
    if db is None:
        db = get_db()
    docs = await db.shops.find({"active": True}).sort([("code", 1)]).to_list(length=None)
    return [Shop.model_validate(d) for d in docs]


async def mark_shop_scraped(code, when, db=None):
    if db is None:
        db = get_db()
    await db.shops.update_one({"code": code}, {"$set": {"last_scraped_at": when}})


async def set_shop_active(code, active, db=None):
    if db is None:
        db = get_db()
    res = await db.shops.update_one({"code": code}, {"$set": {"active": active}})
    return res.matched_count > 0


async def insert_job(job: IngestionJob, db=None):
    if db is None:
        db = get_db()
    await db.ingestion_jobs.insert_one(job.model_dump(by_alias=True))


async def save_job(job: IngestionJob, db=None):
    """Persist the mutable fields of an ingestion job."""
    if db is None:
        db = get_db()
    fields = job.model_dump(exclude={"id"})
    await db.ingestion_jobs.update_one({"_id": job.id}, {"$set": fields})


async def recent_jobs(now, limit=50, db=None):
    """Return jobs started within the history window, newest first."""
    if db is None:
        db = get_db()
    since = now - timedelta(days=JOB_HISTORY_DAYS)
    docs = (
        await db.ingestion_jobs.find({"started_at": {"$gte": since}})
        .sort([("started_at", -1)])
        .limit(limit)
        .to_list(length=limit)
    )
    return [IngestionJob.model_validate(d) for d in docs]
