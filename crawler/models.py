# crawler/models.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    return str(ObjectId())


class JobStatus(str, Enum):
    STARTED = "STARTED"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Shop(BaseModel):
    code: str
    name: str
    base_url: str
    active: bool = True
    last_scraped_at: Optional[datetime] = None


class ScrapedListing(BaseModel):
    """One product entry as a shop shows it, before reconciliation."""

    shop_code: str
    title: str
    url: str
    price: Optional[Decimal] = None
    old_price: Optional[Decimal] = None
    currency: str = "AZN"
    condition: str = "NEW"
    color: Optional[str] = None
    image_url: Optional[str] = None
    in_stock: bool = True
    availability_text: Optional[str] = None


class NormalizedListing(ScrapedListing):
    normalized_name: str
    brand: Optional[str] = None
    model: Optional[str] = None
    category: str = "SMARTPHONE"


class Product(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id, alias="_id")
    normalized_name: str
    brand: Optional[str] = None
    model: Optional[str] = None
    category: str = "SMARTPHONE"
    image_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class Offer(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id, alias="_id")
    product_id: str
    shop_code: str
    title: str
    url: str
    price: Optional[Decimal] = None
    old_price: Optional[Decimal] = None
    currency: str = "AZN"
    condition: str = "NEW"
    color: Optional[str] = None
    availability_text: Optional[str] = None
    in_stock: bool = True
    image_url: Optional[str] = None
    first_seen_at: datetime
    last_seen_at: datetime
    active: bool = True


class IngestionJob(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    id: str = Field(default_factory=new_id, alias="_id")
    shop_code: str
    status: JobStatus = JobStatus.STARTED
    found: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    error_message: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None

    def finalize(self, completed_at: datetime):
        self.completed_at = completed_at
        self.duration_seconds = int((completed_at - self.started_at).total_seconds())


class UpsertStats(BaseModel):
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
