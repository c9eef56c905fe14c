# search/models.py
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_LIMIT = 3
MAX_LIMIT = 100


class SearchRequest(BaseModel):
    query: Optional[str] = None
    condition: Optional[str] = None
    color: Optional[str] = None
    shop_codes: List[str] = Field(default_factory=list)
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    limit: int = DEFAULT_LIMIT

    @field_validator("limit", mode="before")
    @classmethod
    def clamp_limit(cls, value):
        if value is None or int(value) <= 0:
            return DEFAULT_LIMIT
        return min(int(value), MAX_LIMIT)

    @field_validator("query", "condition", "color", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator("shop_codes", mode="before")
    @classmethod
    def upper_codes(cls, value):
        return sorted({str(c).strip().upper() for c in (value or []) if str(c).strip()})

    def accepts(self, offer: "OfferResult") -> bool:
        """Apply the non-text filters to one result (post-filter of index hits)."""
        if self.condition and (offer.condition or "").lower() != self.condition.lower():
            return False
        if self.color and (offer.color or "").lower() != self.color.lower():
            return False
        if self.shop_codes and (offer.shop_code or "").upper() not in self.shop_codes:
            return False
        if self.min_price is not None or self.max_price is not None:
            if offer.price is None:
                return False
            if self.min_price is not None and offer.price < self.min_price:
                return False
            if self.max_price is not None and offer.price > self.max_price:
                return False
        return True


class OfferResult(BaseModel):
    offer_id: str
    product_id: Optional[str] = None
    shop_code: str
    shop_name: Optional[str] = None
    title: str
    normalized_name: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    category: Optional[str] = None
    color: Optional[str] = None
    condition: Optional[str] = None
    price: Optional[Decimal] = None
    old_price: Optional[Decimal] = None
    currency: Optional[str] = None
    url: str
    image_url: Optional[str] = None
    in_stock: bool = True


class SearchResponse(BaseModel):
    query: Optional[str] = None
    total_matches: int = 0
    offers: List[OfferResult] = Field(default_factory=list)
    # which stage answered: cache, index, fallback, database or none
    source: str = "none"


class IndexStats(BaseModel):
    indexed: int = 0
    failed: int = 0
    error: Optional[str] = None
