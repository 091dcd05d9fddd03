"""
Database Schemas

MongoDB collection schemas and API payloads for the promotions service,
defined as Pydantic models.

Each document model maps to a collection named after it in lowercase
snake_case:
- Promotion -> "promotion" collection
- PromotionUsage -> "promotion_usage" collection
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Any, List, Literal, Optional
from datetime import datetime, timezone


def _as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes that are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _positive_or_none(value: Any) -> Any:
    if value is None or value == 0:
        return None
    return value


class Promotion(BaseModel):
    """
    Promotions collection schema
    Collection name: "promotion"

    Limits and thresholds are optional bounds: a stored 0 means "no bound"
    and is loaded as None.
    """
    id: Optional[str] = Field(None, description="String form of the document _id")
    code: str = Field(..., min_length=1, description="Redeemable code, stored uppercase")
    name: str = Field("", description="Display name")
    description: Optional[str] = Field(None, description="Display description")
    type: Literal["percentage", "fixed", "free_shipping"] = Field(..., description="Type of discount")
    value: float = Field(0, ge=0, description="Percent points (1-100) or fixed amount")
    active: bool = Field(True, description="Administrative on/off switch")
    start_date: datetime = Field(..., description="Start of the validity window (inclusive)")
    end_date: datetime = Field(..., description="End of the validity window (inclusive)")
    min_order_value: Optional[float] = Field(None, gt=0, description="Minimum cart total")
    max_discount_amount: Optional[float] = Field(None, gt=0, description="Cap on the discount granted")
    usage_limit: Optional[int] = Field(None, gt=0, description="Total redemptions allowed")
    used_count: int = Field(0, ge=0, description="Redemptions recorded so far")
    user_usage_limit: Optional[int] = Field(None, gt=0, description="Redemptions allowed per user")
    applies_to: Literal["all", "products", "categories"] = Field("all", description="Scope selector")
    applicable_products: List[str] = Field(default_factory=list, description="Product ids for products scope")
    applicable_categories: List[str] = Field(default_factory=list, description="Category ids for categories scope")
    exclude_sale_items: bool = Field(False, description="Skip items priced below their list price")

    @classmethod
    def from_document(cls, doc: dict) -> "Promotion":
        data = dict(doc)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("start_date", "end_date")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("min_order_value", "max_discount_amount", "usage_limit", "user_usage_limit", mode="before")
    @classmethod
    def _zero_is_unbounded(cls, v):
        return _positive_or_none(v)

    @field_validator("applicable_products", "applicable_categories", mode="before")
    @classmethod
    def _stringify_ids(cls, v):
        if v is None:
            return []
        # populated references arrive as sub-documents
        return [str(item["_id"]) if isinstance(item, dict) else str(item) for item in v]

    @model_validator(mode="after")
    def _free_shipping_has_no_value(self) -> "Promotion":
        if self.type == "free_shipping":
            self.value = 0
        return self


class CartItem(BaseModel):
    product: str = Field(..., description="Product id")
    category: str = Field(..., description="Category id")
    name: Optional[str] = Field(None, description="Product name")
    price: float = Field(..., ge=0, description="Unit price")
    quantity: int = Field(..., ge=1, description="Units in the cart")
    list_price: Optional[float] = Field(None, ge=0, description="Undiscounted unit price")

    @field_validator("product", "category", mode="before")
    @classmethod
    def _stringify_id(cls, v):
        return str(v)


class Cart(BaseModel):
    items: List[CartItem] = Field(default_factory=list)
    items_price: Optional[float] = Field(None, ge=0, description="Precomputed sum of price x quantity")
    shipping_price: Optional[float] = Field(None, ge=0)
    tax_price: Optional[float] = Field(None, ge=0)
    total_price: Optional[float] = Field(None, ge=0)


class ValidationResult(BaseModel):
    success: bool
    discount: Optional[float] = None
    free_shipping: Optional[bool] = None
    promotion: Optional[Promotion] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class PromotionUsage(BaseModel):
    """
    Promotion usage collection schema
    Collection name: "promotion_usage"

    One document per redeemed order.
    """
    promotion: str = Field(..., description="Promotion id")
    user: str = Field(..., description="User id")
    order: str = Field(..., description="Order id")
    used_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    discount_amount: float = Field(..., ge=0, description="Discount applied")
    original_total: float = Field(..., ge=0, description="Order total before discount")
    final_total: float = Field(..., ge=0, description="Order total after discount")


class RedemptionResult(BaseModel):
    success: bool
    message: str


class UsageStats(BaseModel):
    total_usage: int = 0
    total_discount_given: float = 0
    average_discount: float = 0
    unique_user_count: int = 0
