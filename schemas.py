"""
Database Schemas for the Shop Ledger

Each Pydantic model represents a MongoDB collection or a sub-document embedded
in one. Collection names are the lowercase entity names: Customer -> "customer",
Product -> "product", Order -> "order".

Python attributes are snake_case; the wire format and the stored documents use
camelCase (e.g. product_details -> "productDetails").
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def _money(value: float) -> float:
    return round(value, 2)


def _as_text(value):
    # Numeric identifiers (pincode, phone) arrive as JSON numbers from some clients.
    if isinstance(value, float) and not value.is_integer():
        raise ValueError("must be a whole number")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value))
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------
# Shared pieces
# -----------------

class Comment(CamelModel):
    message: str = Field("", description="Free-form note")
    date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Contact(CamelModel):
    contact: str = Field(..., pattern=r"^\+?[1-9]\d{1,14}$", description="Phone number")
    whatsapp: bool = Field(False, description="Reachable on WhatsApp")

    @field_validator("contact", mode="before")
    @classmethod
    def _coerce_number(cls, value):
        return _as_text(value)


class OrderStatus(str, Enum):
    CREATED = "created"
    AMENDED = "amended"
    DELETED = "deleted"


# -----------------
# Customers
# -----------------

class CustomerCreate(CamelModel):
    name: Optional[str] = Field(None, description="Customer display name")
    shop_name: str = Field(..., min_length=1, description="Shop name")
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    town: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = Field(None, description="Postal code, kept as text")
    contact: List[Contact] = Field(default_factory=list)
    dues: float = Field(0.0, description="Outstanding balance, positive means the customer owes")
    comments: List[Comment] = Field(default_factory=list)

    @field_validator("pincode", mode="before")
    @classmethod
    def _coerce_pincode(cls, value):
        return _as_text(value)


class CustomerUpdate(CamelModel):
    name: Optional[str] = None
    shop_name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    town: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    contact: Optional[List[Contact]] = None
    dues: Optional[float] = None
    comments: Optional[List[Comment]] = Field(None, description="Appended to the existing comments")

    @field_validator("pincode", mode="before")
    @classmethod
    def _coerce_pincode(cls, value):
        return _as_text(value)


class CustomerRef(CamelModel):
    """The customer block of an order payload. Only userId is trusted."""

    user_id: str = Field(..., min_length=1)
    name: Optional[str] = None
    shop_name: Optional[str] = None


# -----------------
# Products
# -----------------

class ProductCreate(CamelModel):
    name: str = Field(..., min_length=1, description="Product name")
    description: List[str] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    usage: List[str] = Field(default_factory=list, description="How to use")
    precautions: List[str] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list, description="Image URLs")
    weight: Optional[float] = Field(None, ge=0)
    unit: Optional[str] = None
    mrp: float = Field(..., ge=0, description="List price")
    rate: float = Field(..., ge=0, description="Selling rate")


class ProductUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[List[str]] = None
    features: Optional[List[str]] = None
    usage: Optional[List[str]] = None
    precautions: Optional[List[str]] = None
    notes: Optional[List[str]] = None
    images: Optional[List[str]] = None
    weight: Optional[float] = Field(None, ge=0)
    unit: Optional[str] = None
    mrp: Optional[float] = Field(None, ge=0)
    rate: Optional[float] = Field(None, ge=0)


# ------------
# Order Models
# ------------

class LineItem(CamelModel):
    product_id: str = Field(..., min_length=1, description="Referenced productId")
    name: str = Field(..., description="Product name snapshot")
    weight: float = Field(..., gt=0)
    unit: str
    mrp: Optional[float] = Field(None, ge=0)
    rate: float = Field(..., gt=0, description="Unit rate at time of order")
    quantity: int = Field(..., ge=1)
    total_amount: Optional[float] = Field(None, gt=0, description="rate * quantity")

    @model_validator(mode="after")
    def _line_total(self):
        expected = _money(self.rate * self.quantity)
        if self.total_amount is None:
            self.total_amount = expected
        elif abs(self.total_amount - expected) > 0.005:
            raise ValueError(f"totalAmount {self.total_amount} does not equal rate * quantity ({expected})")
        return self


class FreeLineItem(CamelModel):
    product_id: Optional[str] = None
    name: str = "NA"
    weight: float = Field(0, ge=0)
    unit: str = "NA"
    mrp: Optional[float] = Field(None, ge=0)
    rate: float = Field(0, ge=0)
    quantity: int = Field(0, ge=0)
    total_amount: float = Field(0, ge=0)


class Billing(CamelModel):
    order_weight: float = Field(..., gt=0)
    order_amount: float = Field(..., gt=0, description="Sum of line totals")
    delivery_charges: float = Field(..., ge=0)
    payment_method: str = Field(..., min_length=1)
    money_given: float
    past_order_due: Optional[float] = Field(None, description="Defaults to the customer's current dues")
    total_amount: Optional[float] = Field(None, description="orderAmount + deliveryCharges")
    final_amount: Optional[float] = Field(
        None, description="orderAmount + deliveryCharges + pastOrderDue - moneyGiven"
    )


class OrderCreate(CamelModel):
    user: CustomerRef
    product_details: List[LineItem] = Field(..., min_length=1)
    free_products: List[FreeLineItem] = Field(default_factory=list)
    is_free_products: bool = False
    billing: Billing
    comments: List[Comment] = Field(default_factory=list)

    @model_validator(mode="after")
    def _free_products_present(self):
        if self.is_free_products and not self.free_products:
            raise ValueError("freeProducts must be provided when isFreeProducts is true")
        return self


class OrderUpdate(CamelModel):
    user: Optional[CustomerRef] = None
    product_details: Optional[List[LineItem]] = Field(None, min_length=1)
    free_products: Optional[List[FreeLineItem]] = None
    is_free_products: Optional[bool] = None
    billing: Optional[Billing] = None
    comments: Optional[List[Comment]] = Field(None, description="Appended to the existing comments")


class QuoteRequest(CamelModel):
    user_id: Optional[str] = None
    product_details: List[LineItem] = Field(..., min_length=1)
    delivery_charges: float = Field(0, ge=0)
    money_given: float = 0
    past_order_due: Optional[float] = None


class SearchRequest(BaseModel):
    query: str = ""
