"""Pydantic schemas for orders and the product listing.

This module exposes the request/validation schemas used by the orders API
and the read DTOs the views serialize responses with.
"""

import re
import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PRODUCT_ID_RE = re.compile(r"^[A-Z0-9_-]{2,32}$")

CATEGORIES = (
    "Electronics & Gadgets",
    "Fashion & Apparel",
    "Beauty & Personal Care",
    "Home & Kitchen",
    "Fitness & Outdoors",
    "Baby & Kids",
    "Pets",
    "Automotive & Tools",
    "Lifestyle & Hobbies",
)


def normalize_product_id(v: str) -> str:
    """Validate and normalize a product id to uppercase.

    Raises:
        ValueError: When the id does not match the expected pattern.
    """
    v2 = v.upper()
    if not PRODUCT_ID_RE.match(v2):
        raise ValueError("Invalid product id format")
    return v2


class OrderItemIn(BaseModel):
    """Input schema for a single cart line.

    Attributes:
        product: Product id. Normalized to uppercase and validated against
            a regex (2-32 chars, uppercase letters, digits, '_' and '-').
        quantity: Positive integer indicating units requested.
    """

    product: str = Field(min_length=2, max_length=32)
    quantity: int = Field(gt=0)

    @field_validator("product")
    @classmethod
    def validate_product(cls, v: str) -> str:
        return normalize_product_id(v)


class CreateOrderDTO(BaseModel):
    """Schema for placing an order.

    Accepts the camelCase names used by the storefront client
    (``deliveryAddress``) as well as snake_case. An empty ``items`` list is
    let through so the domain can report ``EMPTY_ORDER``.
    """

    model_config = ConfigDict(populate_by_name=True)

    items: list[OrderItemIn]
    delivery_address: str = Field(alias="deliveryAddress", min_length=1, max_length=500)
    phone: str = Field(min_length=5, max_length=32)
    description: str = Field(default="", max_length=1000)

    @field_validator("delivery_address", "phone")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class StatusUpdateDTO(BaseModel):
    status: str


class ProductQueryDTO(BaseModel):
    """Query parameters of the product listing."""

    category: Optional[Literal[CATEGORIES]] = None
    search: Optional[str] = Field(default=None, max_length=100)
    brand: Optional[str] = Field(default=None, max_length=120)
    on_sale: Optional[bool] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)


class FeaturedQueryDTO(BaseModel):
    limit: int = Field(default=8, ge=1, le=50)


class AdminOrderQueryDTO(BaseModel):
    """Query parameters of the admin order board."""

    status: Optional[Literal["pending", "confirmed", "out_for_delivery", "delivered", "cancelled"]] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)


class OrderLineReadDTO(BaseModel):
    product_id: str
    name: str
    unit_price_cents: int
    quantity: int
    image_ref: str = ""


class OrderReadDTO(BaseModel):
    """Serialized order returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    internal_id: Optional[int] = None
    user_id: int
    items: list[OrderLineReadDTO]
    total_cents: int
    currency: str
    delivery_address: str
    phone: str
    description: str = ""
    status: str
    is_paid: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
