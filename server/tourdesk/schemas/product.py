"""Product-related Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, Field

from .common import CurrencyMixin, Money


class CreateProductRequest(CurrencyMixin):
    """Request schema for creating an add-on product."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=5000)
    price_amount: int = Field(..., ge=0, description="Price in minor units")
    currency: str | None = Field(None, min_length=3, max_length=3, description="Defaults to the configured currency")
    image_url: str | None = Field(None, max_length=2048)


class UpdateProductRequest(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=5000)
    price_amount: int | None = Field(None, ge=0)
    image_url: str | None = Field(None, max_length=2048)
    is_active: bool | None = None


class Product(BaseModel):
    """Product response schema."""

    id: str
    name: str
    description: str | None = None
    price: Money
    image_url: str | None = None
    is_active: bool
    created_at: datetime


class AssignProductRequest(BaseModel):
    product_id: str = Field(..., description="Product to offer with the tour")


class TourProduct(BaseModel):
    """A product offered with a tour."""

    tour_id: str
    product: Product
    assigned_at: datetime


class ListProductsResponse(BaseModel):
    items: list[Product]


class ListTourProductsResponse(BaseModel):
    tour_id: str
    items: list[Product]
