"""Rental-related Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, Field

from .common import CurrencyMixin, Money, PaginatedResponse


class CreateRentalRequest(CurrencyMixin):
    """Request schema for listing a rental."""

    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=5000)
    location: str | None = Field(None, max_length=255)
    owner_name: str | None = Field(None, max_length=255)
    price_per_day: int = Field(..., ge=0, description="Daily price in minor units")
    currency: str | None = Field(None, min_length=3, max_length=3)
    image_url: str | None = Field(None, max_length=2048)
    is_available: bool = True


class Rental(BaseModel):
    """Rental response schema."""

    id: str
    title: str
    description: str | None = None
    location: str | None = None
    owner_name: str | None = None
    price_per_day: Money
    image_url: str | None = None
    is_available: bool
    created_at: datetime


class ListRentalsResponse(PaginatedResponse):
    items: list[Rental]
