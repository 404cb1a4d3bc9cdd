"""Tour-related Pydantic schemas."""

from datetime import date, datetime, time
from typing import Annotated

from pydantic import AfterValidator, BaseModel, Field

from .common import Money, PaginatedResponse


class SlotType(BaseModel):
    """Named price tier for a seat, e.g. adult or child."""

    name: str = Field(..., min_length=1, max_length=50, description="Tier name")
    price_amount: int = Field(..., ge=0, description="Seat price in minor units")


def _unique_slot_type_names(slot_types: list[SlotType]) -> list[SlotType]:
    names = [tier.name.lower() for tier in slot_types]
    if len(names) != len(set(names)):
        raise ValueError("Slot type names must be unique")
    return slot_types


SlotTypeList = Annotated[list[SlotType], AfterValidator(_unique_slot_type_names)]


class CreateTourRequest(BaseModel):
    """Request schema for creating a tour."""

    title: str = Field(..., min_length=1, max_length=255, description="Tour title")
    slug: str = Field(..., min_length=1, max_length=255, pattern=r"^[a-z0-9-]+$", description="URL-friendly slug")
    description: str | None = Field(None, max_length=5000, description="Tour description")
    category: str | None = Field(None, max_length=100, description="Tour category")
    meeting_point: str | None = Field(None, max_length=255, description="Where guests meet")
    duration_minutes: int = Field(60, ge=1, le=24 * 60 * 14, description="Tour duration in minutes")
    capacity: int = Field(..., ge=1, le=1000, description="Seats per occurrence")
    rate: Money = Field(..., description="Price per seat")
    slot_types: SlotTypeList | None = Field(None, description="Optional per-seat price tiers")


class UpdateTourRequest(BaseModel):
    """Request schema for a partial tour update."""

    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=5000)
    category: str | None = Field(None, max_length=100)
    meeting_point: str | None = Field(None, max_length=255)
    duration_minutes: int | None = Field(None, ge=1, le=24 * 60 * 14)
    capacity: int | None = Field(None, ge=1, le=1000, description="Applies to occurrences generated from now on")
    rate: Money | None = None
    slot_types: SlotTypeList | None = None
    is_active: bool | None = None


class Tour(BaseModel):
    """Tour response schema."""

    id: str = Field(..., description="Unique tour ID")
    title: str = Field(..., description="Tour title")
    slug: str = Field(..., description="URL-friendly slug")
    description: str | None = Field(None, description="Tour description")
    category: str | None = Field(None, description="Tour category")
    meeting_point: str | None = Field(None, description="Where guests meet")
    duration_minutes: int = Field(..., description="Tour duration in minutes")
    capacity: int = Field(..., description="Seats per occurrence")
    rate: Money = Field(..., description="Price per seat")
    slot_types: list[SlotType] = Field(default_factory=list, description="Per-seat price tiers")
    is_active: bool = Field(..., description="Whether the tour accepts bookings")
    created_at: datetime = Field(..., description="Creation time (ISO 8601)")


class ListToursResponse(PaginatedResponse):
    """Response schema for tour listing."""

    items: list[Tour] = Field(..., description="Tours")


class RemainingSlotsResponse(BaseModel):
    """Remaining capacity for one tour occurrence."""

    tour_id: str
    date: date
    start_time: time
    capacity: int = Field(..., description="Seats offered on this occurrence")
    booked: int = Field(..., description="Seats held by active bookings")
    remaining: int = Field(..., ge=0, description="Seats still available, never negative")


class FullyBookedDatesResponse(BaseModel):
    """Dates on which every occurrence of a tour is sold out."""

    tour_id: str
    date_from: date
    date_to: date
    dates: list[date]
