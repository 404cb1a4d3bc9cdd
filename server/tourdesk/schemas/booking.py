"""Booking-related Pydantic schemas."""

from datetime import date, datetime, time

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from ..models.booking import BookingStatus
from .common import Money, PaginatedResponse


class CustomerInfo(BaseModel):
    """Contact details of the person booking."""

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr = Field(..., description="Customer email, used to find or create the customer")
    phone_number: str | None = Field(None, max_length=32)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class SlotDetail(BaseModel):
    """One seat and its price tier."""

    slot_type: str = Field(..., min_length=1, max_length=50, description="Slot type name, e.g. adult")


class ProductLine(BaseModel):
    """Add-on product ordered with a booking."""

    product_id: str = Field(..., description="Product ID")
    quantity: int = Field(1, ge=1, le=100)


class CreateBookingRequest(BaseModel):
    """Request schema for booking seats on a tour occurrence.

    Give either ``slots`` or ``slot_details``; with ``slot_details`` the seat
    count is the number of entries.
    """

    tour_id: str = Field(..., description="Tour ID")
    date: date
    start_time: time = Field(..., description="Occurrence start time")
    slots: int | None = Field(None, ge=1, le=1000, description="Number of seats")
    slot_details: list[SlotDetail] | None = Field(None, max_length=1000, description="Per-seat price tiers")
    customer: CustomerInfo
    products: list[ProductLine] = Field(default_factory=list)
    promo_code: str | None = Field(None, max_length=64)
    notes: str | None = Field(None, max_length=2000)

    @model_validator(mode="after")
    def resolve_slots(self) -> "CreateBookingRequest":
        if self.slot_details:
            if self.slots is not None and self.slots != len(self.slot_details):
                raise ValueError("slots must match the number of slot_details")
            self.slots = len(self.slot_details)
        elif self.slots is None:
            raise ValueError("Either slots or slot_details is required")
        return self

    @field_validator("start_time")
    @classmethod
    def drop_sub_minute(cls, v: time) -> time:
        return v.replace(second=0, microsecond=0, tzinfo=None)


class UpdateSlotsRequest(BaseModel):
    """Change the number of seats on a booking."""

    slots: int = Field(..., ge=1, le=1000)


class RescheduleRequest(BaseModel):
    """Move a booking to another occurrence of the same tour."""

    date: date
    start_time: time

    @field_validator("start_time")
    @classmethod
    def drop_sub_minute(cls, v: time) -> time:
        return v.replace(second=0, microsecond=0, tzinfo=None)


class PaymentLinkRequest(BaseModel):
    payment_link: str = Field(..., min_length=1, max_length=2048, pattern=r"^https?://")


class CancelBookingRequest(BaseModel):
    """Cancel a booking, optionally refunding the payment."""

    refund: bool = Field(False, description="Refund the payment through the payment provider")
    refund_amount: int | None = Field(None, ge=1, description="Partial refund in minor units; full refund when omitted")
    reason: str | None = Field(None, max_length=500)


class BookingProductLine(BaseModel):
    product_id: str
    name: str
    quantity: int
    unit_price: int
    line_total: int


class Booking(BaseModel):
    """Booking response schema."""

    id: str = Field(..., description="Unique booking ID")
    reference_number: str = Field(..., description="Short booking reference")
    tour_id: str
    occurrence_id: str
    customer_id: str
    date: date
    start_time: time
    slots: int
    slot_details: list[SlotDetail] | None = None
    sub_total: Money
    discount: Money
    total: Money
    status: BookingStatus
    payment_link: str | None = None
    manage_token: str | None = Field(None, description="Returned only when the booking is created")
    created_at: datetime


class BookingCustomer(BaseModel):
    id: str
    full_name: str
    email: str
    phone_number: str | None = None


class BookingPayment(BaseModel):
    payment_ref_id: str
    status: str
    amount_paid: int
    refunded_amount: int
    currency: str
    payment_intent_id: str | None = None
    paid_at: datetime | None = None


class BookingDetail(Booking):
    """Booking with its tour, customer, add-ons and payment flattened in."""

    tour_title: str
    meeting_point: str | None = None
    customer: BookingCustomer
    products: list[BookingProductLine] = Field(default_factory=list)
    promo_code: str | None = None
    payment: BookingPayment | None = None
    notes: str | None = None


class ListBookingsResponse(PaginatedResponse):
    """Response schema for booking listing."""

    items: list[Booking]
