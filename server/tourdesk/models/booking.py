"""Booking model definitions."""

from datetime import date, datetime, time
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Date, ForeignKey, Integer, String, Text, Time, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.clock import utcnow
from ..core.database import Base

if TYPE_CHECKING:
    from .payment import Payment
    from .product import Product
    from .promo import PromoCode
    from .schedule import ScheduledOccurrence
    from .tour import Tour
    from .user import User


class BookingStatus(str, Enum):
    """Booking status enumeration."""
    PENDING = "pending"
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    EXPIRED = "expired"


# Statuses whose seats count against an occurrence's capacity
ACTIVE_BOOKING_STATUSES = (
    BookingStatus.PENDING,
    BookingStatus.PENDING_PAYMENT,
    BookingStatus.CONFIRMED,
    BookingStatus.RESCHEDULED,
)

# Statuses that still await payment
UNPAID_BOOKING_STATUSES = (
    BookingStatus.PENDING,
    BookingStatus.PENDING_PAYMENT,
)


class Booking(Base):
    """Booking entity representing seats reserved on one tour occurrence."""

    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    reference_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)
    manage_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    tour_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tours.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    occurrence_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tour_occurrences.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    customer_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    promo_code_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("promo_codes.id", ondelete="SET NULL"),
        nullable=True
    )

    # Denormalised occurrence key for reporting and slot counting
    booking_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)

    slots: Mapped[int] = mapped_column(Integer, nullable=False)
    slot_details: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    # Amounts in minor units
    sub_total: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_price: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    status: Mapped[BookingStatus] = mapped_column(
        String(20),
        nullable=False,
        default=BookingStatus.PENDING,
        index=True
    )
    payment_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    checkout_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("slots > 0", name="ck_booking_slots_positive"),
        CheckConstraint("sub_total >= 0", name="ck_booking_sub_total_non_negative"),
        CheckConstraint("discount_amount >= 0", name="ck_booking_discount_non_negative"),
        CheckConstraint("total_price >= 0", name="ck_booking_total_non_negative"),
        CheckConstraint("discount_amount <= sub_total", name="ck_booking_discount_lte_sub_total"),
    )

    # Relationships
    tour: Mapped["Tour"] = relationship("Tour")
    occurrence: Mapped["ScheduledOccurrence"] = relationship("ScheduledOccurrence")
    customer: Mapped["User"] = relationship("User", back_populates="bookings")
    promo_code: Mapped["PromoCode | None"] = relationship("PromoCode")
    products: Mapped[list["BookingProduct"]] = relationship(
        "BookingProduct",
        back_populates="booking",
        cascade="all, delete-orphan"
    )
    payment: Mapped["Payment | None"] = relationship(
        "Payment",
        back_populates="booking",
        uselist=False
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_BOOKING_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, ref='{self.reference_number}', tour_id={self.tour_id}, "
            f"date={self.booking_date}, slots={self.slots}, status={self.status})>"
        )


class BookingProduct(Base):
    """Add-on product sold with a booking, with the unit price at time of sale."""

    __tablename__ = "booking_products"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    booking_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_booking_product_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_booking_product_price_non_negative"),
    )

    booking: Mapped["Booking"] = relationship("Booking", back_populates="products")
    product: Mapped["Product"] = relationship("Product")

    @property
    def line_total(self) -> int:
        return self.quantity * self.unit_price
