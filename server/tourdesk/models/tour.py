"""Tour model definition."""

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, CheckConstraint, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.clock import utcnow
from ..core.database import Base

if TYPE_CHECKING:
    from .product import TourProduct
    from .schedule import RecurrenceRule, ScheduledOccurrence


class Tour(Base):
    """Tour entity representing a bookable activity with a fixed capacity per occurrence."""

    __tablename__ = "tours"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Tour details
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    meeting_point: Mapped[str | None] = mapped_column(String(255), nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)

    # Seats per occurrence (group size limit)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)

    # Price per seat in minor units, optionally overridden per slot type
    rate_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    slot_types: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_tour_capacity_positive"),
        CheckConstraint("rate_amount >= 0", name="ck_tour_rate_amount_non_negative"),
        CheckConstraint("duration_minutes > 0", name="ck_tour_duration_positive"),
        CheckConstraint("length(currency) = 3", name="ck_tour_currency_length"),
    )

    # Relationships
    recurrence_rules: Mapped[list["RecurrenceRule"]] = relationship(
        "RecurrenceRule",
        back_populates="tour",
        cascade="all, delete-orphan"
    )
    occurrences: Mapped[list["ScheduledOccurrence"]] = relationship(
        "ScheduledOccurrence",
        back_populates="tour",
        cascade="all, delete-orphan"
    )
    product_links: Mapped[list["TourProduct"]] = relationship(
        "TourProduct",
        back_populates="tour",
        cascade="all, delete-orphan"
    )

    def price_for_slot_type(self, slot_type: str | None) -> int | None:
        """Price of one seat of the given type, or the base rate when no type is given."""
        if slot_type is None:
            return self.rate_amount
        for tier in self.slot_types or []:
            if tier.get("name", "").lower() == slot_type.lower():
                return int(tier["price_amount"])
        return None

    def __repr__(self) -> str:
        return f"<Tour(id={self.id}, slug='{self.slug}', capacity={self.capacity})>"
