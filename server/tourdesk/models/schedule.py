"""Recurrence rule and scheduled occurrence models.

A ``RecurrenceRule`` is the weekly pattern an admin configures (weekday plus
start time). A ``ScheduledOccurrence`` is one concrete dated run of the tour
with its own capacity and running count of booked slots.
"""

from datetime import date as date_type
from datetime import datetime, time
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Integer, Time, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.clock import utcnow
from ..core.database import Base

if TYPE_CHECKING:
    from .tour import Tour

WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


def remaining_slots(capacity: int, booked: int) -> int:
    """Seats left on an occurrence; never negative."""
    return max(0, capacity - booked)


class RecurrenceRule(Base):
    """Weekly recurring start time for a tour."""

    __tablename__ = "tour_recurrence_rules"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    tour_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tours.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # 0 = Monday ... 6 = Sunday, matching date.weekday()
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="ck_rule_weekday_range"),
        UniqueConstraint("tour_id", "weekday", "start_time", name="uq_rule_tour_weekday_time"),
    )

    tour: Mapped["Tour"] = relationship("Tour", back_populates="recurrence_rules")

    @property
    def weekday_name(self) -> str:
        return WEEKDAY_NAMES[self.weekday]

    def __repr__(self) -> str:
        return f"<RecurrenceRule(tour_id={self.tour_id}, {self.weekday_name} {self.start_time})>"


class ScheduledOccurrence(Base):
    """A dated run of a tour with its capacity and booked-slot counter."""

    __tablename__ = "tour_occurrences"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    tour_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tours.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    date: Mapped[date_type] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)

    # Capacity captured from the tour when the occurrence was generated
    max_slots: Mapped[int] = mapped_column(Integer, nullable=False)
    booked_slots: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

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
        CheckConstraint("max_slots >= 0", name="ck_occurrence_max_slots_non_negative"),
        CheckConstraint("booked_slots >= 0", name="ck_occurrence_booked_non_negative"),
        CheckConstraint("booked_slots <= max_slots", name="ck_occurrence_booked_lte_max"),
        UniqueConstraint("tour_id", "date", "start_time", name="uq_occurrence_tour_date_time"),
    )

    tour: Mapped["Tour"] = relationship("Tour", back_populates="occurrences")

    @property
    def remaining_slots(self) -> int:
        return remaining_slots(self.max_slots, self.booked_slots)

    def __repr__(self) -> str:
        return (
            f"<ScheduledOccurrence(tour_id={self.tour_id}, date={self.date}, "
            f"start_time={self.start_time}, booked={self.booked_slots}/{self.max_slots})>"
        )
