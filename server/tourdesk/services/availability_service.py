"""Availability service: remaining capacity and atomic seat counters."""

import logging
from dataclasses import dataclass
from datetime import date, time
from typing import Iterable
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from ..core.clock import utcnow
from ..core.exceptions import ValidationError
from ..models.booking import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus
from ..models.schedule import ScheduledOccurrence, remaining_slots
from .tour_service import TourService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotAvailability:
    tour_id: UUID
    date: date
    start_time: time
    capacity: int
    booked: int

    @property
    def remaining(self) -> int:
        return remaining_slots(self.capacity, self.booked)


class AvailabilityService:
    """Service for reading and adjusting occurrence capacity."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.tour_service = TourService(db)

    async def get_remaining_slots(self, tour_id: UUID, on: date, start_time: time) -> SlotAvailability:
        """
        Compute remaining capacity for one tour occurrence.

        Capacity is the occurrence's ``max_slots`` when it has been generated,
        otherwise the tour's current capacity. Booked seats are the sum over
        active bookings at that date and time. Database errors propagate; they
        are never reported as zero availability.

        Raises:
            NotFoundError: If tour not found
        """
        tour = await self.tour_service.get_tour_by_id_or_raise(tour_id)

        capacity_stmt = select(ScheduledOccurrence.max_slots).where(
            ScheduledOccurrence.tour_id == tour_id,
            ScheduledOccurrence.date == on,
            ScheduledOccurrence.start_time == start_time,
        )
        max_slots = (await self.db.execute(capacity_stmt)).scalar_one_or_none()
        capacity = max_slots if max_slots is not None else tour.capacity

        booked_stmt = select(func.coalesce(func.sum(Booking.slots), 0)).where(
            Booking.tour_id == tour_id,
            Booking.booking_date == on,
            Booking.start_time == start_time,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        )
        booked = int((await self.db.execute(booked_stmt)).scalar_one())

        return SlotAvailability(
            tour_id=tour_id,
            date=on,
            start_time=start_time,
            capacity=capacity,
            booked=booked,
        )

    async def adjust_booked_slots(self, occurrence_id: UUID, delta: int) -> bool:
        """
        Atomically add ``delta`` seats to an occurrence's booked counter.

        The update only matches when the new count stays within
        ``0..max_slots``, so concurrent writers can never jointly overbook.
        Does not commit.

        Returns:
            True if the counter changed, False if the guard rejected it
        """
        if delta == 0:
            return True

        guard = (
            ScheduledOccurrence.booked_slots + delta <= ScheduledOccurrence.max_slots
            if delta > 0
            else ScheduledOccurrence.booked_slots + delta >= 0
        )
        stmt = (
            update(ScheduledOccurrence)
            .where(ScheduledOccurrence.id == occurrence_id, guard)
            .values(booked_slots=ScheduledOccurrence.booked_slots + delta)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def get_fully_booked_dates(self, tour_id: UUID, date_from: date, date_to: date) -> list[date]:
        """
        Dates in the range on which every occurrence of the tour is sold out.

        Raises:
            NotFoundError: If tour not found
            ValidationError: If the range is inverted or longer than a year
        """
        if date_to < date_from:
            raise ValidationError("date_to must not be before date_from")
        if (date_to - date_from).days > 366:
            raise ValidationError("Date range must not exceed one year")

        await self.tour_service.get_tour_by_id_or_raise(tour_id)

        open_occurrences = func.sum(
            case((ScheduledOccurrence.booked_slots < ScheduledOccurrence.max_slots, 1), else_=0)
        )
        stmt = (
            select(ScheduledOccurrence.date)
            .where(
                ScheduledOccurrence.tour_id == tour_id,
                ScheduledOccurrence.date >= date_from,
                ScheduledOccurrence.date <= date_to,
            )
            .group_by(ScheduledOccurrence.date)
            .having(open_occurrences == 0)
            .order_by(ScheduledOccurrence.date)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def end_booking(
        self,
        booking: Booking,
        new_status: BookingStatus,
        from_statuses: Iterable[BookingStatus] = ACTIVE_BOOKING_STATUSES,
    ) -> bool:
        """
        Move a booking out of ``from_statuses`` and give its seats back.

        The status change is a conditional update, so a booking ended
        concurrently (by a webhook, the expiry worker or an admin) releases its
        seats exactly once. Does not commit.

        Returns:
            True if this call ended the booking, False if it was already ended
        """
        result = await self.db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status.in_(tuple(from_statuses)))
            .values(status=new_status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        set_committed_value(booking, "status", new_status)

        if not await self.adjust_booked_slots(booking.occurrence_id, -booking.slots):
            logger.error(
                "Occurrence counter lower than released seats, counter left unchanged",
                extra={
                    "booking_id": str(booking.id),
                    "occurrence_id": str(booking.occurrence_id),
                    "slots": booking.slots
                }
            )

        logger.info(
            "Booking ended and seats released",
            extra={
                "booking_id": str(booking.id),
                "occurrence_id": str(booking.occurrence_id),
                "slots": booking.slots,
                "status": new_status.value
            }
        )
        return True
