"""Tests for remaining capacity and the atomic seat counter."""

from datetime import time, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import update

from tourdesk.core.exceptions import NotFoundError, ValidationError
from tourdesk.models.schedule import ScheduledOccurrence
from tourdesk.services.availability_service import AvailabilityService, remaining_slots
from tourdesk.services.booking_service import BookingService
from tourdesk.services.schedule_service import ScheduleService


def test_remaining_slots_is_capacity_minus_booked():
    assert remaining_slots(8, 5) == 3
    assert remaining_slots(8, 8) == 0


def test_remaining_slots_never_negative():
    """Overbooked legacy data reports zero rather than a negative count."""
    assert remaining_slots(8, 9) == 0


def test_occurrence_remaining_slots_matches_capacity_rule():
    occurrence = ScheduledOccurrence(max_slots=4, booked_slots=6)
    assert occurrence.remaining_slots == remaining_slots(4, 6) == 0

    occurrence.booked_slots = 1
    assert occurrence.remaining_slots == 3


@pytest.mark.asyncio
async def test_remaining_slots_counts_active_bookings(test_session, make_tour, booking_request, next_monday):
    """Capacity 8 with 5 seats booked leaves 3."""
    tour = await make_tour(capacity=8)
    booking_service = BookingService(test_session)
    await booking_service.create_booking(booking_request(tour, slots=3))
    await booking_service.create_booking(booking_request(tour, slots=2, email="li.wei@example.com"))

    availability = await AvailabilityService(test_session).get_remaining_slots(tour.id, next_monday, time(9, 0))

    assert availability.capacity == 8
    assert availability.booked == 5
    assert availability.remaining == 3


@pytest.mark.asyncio
async def test_cancelled_bookings_do_not_count(test_session, make_tour, booking_request, next_monday):
    tour = await make_tour(capacity=8)
    booking_service = BookingService(test_session)
    booking = await booking_service.create_booking(booking_request(tour, slots=4))

    await booking_service.cancel_booking(booking.id)

    availability = await AvailabilityService(test_session).get_remaining_slots(tour.id, next_monday, time(9, 0))
    assert availability.booked == 0
    assert availability.remaining == 8


@pytest.mark.asyncio
async def test_ungenerated_occurrence_uses_tour_capacity(test_session, make_tour, next_monday):
    tour = await make_tour(capacity=5)
    far_monday = next_monday + timedelta(weeks=70)

    availability = await AvailabilityService(test_session).get_remaining_slots(tour.id, far_monday, time(9, 0))

    assert availability.capacity == 5
    assert availability.remaining == 5


@pytest.mark.asyncio
async def test_remaining_slots_unknown_tour(test_session, next_monday):
    with pytest.raises(NotFoundError):
        await AvailabilityService(test_session).get_remaining_slots(uuid4(), next_monday, time(9, 0))


@pytest.mark.asyncio
async def test_adjust_booked_slots_guards_capacity(test_session, make_tour, next_monday):
    """The counter never exceeds max_slots nor drops below zero."""
    tour = await make_tour(capacity=3)
    occurrence = await ScheduleService(test_session).get_occurrence(tour.id, next_monday, time(9, 0))
    availability_service = AvailabilityService(test_session)

    assert await availability_service.adjust_booked_slots(occurrence.id, 3) is True
    assert await availability_service.adjust_booked_slots(occurrence.id, 1) is False
    assert await availability_service.adjust_booked_slots(occurrence.id, -4) is False
    assert await availability_service.adjust_booked_slots(occurrence.id, -3) is True
    await test_session.commit()

    refreshed = await ScheduleService(test_session).get_occurrence(tour.id, next_monday, time(9, 0))
    assert refreshed.booked_slots == 0


@pytest.mark.asyncio
async def test_fully_booked_dates(test_session, make_tour, next_monday):
    tour = await make_tour(capacity=2)
    sold_out = next_monday + timedelta(weeks=1)
    await test_session.execute(
        update(ScheduledOccurrence)
        .where(ScheduledOccurrence.tour_id == tour.id, ScheduledOccurrence.date == sold_out)
        .values(booked_slots=ScheduledOccurrence.max_slots)
    )
    await test_session.commit()

    dates = await AvailabilityService(test_session).get_fully_booked_dates(
        tour.id, next_monday, next_monday + timedelta(weeks=4)
    )

    assert dates == [sold_out]


@pytest.mark.asyncio
async def test_fully_booked_dates_rejects_inverted_range(test_session, make_tour, next_monday):
    tour = await make_tour()

    with pytest.raises(ValidationError):
        await AvailabilityService(test_session).get_fully_booked_dates(
            tour.id, next_monday, next_monday - timedelta(days=1)
        )
