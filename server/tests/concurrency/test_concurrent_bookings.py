"""Concurrency tests for booking operations."""

import asyncio
from datetime import time, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tourdesk.core.clock import utctoday
from tourdesk.core.database import Base, build_engine
from tourdesk.core.exceptions import CapacityFullError, PromoUnavailableError
from tourdesk.models.booking import BookingStatus
from tourdesk.schemas.booking import CreateBookingRequest, CustomerInfo
from tourdesk.schemas.common import Money
from tourdesk.schemas.promo import CreatePromoRequest
from tourdesk.schemas.schedule import RecurrenceRuleIn
from tourdesk.schemas.tour import CreateTourRequest
from tourdesk.services.booking_service import BookingService
from tourdesk.services.promo_service import PromoService
from tourdesk.services.schedule_service import ScheduleService, first_weekday_on_or_after
from tourdesk.services.tour_service import TourService

FRIDAY = 4
DEPARTURE = time(17, 0)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Sessions on a file database, so each one gets its own connection."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest.fixture
def next_friday():
    return first_weekday_on_or_after(utctoday() + timedelta(days=1), FRIDAY)


async def _create_tour(session_factory, capacity: int):
    async with session_factory() as session:
        tour = await TourService(session).create_tour(
            CreateTourRequest(
                title="Sunset Sail",
                slug="sunset-sail",
                capacity=capacity,
                rate=Money(amount=4000, currency="USD"),
            )
        )
        await ScheduleService(session).save_recurrence_rules(
            tour.id, [RecurrenceRuleIn(weekday=FRIDAY, start_time=DEPARTURE)]
        )
        return tour.id


def _request(tour_id, on, guest: int, slots: int = 1, promo_code=None) -> CreateBookingRequest:
    return CreateBookingRequest(
        tour_id=str(tour_id),
        date=on,
        start_time=DEPARTURE,
        slots=slots,
        customer=CustomerInfo(first_name="Guest", last_name=f"Number {guest}", email=f"guest{guest}@example.com"),
        promo_code=promo_code,
    )


async def _booked_slots(session_factory, tour_id, on) -> int:
    async with session_factory() as session:
        occurrence = await ScheduleService(session).get_occurrence(tour_id, on, DEPARTURE)
        return occurrence.booked_slots


@pytest.mark.asyncio
async def test_last_seat_goes_to_exactly_one_request(session_factory, next_friday):
    """Ten simultaneous requests for the only seat: one booking, nine 409s."""
    tour_id = await _create_tour(session_factory, capacity=1)

    async def book(guest: int):
        async with session_factory() as session:
            return await BookingService(session).create_booking(_request(tour_id, next_friday, guest))

    results = await asyncio.gather(*(book(i) for i in range(10)), return_exceptions=True)

    bookings = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(bookings) == 1
    assert len(failures) == 9
    assert all(isinstance(f, CapacityFullError) for f in failures)
    assert await _booked_slots(session_factory, tour_id, next_friday) == 1


@pytest.mark.asyncio
async def test_concurrent_bookings_never_overbook(session_factory, next_friday):
    tour_id = await _create_tour(session_factory, capacity=10)

    async def book(guest: int):
        async with session_factory() as session:
            return await BookingService(session).create_booking(_request(tour_id, next_friday, guest, slots=3))

    results = await asyncio.gather(*(book(i) for i in range(8)), return_exceptions=True)

    bookings = [r for r in results if not isinstance(r, Exception)]
    assert len(bookings) == 3
    assert all(isinstance(r, CapacityFullError) for r in results if isinstance(r, Exception))
    assert await _booked_slots(session_factory, tour_id, next_friday) == 9


@pytest.mark.asyncio
async def test_last_promo_use_goes_to_one_booking(session_factory, next_friday):
    tour_id = await _create_tour(session_factory, capacity=50)
    async with session_factory() as session:
        await PromoService(session).create_promo(
            CreatePromoRequest(code="LASTONE", discount_type="fixed", discount_value=500, max_uses=1)
        )

    async def book(guest: int):
        async with session_factory() as session:
            return await BookingService(session).create_booking(
                _request(tour_id, next_friday, guest, promo_code="LASTONE")
            )

    results = await asyncio.gather(*(book(i) for i in range(5)), return_exceptions=True)

    bookings = [r for r in results if not isinstance(r, Exception)]
    assert len(bookings) == 1
    assert bookings[0].discount_amount == 500
    assert all(isinstance(r, PromoUnavailableError) for r in results if isinstance(r, Exception))
    assert await _booked_slots(session_factory, tour_id, next_friday) == 1

    async with session_factory() as session:
        promo = await PromoService(session).get_promo_by_code("LASTONE")
        assert promo.times_used == 1


@pytest.mark.asyncio
async def test_concurrent_cancellations_release_seats_once(session_factory, next_friday):
    tour_id = await _create_tour(session_factory, capacity=10)
    async with session_factory() as session:
        booking_service = BookingService(session)
        cancelled = await booking_service.create_booking(_request(tour_id, next_friday, 1, slots=2))
        await booking_service.create_booking(_request(tour_id, next_friday, 2, slots=3))

    async def cancel():
        async with session_factory() as session:
            return await BookingService(session).cancel_booking(cancelled.id)

    results = await asyncio.gather(*(cancel() for _ in range(5)))

    assert all(booking.status == BookingStatus.CANCELLED for booking in results)
    assert await _booked_slots(session_factory, tour_id, next_friday) == 3
