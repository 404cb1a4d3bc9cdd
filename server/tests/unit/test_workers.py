"""Tests for background workers."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tourdesk.core.clock import utcnow
from tourdesk.core.config import settings
from tourdesk.models.booking import Booking, BookingStatus
from tourdesk.models.idempotency import IdempotencyRecord
from tourdesk.models.schedule import ScheduledOccurrence
from tourdesk.services.booking_service import BookingService
from tourdesk.workers import booking_expiry_worker, idempotency_cleanup_worker, schedule_horizon_worker
from tourdesk.workers.base import BaseWorker
from tourdesk.workers.booking_expiry_worker import BookingExpiryWorker
from tourdesk.workers.idempotency_cleanup_worker import IdempotencyCleanupWorker
from tourdesk.workers.manager import WorkerManager
from tourdesk.workers.schedule_horizon_worker import ScheduleHorizonWorker


@pytest.fixture
def worker_sessions(test_engine, monkeypatch):
    """Point the workers at the test database."""
    factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    for module in (booking_expiry_worker, idempotency_cleanup_worker, schedule_horizon_worker):
        monkeypatch.setattr(module, "async_session_factory", factory)
    return factory


class CountingWorker(BaseWorker):
    def __init__(self, fail_first: bool = False):
        super().__init__(name="Counting", interval_seconds=0)
        self.calls = 0
        self.fail_first = fail_first

    async def process(self) -> None:
        self.calls += 1
        await asyncio.sleep(0)
        if self.fail_first and self.calls == 1:
            raise RuntimeError("first iteration fails")


@pytest.mark.asyncio
async def test_worker_runs_until_stopped():
    worker = CountingWorker()

    await worker.start()
    assert worker.running is True
    await asyncio.sleep(0.01)
    await worker.stop()

    assert worker.running is False
    assert worker.calls > 0


@pytest.mark.asyncio
async def test_worker_survives_failed_iteration():
    worker = CountingWorker(fail_first=True)

    await worker.start()
    await asyncio.sleep(0.01)
    await worker.stop()

    assert worker.calls > 1


def test_manager_reports_worker_status():
    manager = WorkerManager()

    assert manager.get_worker_status() == {
        "booking_expiry": False,
        "schedule_horizon": False,
        "idempotency_cleanup": False,
    }
    assert isinstance(manager.get_worker("booking_expiry"), BookingExpiryWorker)


@pytest.mark.asyncio
async def test_expiry_worker_releases_stale_bookings(
    test_session, worker_sessions, make_tour, booking_request, next_monday
):
    tour = await make_tour(capacity=4)
    booking = await BookingService(test_session).create_booking(booking_request(tour, slots=3))
    await test_session.execute(
        update(Booking)
        .where(Booking.id == booking.id)
        .values(created_at=utcnow() - timedelta(minutes=settings.pending_booking_ttl_minutes + 5))
    )
    await test_session.commit()

    await BookingExpiryWorker(batch_size=10).process()

    stored = await BookingService(test_session).get_booking_by_id(booking.id)
    assert stored.status == BookingStatus.EXPIRED
    occurrence = await BookingService(test_session).schedule_service.get_occurrence(
        tour.id, next_monday, booking.start_time
    )
    assert occurrence.booked_slots == 0


@pytest.mark.asyncio
async def test_horizon_worker_extends_schedule(test_session, worker_sessions, make_tour, monkeypatch):
    tour = await make_tour()
    await test_session.commit()
    monkeypatch.setattr(settings, "schedule_weeks_ahead", 54)

    await ScheduleHorizonWorker().process()

    count = (await test_session.execute(
        select(func.count()).select_from(ScheduledOccurrence).where(ScheduledOccurrence.tour_id == tour.id)
    )).scalar_one()
    assert count == 54


@pytest.mark.asyncio
async def test_cleanup_worker_removes_expired_records(test_session, worker_sessions):
    now = utcnow()
    test_session.add_all([
        IdempotencyRecord(
            idempotency_key="old",
            operation="bookings/create",
            request_body_hash="0" * 64,
            response_status_code=201,
            response_body="{}",
            expires_at=now - timedelta(hours=1),
        ),
        IdempotencyRecord(
            idempotency_key="fresh",
            operation="bookings/create",
            request_body_hash="1" * 64,
            response_status_code=201,
            response_body="{}",
            expires_at=now + timedelta(hours=1),
        ),
    ])
    await test_session.commit()

    await IdempotencyCleanupWorker().process()

    keys = (await test_session.execute(select(IdempotencyRecord.idempotency_key))).scalars().all()
    assert keys == ["fresh"]
