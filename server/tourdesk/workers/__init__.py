"""Background workers for the booking service."""

from .booking_expiry_worker import BookingExpiryWorker
from .idempotency_cleanup_worker import IdempotencyCleanupWorker
from .schedule_horizon_worker import ScheduleHorizonWorker

__all__ = ["BookingExpiryWorker", "IdempotencyCleanupWorker", "ScheduleHorizonWorker"]
