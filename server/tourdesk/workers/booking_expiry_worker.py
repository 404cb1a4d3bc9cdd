"""Background worker for expiring unpaid bookings."""

import logging

from ..core.config import settings
from ..core.database import async_session_factory
from ..services.booking_service import BookingService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class BookingExpiryWorker(BaseWorker):
    """
    Background worker that expires unpaid bookings past their TTL.

    Each expired booking gives its seats back to the occurrence. Work is done
    in batches so one iteration never holds a long transaction.
    """

    def __init__(self, interval_seconds: int = 60, batch_size: int = 100):
        """
        Initialize the booking expiry worker.

        Args:
            interval_seconds: How often to look for stale bookings (default: 60s)
            batch_size: Bookings expired per batch
        """
        super().__init__(name="BookingExpiry", interval_seconds=interval_seconds)
        self.batch_size = batch_size

    async def process(self) -> None:
        """Expire stale bookings until a batch comes back short."""
        async with async_session_factory() as db:
            booking_service = BookingService(db)
            total = 0

            while True:
                expired_count = await booking_service.expire_stale_bookings(
                    ttl_minutes=settings.pending_booking_ttl_minutes,
                    batch_size=self.batch_size
                )
                total += expired_count
                if expired_count < self.batch_size:
                    break

            if total > 0:
                logger.info(
                    f"Expired {total} unpaid bookings",
                    extra={"expired_count": total, "worker": self.name}
                )
