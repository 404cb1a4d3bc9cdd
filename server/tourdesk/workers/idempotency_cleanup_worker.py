"""Background worker for removing expired idempotency records."""

from ..core.database import async_session_factory
from ..services.idempotency_service import IdempotencyService
from .base import BaseWorker


class IdempotencyCleanupWorker(BaseWorker):
    """Deletes idempotency records whose TTL has passed."""

    def __init__(self, interval_seconds: int = 60 * 60):
        super().__init__(name="IdempotencyCleanup", interval_seconds=interval_seconds)

    async def process(self) -> None:
        async with async_session_factory() as db:
            await IdempotencyService(db).cleanup_expired_records()
