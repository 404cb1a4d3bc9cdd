"""Background worker that keeps every tour's schedule generated ahead."""

import logging

from ..core.database import async_session_factory
from ..services.schedule_service import ScheduleService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class ScheduleHorizonWorker(BaseWorker):
    """
    Rolls the occurrence horizon forward.

    Generation is idempotent, so each run only adds the occurrences that came
    into range since the previous one.
    """

    def __init__(self, interval_seconds: int = 6 * 60 * 60):
        super().__init__(name="ScheduleHorizon", interval_seconds=interval_seconds)

    async def process(self) -> None:
        async with async_session_factory() as db:
            generated = await ScheduleService(db).extend_all_horizons()

            if generated > 0:
                logger.info(
                    f"Generated {generated} occurrences",
                    extra={"generated_count": generated, "worker": self.name}
                )
