#!/usr/bin/env python3
"""Setup script for the tourdesk booking API."""

import asyncio
import logging
import sys
from datetime import time
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command
from alembic.config import Config
from sqlalchemy import func, select

from tourdesk.core.database import async_session_factory, close_db
from tourdesk.models import Tour
from tourdesk.schemas.common import Money
from tourdesk.schemas.product import CreateProductRequest
from tourdesk.schemas.schedule import RecurrenceRuleIn
from tourdesk.schemas.tour import CreateTourRequest, SlotType
from tourdesk.services.product_service import ProductService
from tourdesk.services.schedule_service import ScheduleService
from tourdesk.services.tour_service import TourService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def setup_database():
    """Bring the database schema up to the latest migration."""
    logger.info("Setting up database...")

    try:
        alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
        alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))

        logger.info("Running database migrations...")
        # env.py drives its own event loop
        await asyncio.to_thread(command.upgrade, alembic_cfg, "head")
        logger.info("Database migrations completed")

    except Exception as e:
        logger.error(f"Database setup failed: {e}")
        raise


async def create_sample_data():
    """Create a sample tour with a weekly schedule and one add-on product."""
    logger.info("Creating sample data...")

    async with async_session_factory() as db:
        existing_tours = await db.scalar(select(func.count()).select_from(Tour))
        if existing_tours:
            logger.info("Sample data already exists, skipping...")
            return

        tour = await TourService(db).create_tour(
            CreateTourRequest(
                title="Harbour Kayak Sunrise",
                slug="harbour-kayak-sunrise",
                description="Paddle the old harbour at first light with a local guide",
                category="water",
                meeting_point="Pier 3 boathouse",
                duration_minutes=150,
                capacity=8,
                rate=Money(amount=6500, currency="USD"),
                slot_types=[
                    SlotType(name="adult", price_amount=6500),
                    SlotType(name="child", price_amount=4000),
                ],
            )
        )

        _, generated, _ = await ScheduleService(db).save_recurrence_rules(
            tour.id,
            [
                RecurrenceRuleIn(weekday=0, start_time=time(9, 0)),
                RecurrenceRuleIn(weekday=5, start_time=time(7, 30)),
            ],
        )

        product_service = ProductService(db)
        product = await product_service.create_product(
            CreateProductRequest(name="Dry bag", description="10 litre dry bag to keep", price_amount=1500)
        )
        await product_service.assign_product_to_tour(tour.id, product.id)

        logger.info(f"Sample data created: tour {tour.slug} with {generated} occurrences")


async def main():
    """Main setup function."""
    logger.info("Starting tourdesk setup...")

    try:
        await setup_database()
        await create_sample_data()
    finally:
        await close_db()

    logger.info("Setup completed successfully!")
    logger.info("You can now start the API server with: cd server && uvicorn tourdesk.main:app --reload")


if __name__ == "__main__":
    asyncio.run(main())
