"""Rental service."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.exceptions import NotFoundError
from ..models.rental import Rental
from ..schemas.rental import CreateRentalRequest

logger = logging.getLogger(__name__)


class RentalService:
    """Service for rental listings."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_rental(self, request: CreateRentalRequest) -> Rental:
        rental = Rental(
            title=request.title,
            description=request.description,
            location=request.location,
            owner_name=request.owner_name,
            price_per_day=request.price_per_day,
            currency=request.currency or settings.default_currency,
            image_url=request.image_url,
            is_available=request.is_available,
        )
        self.db.add(rental)
        await self.db.commit()
        await self.db.refresh(rental)

        logger.info("Rental created", extra={"rental_id": str(rental.id), "location": rental.location})
        return rental

    async def get_rental_by_id_or_raise(self, rental_id: UUID) -> Rental:
        rental = await self.db.get(Rental, rental_id)
        if not rental:
            logger.warning("Rental not found", extra={"rental_id": str(rental_id)})
            raise NotFoundError(resource_type="rental", resource_id=str(rental_id))
        return rental

    async def list_rentals(
        self,
        available: Optional[bool] = None,
        location: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> tuple[list[Rental], Optional[str]]:
        """
        List rentals with cursor-based pagination.

        Args:
            available: Filter on availability when given
            location: Case-insensitive substring match on the location
        """
        stmt = select(Rental)
        if available is not None:
            stmt = stmt.where(Rental.is_available.is_(available))
        if location:
            stmt = stmt.where(Rental.location.ilike(f"%{location.strip()}%"))
        if cursor:
            try:
                stmt = stmt.where(Rental.id > UUID(cursor))
            except ValueError:
                logger.warning("Invalid cursor provided in rental listing", extra={"cursor": cursor})

        stmt = stmt.order_by(Rental.id).limit(limit + 1)
        rentals = list((await self.db.execute(stmt)).scalars())

        next_cursor = None
        if len(rentals) > limit:
            rentals = rentals[:limit]
            next_cursor = str(rentals[-1].id)

        return rentals, next_cursor
