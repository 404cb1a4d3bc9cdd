"""Tour service for business logic operations."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ConflictError, NotFoundError
from ..models.tour import Tour
from ..schemas.tour import CreateTourRequest, UpdateTourRequest

logger = logging.getLogger(__name__)


class TourService:
    """Service for tour-related operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _slug_conflict(self, tour: Tour) -> ConflictError:
        return ConflictError(
            detail=f"Tour with slug '{tour.slug}' already exists",
            conflicting_resource={
                "id": str(tour.id),
                "slug": tour.slug,
                "title": tour.title
            }
        )

    async def create_tour(self, request: CreateTourRequest) -> Tour:
        """
        Create a new tour.

        Args:
            request: Tour creation request

        Returns:
            Created tour entity

        Raises:
            ConflictError: If tour with same slug already exists
        """
        existing_tour = await self.get_tour_by_slug(request.slug)
        if existing_tour:
            logger.warning(
                "Tour creation failed - slug already exists",
                extra={
                    "slug": request.slug,
                    "existing_tour_id": str(existing_tour.id)
                }
            )
            raise self._slug_conflict(existing_tour)

        tour = Tour(
            title=request.title,
            slug=request.slug,
            description=request.description,
            category=request.category,
            meeting_point=request.meeting_point,
            duration_minutes=request.duration_minutes,
            capacity=request.capacity,
            rate_amount=request.rate.amount,
            currency=request.rate.currency,
            slot_types=[tier.model_dump() for tier in request.slot_types] if request.slot_types else None,
        )

        try:
            self.db.add(tour)
            await self.db.commit()
            await self.db.refresh(tour)

        except IntegrityError as e:
            await self.db.rollback()
            logger.error(
                "Tour creation failed due to integrity constraint",
                extra={
                    "slug": request.slug,
                    "error": str(e)
                }
            )
            existing_tour = await self.get_tour_by_slug(request.slug)
            if existing_tour:
                raise self._slug_conflict(existing_tour)
            raise ConflictError(detail="Tour creation failed due to constraint violation")

        logger.info(
            "Tour created successfully",
            extra={
                "tour_id": str(tour.id),
                "slug": tour.slug,
                "capacity": tour.capacity
            }
        )

        return tour

    async def update_tour(self, tour_id: UUID, request: UpdateTourRequest) -> Tour:
        """
        Apply a partial update to a tour.

        A capacity change applies to occurrences generated afterwards; existing
        occurrences keep the capacity they were generated with.

        Raises:
            NotFoundError: If tour not found
        """
        tour = await self.get_tour_by_id_or_raise(tour_id)

        changes = request.model_dump(exclude_unset=True, exclude={"rate", "slot_types"})
        for field, value in changes.items():
            setattr(tour, field, value)

        if request.rate is not None:
            tour.rate_amount = request.rate.amount
            tour.currency = request.rate.currency
        if "slot_types" in request.model_fields_set:
            tour.slot_types = [tier.model_dump() for tier in request.slot_types] if request.slot_types else None

        await self.db.commit()
        await self.db.refresh(tour)

        logger.info(
            "Tour updated",
            extra={
                "tour_id": str(tour.id),
                "fields": sorted(request.model_fields_set)
            }
        )

        return tour

    async def list_tours(
        self,
        category: Optional[str] = None,
        active_only: bool = True,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> tuple[list[Tour], Optional[str]]:
        """
        List tours with cursor-based pagination.

        Returns:
            Tuple of (tours, next_cursor)
        """
        stmt = select(Tour)

        if category:
            stmt = stmt.where(Tour.category == category)
        if active_only:
            stmt = stmt.where(Tour.is_active.is_(True))

        if cursor:
            try:
                stmt = stmt.where(Tour.id > UUID(cursor))
            except ValueError:
                logger.warning("Invalid cursor provided in tour listing", extra={"cursor": cursor})

        stmt = stmt.order_by(Tour.id).limit(limit + 1)

        result = await self.db.execute(stmt)
        tours = list(result.scalars())

        next_cursor = None
        if len(tours) > limit:
            tours = tours[:limit]
            next_cursor = str(tours[-1].id)

        return tours, next_cursor

    async def get_tour_by_id(self, tour_id: UUID) -> Optional[Tour]:
        """
        Get tour by ID.

        Args:
            tour_id: Tour ID to search for

        Returns:
            Tour if found, None otherwise
        """
        stmt = select(Tour).where(Tour.id == tour_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_tour_by_slug(self, slug: str) -> Optional[Tour]:
        """Get tour by slug."""
        stmt = select(Tour).where(Tour.slug == slug)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_tour_by_id_or_raise(self, tour_id: UUID) -> Tour:
        """
        Get tour by ID or raise NotFoundError.

        Raises:
            NotFoundError: If tour not found
        """
        tour = await self.get_tour_by_id(tour_id)
        if not tour:
            logger.warning(
                "Tour not found",
                extra={"tour_id": str(tour_id)}
            )
            raise NotFoundError(
                resource_type="tour",
                resource_id=str(tour_id)
            )
        return tour
