"""Tour router for catalogue, schedule and availability operations."""

import logging
from datetime import date, time
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import AdminAuth
from ..core.exceptions import ProblemDetailsException, parse_uuid, unexpected_error
from ..schemas.common import Money
from ..schemas.product import AssignProductRequest, ListTourProductsResponse, TourProduct
from ..schemas.schedule import (
    GenerateOccurrencesRequest,
    GenerateOccurrencesResponse,
    RecurrenceRule,
    SaveScheduleRequest,
    SaveScheduleResponse,
)
from ..schemas.tour import (
    CreateTourRequest,
    FullyBookedDatesResponse,
    ListToursResponse,
    RemainingSlotsResponse,
    SlotType,
    Tour,
    UpdateTourRequest,
)
from ..services.availability_service import AvailabilityService
from ..services.product_service import ProductService
from ..services.schedule_service import ScheduleService
from ..services.tour_service import TourService
from .product import _convert_product_to_schema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/tours", tags=["tours"])

DB_DEPENDENCY = Depends(get_db)


def _convert_tour_to_schema(tour_model) -> Tour:
    """Convert tour model to schema."""
    return Tour(
        id=str(tour_model.id),
        title=tour_model.title,
        slug=tour_model.slug,
        description=tour_model.description,
        category=tour_model.category,
        meeting_point=tour_model.meeting_point,
        duration_minutes=tour_model.duration_minutes,
        capacity=tour_model.capacity,
        rate=Money(amount=tour_model.rate_amount, currency=tour_model.currency),
        slot_types=[SlotType(**tier) for tier in tour_model.slot_types or []],
        is_active=tour_model.is_active,
        created_at=tour_model.created_at
    )


def _convert_rule_to_schema(rule_model) -> RecurrenceRule:
    return RecurrenceRule(
        id=str(rule_model.id),
        weekday=rule_model.weekday,
        weekday_name=rule_model.weekday_name,
        start_time=rule_model.start_time
    )


@router.post("", response_model=Tour, status_code=201)
async def create_tour(
    request: CreateTourRequest,
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> JSONResponse:
    """
    Create a new tour.

    Returns 409 when the slug is already taken.
    """
    tour_service = TourService(db)

    try:
        tour = await tour_service.create_tour(request)
        return JSONResponse(
            status_code=201,
            content=_convert_tour_to_schema(tour).model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("tour creation", e, slug=request.slug) from e


@router.get("", response_model=ListToursResponse)
async def list_tours(
    category: Optional[str] = Query(None, description="Filter by category"),
    include_inactive: bool = Query(False, description="Include tours not accepting bookings"),
    cursor: Optional[str] = Query(None, description="Pagination cursor"),
    limit: int = Query(50, ge=1, le=100, description="Number of items to return"),
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    """List tours with cursor-based pagination."""
    tour_service = TourService(db)

    try:
        tours, next_cursor = await tour_service.list_tours(
            category=category,
            active_only=not include_inactive,
            cursor=cursor,
            limit=limit
        )
        response_data = ListToursResponse(
            items=[_convert_tour_to_schema(tour) for tour in tours],
            next_cursor=next_cursor
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("tour listing", e, category=category) from e


@router.get("/{tour_id}", response_model=Tour)
async def get_tour(
    tour_id: UUID,
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    """Get a tour by ID."""
    tour_service = TourService(db)

    try:
        tour = await tour_service.get_tour_by_id_or_raise(tour_id)
        return JSONResponse(status_code=200, content=_convert_tour_to_schema(tour).model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("tour retrieval", e, tour_id=str(tour_id)) from e


@router.patch("/{tour_id}", response_model=Tour)
async def update_tour(
    tour_id: UUID,
    request: UpdateTourRequest,
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> JSONResponse:
    """
    Update a tour.

    A capacity change applies to occurrences generated afterwards; existing
    occurrences keep the capacity they were generated with.
    """
    tour_service = TourService(db)

    try:
        tour = await tour_service.update_tour(tour_id, request)
        return JSONResponse(status_code=200, content=_convert_tour_to_schema(tour).model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("tour update", e, tour_id=str(tour_id)) from e


@router.get("/{tour_id}/remaining-slots", response_model=RemainingSlotsResponse)
async def get_remaining_slots(
    tour_id: UUID,
    on: date = Query(..., alias="date", description="Occurrence date"),
    start_time: time = Query(..., description="Occurrence start time"),
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    """Remaining seats for one occurrence of a tour."""
    availability_service = AvailabilityService(db)

    try:
        availability = await availability_service.get_remaining_slots(
            tour_id, on, start_time.replace(second=0, microsecond=0, tzinfo=None)
        )
        response_data = RemainingSlotsResponse(
            tour_id=str(tour_id),
            date=availability.date,
            start_time=availability.start_time,
            capacity=availability.capacity,
            booked=availability.booked,
            remaining=availability.remaining
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error(
            "remaining slot computation", e,
            tour_id=str(tour_id), date=on.isoformat(), start_time=start_time.isoformat()
        ) from e


@router.get("/{tour_id}/fully-booked-dates", response_model=FullyBookedDatesResponse)
async def get_fully_booked_dates(
    tour_id: UUID,
    date_from: date = Query(..., description="First date to check"),
    date_to: date = Query(..., description="Last date to check"),
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    """Dates in a range on which the tour has no seats left."""
    availability_service = AvailabilityService(db)

    try:
        dates = await availability_service.get_fully_booked_dates(tour_id, date_from, date_to)
        response_data = FullyBookedDatesResponse(
            tour_id=str(tour_id),
            date_from=date_from,
            date_to=date_to,
            dates=dates
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("fully booked date lookup", e, tour_id=str(tour_id)) from e


@router.put("/{tour_id}/schedule", response_model=SaveScheduleResponse)
async def save_schedule(
    tour_id: UUID,
    request: SaveScheduleRequest,
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> JSONResponse:
    """
    Replace a tour's weekly schedule.

    Occurrences for the new rules are generated up to the configured horizon,
    and unbooked future occurrences no rule produces any more are removed.
    """
    schedule_service = ScheduleService(db)

    try:
        rules, generated, pruned = await schedule_service.save_recurrence_rules(tour_id, request.rules)
        response_data = SaveScheduleResponse(
            tour_id=str(tour_id),
            rules=[_convert_rule_to_schema(rule) for rule in rules],
            generated_count=generated,
            pruned_count=pruned
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("schedule save", e, tour_id=str(tour_id), rule_count=len(request.rules)) from e


@router.get("/{tour_id}/schedule", response_model=list[RecurrenceRule])
async def get_schedule(
    tour_id: UUID,
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    """A tour's weekly recurrence rules."""
    schedule_service = ScheduleService(db)

    try:
        await schedule_service.tour_service.get_tour_by_id_or_raise(tour_id)
        rules = await schedule_service.get_recurrence_rules(tour_id)
        return JSONResponse(
            status_code=200,
            content=[_convert_rule_to_schema(rule).model_dump(mode="json") for rule in rules]
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("schedule retrieval", e, tour_id=str(tour_id)) from e


@router.post("/{tour_id}/schedule/generate", response_model=GenerateOccurrencesResponse)
async def generate_occurrences(
    tour_id: UUID,
    request: GenerateOccurrencesRequest,
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> JSONResponse:
    """
    Expand the tour's rules into dated occurrences.

    Safe to repeat: occurrences that already exist are skipped.
    """
    schedule_service = ScheduleService(db)

    try:
        generated = await schedule_service.generate_occurrences(
            tour_id, start=request.start_date, weeks=request.weeks
        )
        response_data = GenerateOccurrencesResponse(tour_id=str(tour_id), generated_count=generated)
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("occurrence generation", e, tour_id=str(tour_id)) from e


@router.get("/{tour_id}/products", response_model=ListTourProductsResponse)
async def list_tour_products(
    tour_id: UUID,
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    """Active add-on products offered with a tour."""
    product_service = ProductService(db)

    try:
        links = await product_service.list_tour_products(tour_id, active_only=True)
        response_data = ListTourProductsResponse(
            tour_id=str(tour_id),
            items=[_convert_product_to_schema(link.product) for link in links]
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("tour product listing", e, tour_id=str(tour_id)) from e


@router.post("/{tour_id}/products", response_model=TourProduct, status_code=201)
async def assign_product(
    tour_id: UUID,
    request: AssignProductRequest,
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> JSONResponse:
    """Offer a product with a tour. Returns 409 if it is already offered."""
    product_service = ProductService(db)

    try:
        link = await product_service.assign_product_to_tour(
            tour_id, parse_uuid(request.product_id, "product")
        )
        response_data = TourProduct(
            tour_id=str(link.tour_id),
            product=_convert_product_to_schema(link.product),
            assigned_at=link.created_at
        )
        return JSONResponse(status_code=201, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("product assignment", e, tour_id=str(tour_id), product_id=request.product_id) from e


@router.delete("/{tour_id}/products/{product_id}", status_code=204)
async def remove_product(
    tour_id: UUID,
    product_id: UUID,
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> Response:
    """Stop offering a product with a tour."""
    product_service = ProductService(db)

    try:
        await product_service.remove_product_from_tour(tour_id, product_id)
        return Response(status_code=204)

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("product removal", e, tour_id=str(tour_id), product_id=str(product_id)) from e
