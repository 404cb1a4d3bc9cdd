"""Rental router for listing and managing rental properties."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import AdminAuth
from ..core.exceptions import ProblemDetailsException, unexpected_error
from ..schemas.common import Money
from ..schemas.rental import CreateRentalRequest, ListRentalsResponse, Rental
from ..services.rental_service import RentalService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/rentals", tags=["rentals"])

DB_DEPENDENCY = Depends(get_db)


def _convert_rental_to_schema(rental_model) -> Rental:
    """Convert rental model to schema."""
    return Rental(
        id=str(rental_model.id),
        title=rental_model.title,
        description=rental_model.description,
        location=rental_model.location,
        owner_name=rental_model.owner_name,
        price_per_day=Money(amount=rental_model.price_per_day, currency=rental_model.currency),
        image_url=rental_model.image_url,
        is_available=rental_model.is_available,
        created_at=rental_model.created_at
    )


@router.post("", response_model=Rental, status_code=201)
async def create_rental(
    request: CreateRentalRequest,
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> JSONResponse:
    """Create a rental listing."""
    rental_service = RentalService(db)

    try:
        rental = await rental_service.create_rental(request)
        return JSONResponse(
            status_code=201,
            content=_convert_rental_to_schema(rental).model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("rental creation", e, title=request.title) from e


@router.get("", response_model=ListRentalsResponse)
async def list_rentals(
    available: Optional[bool] = Query(None, description="Filter by availability"),
    location: Optional[str] = Query(None, max_length=255, description="Case-insensitive location match"),
    cursor: Optional[str] = Query(None, description="Pagination cursor"),
    limit: int = Query(50, ge=1, le=100, description="Number of items to return"),
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    """List rentals with cursor-based pagination."""
    rental_service = RentalService(db)

    try:
        rentals, next_cursor = await rental_service.list_rentals(
            available=available,
            location=location,
            cursor=cursor,
            limit=limit
        )
        response_data = ListRentalsResponse(
            items=[_convert_rental_to_schema(rental) for rental in rentals],
            next_cursor=next_cursor
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("rental listing", e, location=location) from e


@router.get("/{rental_id}", response_model=Rental)
async def get_rental(
    rental_id: UUID,
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    """Get a rental by ID."""
    rental_service = RentalService(db)

    try:
        rental = await rental_service.get_rental_by_id_or_raise(rental_id)
        return JSONResponse(status_code=200, content=_convert_rental_to_schema(rental).model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("rental retrieval", e, rental_id=str(rental_id)) from e
