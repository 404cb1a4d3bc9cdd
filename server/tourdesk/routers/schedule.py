"""Schedule router for listing dated tour occurrences."""

import logging
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.exceptions import ProblemDetailsException, unexpected_error
from ..schemas.schedule import ListOccurrencesResponse, Occurrence
from ..services.schedule_service import ScheduleService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/schedules", tags=["schedules"])

DB_DEPENDENCY = Depends(get_db)


def _convert_occurrence_to_schema(occurrence_model) -> Occurrence:
    """Convert occurrence model to schema."""
    return Occurrence(
        id=str(occurrence_model.id),
        tour_id=str(occurrence_model.tour_id),
        date=occurrence_model.date,
        start_time=occurrence_model.start_time,
        max_slots=occurrence_model.max_slots,
        booked_slots=occurrence_model.booked_slots,
        remaining_slots=occurrence_model.remaining_slots
    )


@router.get("", response_model=ListOccurrencesResponse)
async def list_schedules(
    tour_id: Optional[UUID] = Query(None, description="Filter by tour"),
    date_from: Optional[date] = Query(None, description="First date, defaults to today"),
    date_to: Optional[date] = Query(None, description="Last date"),
    available_only: bool = Query(False, description="Only occurrences with seats left"),
    cursor: Optional[str] = Query(None, description="Pagination cursor"),
    limit: int = Query(50, ge=1, le=200, description="Number of items to return"),
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    """
    List upcoming occurrences with their remaining seats.

    Ordered by date and start time.
    """
    schedule_service = ScheduleService(db)

    try:
        occurrences, next_cursor = await schedule_service.list_occurrences(
            tour_id=tour_id,
            date_from=date_from,
            date_to=date_to,
            available_only=available_only,
            cursor=cursor,
            limit=limit
        )
        response_data = ListOccurrencesResponse(
            items=[_convert_occurrence_to_schema(o) for o in occurrences],
            next_cursor=next_cursor
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("schedule listing", e, tour_id=str(tour_id) if tour_id else None) from e
