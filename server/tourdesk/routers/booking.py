"""Booking router for booking operations."""

import logging
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import AdminAuth, IdempotencyKey, OptionalAuth, is_admin
from ..core.exceptions import ProblemDetailsException, unexpected_error
from ..models.booking import BookingStatus
from ..schemas.booking import (
    Booking,
    BookingCustomer,
    BookingDetail,
    BookingPayment,
    BookingProductLine,
    CancelBookingRequest,
    CreateBookingRequest,
    ListBookingsResponse,
    PaymentLinkRequest,
    RescheduleRequest,
    SlotDetail,
    UpdateSlotsRequest,
)
from ..schemas.common import Money
from ..services.booking_service import BookingService
from .idempotent import handle_idempotent_operation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/bookings", tags=["bookings"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = Depends(get_db)


def _booking_fields(booking_model) -> dict:
    currency = booking_model.currency
    return dict(
        id=str(booking_model.id),
        reference_number=booking_model.reference_number,
        tour_id=str(booking_model.tour_id),
        occurrence_id=str(booking_model.occurrence_id),
        customer_id=str(booking_model.customer_id),
        date=booking_model.booking_date,
        start_time=booking_model.start_time,
        slots=booking_model.slots,
        slot_details=(
            [SlotDetail(slot_type=seat["slot_type"]) for seat in booking_model.slot_details]
            if booking_model.slot_details else None
        ),
        sub_total=Money(amount=booking_model.sub_total, currency=currency),
        discount=Money(amount=booking_model.discount_amount, currency=currency),
        total=Money(amount=booking_model.total_price, currency=currency),
        status=booking_model.status,
        payment_link=booking_model.payment_link,
        created_at=booking_model.created_at,
    )


def _convert_booking_to_schema(booking_model, include_token: bool = False) -> Booking:
    """Convert booking model to schema. The manage token is only shown on creation."""
    return Booking(
        **_booking_fields(booking_model),
        manage_token=booking_model.manage_token if include_token else None
    )


def _convert_booking_to_detail(booking_model) -> BookingDetail:
    """Convert a fully loaded booking model to the flattened detail schema."""
    customer = booking_model.customer
    payment = booking_model.payment
    return BookingDetail(
        **_booking_fields(booking_model),
        tour_title=booking_model.tour.title,
        meeting_point=booking_model.tour.meeting_point,
        customer=BookingCustomer(
            id=str(customer.id),
            full_name=customer.full_name,
            email=customer.email,
            phone_number=customer.phone_number
        ),
        products=[
            BookingProductLine(
                product_id=str(line.product_id),
                name=line.product.name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                line_total=line.line_total
            )
            for line in booking_model.products
        ],
        promo_code=booking_model.promo_code.code if booking_model.promo_code else None,
        payment=BookingPayment(
            payment_ref_id=payment.payment_ref_id,
            status=payment.status,
            amount_paid=payment.amount_paid,
            refunded_amount=payment.refunded_amount,
            currency=payment.currency,
            payment_intent_id=payment.payment_intent_id,
            paid_at=payment.paid_at
        ) if payment else None,
        notes=booking_model.notes
    )


@router.post("", response_model=Booking, status_code=201)
async def create_booking(
    request: CreateBookingRequest,
    db: AsyncSession = DB_DEPENDENCY,
    idempotency_key: Optional[str] = IdempotencyKey,
) -> JSONResponse:
    """
    Book seats on a tour occurrence.

    Seats, the promo code use and the booking are written in one transaction;
    409 is returned when the occurrence does not have enough seats left.
    A repeated request with the same Idempotency-Key replays the first response.
    """
    booking_service = BookingService(db)

    async def operation():
        booking = await booking_service.create_booking(request)
        response_data = _convert_booking_to_schema(booking, include_token=True)
        return 201, response_data.model_dump(mode="json")

    try:
        return await handle_idempotent_operation(
            operation="bookings/create",
            idempotency_key=idempotency_key,
            request_body=request.model_dump(mode="json"),
            operation_func=operation,
            db=db
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error(
            "booking creation", e,
            tour_id=request.tour_id,
            date=request.date.isoformat(),
            slots=request.slots,
            idempotency_key=idempotency_key
        ) from e


@router.get("", response_model=ListBookingsResponse)
async def list_bookings(
    status: Optional[BookingStatus] = Query(None, description="Filter by status"),
    tour_id: Optional[UUID] = Query(None, description="Filter by tour"),
    date_from: Optional[date] = Query(None, description="Earliest occurrence date"),
    date_to: Optional[date] = Query(None, description="Latest occurrence date"),
    customer_email: Optional[str] = Query(None, description="Filter by customer email"),
    cursor: Optional[str] = Query(None, description="Pagination cursor"),
    limit: int = Query(50, ge=1, le=100, description="Number of items to return"),
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> JSONResponse:
    """List bookings with filters and cursor-based pagination."""
    booking_service = BookingService(db)

    try:
        bookings, next_cursor = await booking_service.list_bookings(
            status=status,
            tour_id=tour_id,
            date_from=date_from,
            date_to=date_to,
            customer_email=customer_email,
            cursor=cursor,
            limit=limit
        )
        response_data = ListBookingsResponse(
            items=[_convert_booking_to_schema(booking) for booking in bookings],
            next_cursor=next_cursor
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("booking listing", e) from e


@router.get("/{booking_id}", response_model=BookingDetail)
async def get_booking(
    booking_id: UUID,
    token: Optional[str] = Query(None, description="Manage token returned when the booking was created"),
    db: AsyncSession = DB_DEPENDENCY,
    user: Optional[dict] = OptionalAuth,
) -> JSONResponse:
    """
    Get booking details.

    Admins may read any booking; customers pass the booking's manage token.
    """
    booking_service = BookingService(db)

    try:
        booking = await booking_service.get_booking_detail(booking_id, manage_token=token, admin=is_admin(user))
        return JSONResponse(status_code=200, content=_convert_booking_to_detail(booking).model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("booking retrieval", e, booking_id=str(booking_id)) from e


@router.patch("/{booking_id}/slots", response_model=Booking)
async def update_booking_slots(
    booking_id: UUID,
    request: UpdateSlotsRequest,
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> JSONResponse:
    """
    Change the number of seats on a booking.

    Only the difference is checked against the occurrence's remaining seats.
    """
    booking_service = BookingService(db)

    try:
        booking = await booking_service.update_booking_slots(booking_id, request.slots)
        return JSONResponse(status_code=200, content=_convert_booking_to_schema(booking).model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("booking slot update", e, booking_id=str(booking_id), slots=request.slots) from e


@router.post("/{booking_id}/reschedule", response_model=Booking)
async def reschedule_booking(
    booking_id: UUID,
    request: RescheduleRequest,
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> JSONResponse:
    """Move a booking to another date and start time of the same tour."""
    booking_service = BookingService(db)

    try:
        booking = await booking_service.reschedule_booking(booking_id, request.date, request.start_time)
        return JSONResponse(status_code=200, content=_convert_booking_to_schema(booking).model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error(
            "booking reschedule", e,
            booking_id=str(booking_id),
            date=request.date.isoformat(),
            start_time=request.start_time.isoformat()
        ) from e


@router.post("/{booking_id}/payment-link", response_model=Booking)
async def update_payment_link(
    booking_id: UUID,
    request: PaymentLinkRequest,
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> JSONResponse:
    """Attach a payment link to an unpaid booking."""
    booking_service = BookingService(db)

    try:
        booking = await booking_service.update_payment_link(booking_id, request.payment_link)
        return JSONResponse(status_code=200, content=_convert_booking_to_schema(booking).model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("payment link update", e, booking_id=str(booking_id)) from e


@router.post("/{booking_id}/cancel", response_model=Booking)
async def cancel_booking(
    booking_id: UUID,
    request: CancelBookingRequest,
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> JSONResponse:
    """
    Cancel a booking and release its seats, optionally refunding the payment.

    Cancelling an already ended booking returns it unchanged.
    """
    booking_service = BookingService(db)

    try:
        booking = await booking_service.cancel_booking(
            booking_id,
            refund=request.refund,
            refund_amount=request.refund_amount,
            reason=request.reason
        )
        return JSONResponse(status_code=200, content=_convert_booking_to_schema(booking).model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("booking cancellation", e, booking_id=str(booking_id)) from e
