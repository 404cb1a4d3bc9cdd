"""Payment router for Stripe payment intents, checkout sessions and refunds."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import AdminAuth, IdempotencyKey
from ..core.exceptions import ProblemDetailsException, unexpected_error
from ..schemas.payment import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    CreatePaymentIntentRequest,
    PaymentIntentResponse,
    RefundRequest,
    RefundResponse,
)
from ..services.payment_service import PaymentService
from .idempotent import handle_idempotent_operation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/payments", tags=["payments"])

DB_DEPENDENCY = Depends(get_db)


@router.post("/intent", response_model=PaymentIntentResponse)
async def create_payment_intent(
    request: CreatePaymentIntentRequest,
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    """Create a Stripe payment intent and return its client secret."""
    payment_service = PaymentService(db)

    try:
        client_secret, payment_intent_id = await payment_service.create_payment_intent(request)
        response_data = PaymentIntentResponse(client_secret=client_secret, payment_intent_id=payment_intent_id)
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error(
            "payment intent creation", e,
            booking_id=request.booking_id,
            amount=request.amount
        ) from e


@router.post("/checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    request: CheckoutSessionRequest,
    db: AsyncSession = DB_DEPENDENCY,
    idempotency_key: Optional[str] = IdempotencyKey,
) -> JSONResponse:
    """
    Create a hosted checkout session for a booking.

    When ``previous_session_id`` is given and still open it is expired first.
    The Idempotency-Key header is also forwarded to Stripe.
    """
    payment_service = PaymentService(db)

    async def operation():
        checkout_url, session_id, previous_expired = await payment_service.create_checkout_session(
            request, idempotency_key=idempotency_key
        )
        response_data = CheckoutSessionResponse(
            checkout_url=checkout_url,
            session_id=session_id,
            previous_session_expired=previous_expired
        )
        return 200, response_data.model_dump(mode="json")

    try:
        return await handle_idempotent_operation(
            operation="payments/checkout-session",
            idempotency_key=idempotency_key,
            request_body=request.model_dump(mode="json"),
            operation_func=operation,
            db=db
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("checkout session creation", e, booking_id=request.booking_id) from e


@router.post("/refund", response_model=RefundResponse)
async def refund_payment(
    request: RefundRequest,
    db: AsyncSession = DB_DEPENDENCY,
    admin: dict = AdminAuth,
) -> JSONResponse:
    """
    Refund a payment in full or in part.

    Returns 409 if the charge is already fully refunded or the amount exceeds
    what remains refundable.
    """
    payment_service = PaymentService(db)

    try:
        result = await payment_service.refund_payment(request.payment_intent_id, request.amount)

        logger.info(
            "Refund issued by admin",
            extra={
                "payment_intent_id": request.payment_intent_id,
                "refund_id": result.refund_id,
                "admin_id": admin["user_id"]
            }
        )

        response_data = RefundResponse(
            refund_id=result.refund_id,
            payment_intent_id=result.payment_intent_id,
            amount=result.amount,
            fully_refunded=result.fully_refunded
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("refund", e, payment_intent_id=request.payment_intent_id) from e
