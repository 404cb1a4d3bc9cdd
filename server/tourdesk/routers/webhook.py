"""Stripe webhook endpoint."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.exceptions import ProblemDetailsException, unexpected_error
from ..schemas.payment import WebhookAck
from ..services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])

DB_DEPENDENCY = Depends(get_db)
SIGNATURE_HEADER = Header(None, alias="Stripe-Signature")


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = DB_DEPENDENCY,
    stripe_signature: Optional[str] = SIGNATURE_HEADER,
) -> JSONResponse:
    """
    Receive a Stripe event.

    The signature is checked against the raw body. Unknown event types are
    acknowledged; a failure after retries answers 500 so Stripe redelivers.
    """
    payload = await request.body()
    payment_service = PaymentService(db)

    try:
        event_type, _outcome = await payment_service.process_webhook(payload, stripe_signature)
        return JSONResponse(status_code=200, content=WebhookAck(event_type=event_type).model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("webhook processing", e, payload_size=len(payload)) from e
