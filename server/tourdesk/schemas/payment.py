"""Payment-related Pydantic schemas."""

from pydantic import BaseModel, EmailStr, Field


class CreatePaymentIntentRequest(BaseModel):
    """Request schema for creating a payment intent."""

    amount: int = Field(..., gt=0, description="Amount in minor units")
    email: EmailStr = Field(..., description="Receipt email")
    booking_id: str | None = Field(None, description="Booking this payment is for")
    currency: str | None = Field(None, min_length=3, max_length=3, pattern=r"^[A-Za-z]{3}$")


class PaymentIntentResponse(BaseModel):
    client_secret: str
    payment_intent_id: str


class CheckoutSessionRequest(BaseModel):
    """Request schema for creating or replacing a checkout session."""

    booking_id: str = Field(..., description="Booking to pay for")
    previous_session_id: str | None = Field(None, description="Open session to expire before creating a new one")


class CheckoutSessionResponse(BaseModel):
    checkout_url: str
    session_id: str
    previous_session_expired: bool = False


class RefundRequest(BaseModel):
    """Request schema for refunding a payment."""

    payment_intent_id: str = Field(..., min_length=1)
    amount: int | None = Field(None, gt=0, description="Partial refund in minor units; full refund when omitted")


class RefundResponse(BaseModel):
    refund_id: str
    payment_intent_id: str
    amount: int
    fully_refunded: bool


class WebhookAck(BaseModel):
    received: bool = True
    event_type: str | None = None
