"""Payment service: Stripe payment intents, checkout sessions, refunds and webhooks."""

import json
import logging
import secrets
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Optional
from uuid import UUID

import stripe
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.clock import utcnow
from ..core.config import settings
from ..core.exceptions import (
    ConflictError,
    NotFoundError,
    PaymentProviderNotConfiguredError,
    RefundNotAllowedError,
    ValidationError,
    parse_uuid,
)
from ..core.observability import metrics_collector
from ..core.retry import retry
from ..models.booking import UNPAID_BOOKING_STATUSES, Booking, BookingProduct, BookingStatus
from ..models.payment import Payment, PaymentStatus
from ..schemas.payment import CheckoutSessionRequest, CreatePaymentIntentRequest
from .availability_service import AvailabilityService
from .stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

OUTCOME_PROCESSED = "processed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_ORPHAN = "orphan"
OUTCOME_IGNORED = "ignored"
OUTCOME_REFUND_DUE = "refund_due"

SETTLED_PAYMENT_STATUSES = (
    PaymentStatus.PAID,
    PaymentStatus.PARTIALLY_REFUNDED,
    PaymentStatus.REFUNDED,
    PaymentStatus.REFUND_DUE,
)


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    payment_intent_id: str
    amount: int
    fully_refunded: bool


def generate_payment_ref() -> str:
    return "PAY-" + secrets.token_hex(8).upper()


def _line(name: str, unit_amount: int, quantity: int, currency: str) -> dict[str, Any]:
    return {
        "price_data": {
            "currency": currency.lower(),
            "product_data": {"name": name},
            "unit_amount": unit_amount,
        },
        "quantity": quantity,
    }


def build_line_items(booking: Booking) -> tuple[list[dict[str, Any]], Optional[str]]:
    """
    Stripe checkout line items for a booking, from its stored prices.

    Seats are itemised per slot type when the booking carries priced slot
    details, otherwise as one line at the per-seat rate. A discount is applied
    through the promo's Stripe coupon; without a coupon the whole booking
    collapses into a single line for the discounted total.

    Args:
        booking: Booking with ``tour``, ``products`` and ``promo_code`` loaded

    Returns:
        Tuple of (line_items, coupon_id)

    Raises:
        ValidationError: If there is nothing to charge
    """
    if booking.total_price <= 0:
        raise ValidationError("Booking total is zero; there is nothing to charge")

    currency = booking.currency
    title = booking.tour.title
    products_total = sum(line.line_total for line in booking.products)

    if booking.discount_amount > 0:
        coupon_id = booking.promo_code.stripe_coupon_id if booking.promo_code else None
        if not coupon_id:
            name = f"{title} ({booking.reference_number})"
            return [_line(name, booking.total_price, 1, currency)], None
    else:
        coupon_id = None

    items = []
    if booking.slot_details:
        tiers: OrderedDict[tuple[str, int], int] = OrderedDict()
        for seat in booking.slot_details:
            key = (seat["slot_type"], int(seat["price_amount"]))
            tiers[key] = tiers.get(key, 0) + 1
        for (slot_type, price), quantity in tiers.items():
            items.append(_line(f"{title} - {slot_type}", price, quantity, currency))
    else:
        seat_price = (booking.sub_total - products_total) // booking.slots
        items.append(_line(title, seat_price, booking.slots, currency))

    for line in booking.products:
        items.append(_line(line.product.name, line.unit_price, line.quantity, currency))

    return items, coupon_id


class PaymentService:
    """Service for payment operations against Stripe."""

    def __init__(self, db: AsyncSession, gateway: Optional[StripeGateway] = None):
        self.db = db
        self.gateway = gateway or StripeGateway()
        self.availability_service = AvailabilityService(db)

    async def _load_booking(self, booking_id: UUID) -> Booking:
        stmt = (
            select(Booking)
            .options(
                selectinload(Booking.tour),
                selectinload(Booking.customer),
                selectinload(Booking.promo_code),
                selectinload(Booking.payment),
                selectinload(Booking.products).selectinload(BookingProduct.product),
            )
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        booking = (await self.db.execute(stmt)).scalar_one_or_none()
        if not booking:
            raise NotFoundError(resource_type="booking", resource_id=str(booking_id))
        return booking

    def _ensure_payment(self, booking: Booking) -> Payment:
        if booking.payment is None:
            booking.payment = Payment(
                booking_id=booking.id,
                payment_ref_id=generate_payment_ref(),
                currency=booking.currency,
            )
        return booking.payment

    async def create_payment_intent(self, request: CreatePaymentIntentRequest) -> tuple[str, str]:
        """
        Create a Stripe payment intent.

        When a booking is given its id and payment reference travel in the
        intent metadata so the ``payment_intent.succeeded`` webhook can find it.

        Returns:
            Tuple of (client_secret, payment_intent_id)
        """
        metadata: dict[str, str] = {}
        booking = None
        if request.booking_id:
            booking = await self._load_booking(parse_uuid(request.booking_id, "booking"))
            payment = self._ensure_payment(booking)
            metadata = {"booking_id": str(booking.id), "payment_ref_id": payment.payment_ref_id}

        currency = request.currency or (booking.currency if booking else settings.default_currency)
        intent = await self.gateway.create_payment_intent(
            amount=request.amount,
            currency=currency,
            receipt_email=request.email,
            metadata=metadata,
        )

        if booking:
            booking.payment.payment_intent_id = intent.id
            await self.db.commit()

        logger.info(
            "Payment intent created",
            extra={
                "payment_intent_id": intent.id,
                "booking_id": metadata.get("booking_id"),
                "amount": request.amount
            }
        )
        return intent.client_secret, intent.id

    async def create_checkout_session(
        self,
        request: CheckoutSessionRequest,
        idempotency_key: Optional[str] = None,
    ) -> tuple[str, str, bool]:
        """
        Create a hosted checkout session for an unpaid booking.

        An open previous session for the same booking is expired first so only
        one session can complete.

        Returns:
            Tuple of (checkout_url, session_id, previous_session_expired)

        Raises:
            NotFoundError: If booking not found
            ConflictError: If the booking is already paid or ended
            ValidationError: If the previous session belongs to another booking
        """
        booking = await self._load_booking(parse_uuid(request.booking_id, "booking"))
        if booking.status not in UNPAID_BOOKING_STATUSES:
            raise ConflictError(
                detail="Booking is not awaiting payment",
                conflicting_resource={"id": str(booking.id), "status": BookingStatus(booking.status).value}
            )

        previous_expired = False
        if request.previous_session_id:
            previous_expired = await self._expire_previous_session(booking, request.previous_session_id)

        line_items, coupon_id = build_line_items(booking)
        payment = self._ensure_payment(booking)
        metadata = {"booking_id": str(booking.id), "payment_ref_id": payment.payment_ref_id}
        reference_url = f"{settings.base_url}/bookings/{booking.reference_number}"

        session = await self.gateway.create_checkout_session(
            line_items=line_items,
            success_url=f"{reference_url}/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{reference_url}/cancelled",
            metadata=metadata,
            customer_email=booking.customer.email,
            coupon_id=coupon_id,
            idempotency_key=idempotency_key,
        )

        try:
            booking.checkout_session_id = session.id
            booking.payment_link = session.url
            booking.status = BookingStatus.PENDING_PAYMENT
            payment.checkout_session_id = session.id
            payment.status = PaymentStatus.PENDING
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Checkout session created",
            extra={
                "booking_id": str(booking.id),
                "session_id": session.id,
                "line_items": len(line_items),
                "coupon_id": coupon_id,
                "previous_session_expired": previous_expired
            }
        )
        return session.url, session.id, previous_expired

    async def _expire_previous_session(self, booking: Booking, session_id: str) -> bool:
        previous = await self.gateway.retrieve_checkout_session(session_id)
        metadata = getattr(previous, "metadata", None) or {}
        if metadata.get("booking_id") != str(booking.id):
            raise ValidationError("Previous checkout session does not belong to this booking")

        if previous.status == "complete":
            raise ConflictError(detail="Previous checkout session has already been paid")
        if previous.status != "open":
            return False

        await self.gateway.expire_checkout_session(session_id)
        logger.info(
            "Previous checkout session expired",
            extra={"booking_id": str(booking.id), "session_id": session_id}
        )
        return True

    async def refund_payment(self, payment_intent_id: str, amount: Optional[int] = None) -> RefundResult:
        """
        Refund a captured payment in full or in part.

        Args:
            payment_intent_id: Stripe payment intent to refund
            amount: Minor units to refund; the whole remainder when omitted

        Returns:
            RefundResult with the provider's refund id

        Raises:
            ValidationError: If the intent has no charge
            RefundNotAllowedError: If the charge is fully refunded or the amount exceeds the remainder
            PaymentProviderError: If Stripe rejects a call
        """
        intent = await self.gateway.retrieve_payment_intent(payment_intent_id)
        latest_charge = getattr(intent, "latest_charge", None)
        if not latest_charge:
            raise ValidationError(f"Payment intent '{payment_intent_id}' has no charge to refund")

        charge_id = latest_charge if isinstance(latest_charge, str) else latest_charge.id
        charge = await self.gateway.retrieve_charge(charge_id)

        if charge.refunded:
            raise RefundNotAllowedError("This charge has already been fully refunded", payment_intent_id)

        refundable = charge.amount - charge.amount_refunded
        if amount is not None and amount > refundable:
            raise RefundNotAllowedError(
                f"Refund amount {amount} exceeds the refundable remainder of {refundable}",
                payment_intent_id,
            )

        refund = await self.gateway.create_refund(payment_intent_id, amount)
        refunded_amount = amount if amount is not None else refundable
        total_refunded = charge.amount_refunded + refunded_amount
        fully_refunded = total_refunded >= charge.amount

        payment = await self._get_payment_by_intent(payment_intent_id)
        if payment:
            payment.refunded_amount = total_refunded
            payment.status = PaymentStatus.REFUNDED if fully_refunded else PaymentStatus.PARTIALLY_REFUNDED
            payment.refunded_at = utcnow()
            await self.db.commit()

        metrics_collector.record_refund(fully_refunded)
        logger.info(
            "Payment refunded",
            extra={
                "payment_intent_id": payment_intent_id,
                "refund_id": refund.id,
                "amount": refunded_amount,
                "fully_refunded": fully_refunded
            }
        )

        return RefundResult(
            refund_id=refund.id,
            payment_intent_id=payment_intent_id,
            amount=refunded_amount,
            fully_refunded=fully_refunded,
        )

    async def _get_payment_by_intent(self, payment_intent_id: str) -> Optional[Payment]:
        stmt = select(Payment).where(Payment.payment_intent_id == payment_intent_id)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def process_webhook(self, payload: bytes, signature: Optional[str]) -> tuple[str, str]:
        """
        Verify and apply a Stripe webhook event.

        Database work is retried with exponential backoff; after the final
        attempt the error propagates so the endpoint answers 500 and Stripe
        redelivers. Every handler tolerates redelivery.

        Args:
            payload: Raw request body, exactly as received
            signature: Value of the ``Stripe-Signature`` header

        Returns:
            Tuple of (event_type, outcome)

        Raises:
            PaymentProviderNotConfiguredError: If no webhook secret is configured
            ValidationError: If the signature or payload is invalid
        """
        if not settings.stripe_webhook_secret:
            raise PaymentProviderNotConfiguredError("Webhook signing secret is not configured")
        if not signature:
            raise ValidationError("Missing Stripe-Signature header")

        try:
            self.gateway.construct_event(payload, signature)
        except stripe.SignatureVerificationError:
            logger.warning("Webhook signature verification failed")
            raise ValidationError("Invalid webhook signature")
        except ValueError:
            logger.warning("Webhook payload could not be parsed")
            raise ValidationError("Invalid webhook payload")

        event = json.loads(payload)
        event_type = event.get("type", "")
        data_object = event.get("data", {}).get("object", {})

        handlers = {
            "checkout.session.completed": self._handle_checkout_completed,
            "checkout.session.expired": self._handle_checkout_expired,
            "payment_intent.succeeded": self._handle_payment_intent_succeeded,
            "charge.refunded": self._handle_charge_refunded,
        }
        handler = handlers.get(event_type)

        if handler is None:
            outcome = OUTCOME_IGNORED
        else:
            outcome = await self._apply(handler, data_object)

        metrics_collector.record_webhook_event(event_type, outcome)
        logger.info(
            "Webhook event handled",
            extra={"event_id": event.get("id"), "event_type": event_type, "outcome": outcome}
        )
        return event_type, outcome

    @retry(retry_on=(SQLAlchemyError,))
    async def _apply(self, handler, data_object: dict[str, Any]) -> str:
        try:
            outcome = await handler(data_object)
            await self.db.commit()
            return outcome
        except Exception:
            await self.db.rollback()
            raise

    async def _find_booking(self, booking_id: Optional[str], session_id: Optional[str] = None) -> Optional[Booking]:
        if booking_id:
            try:
                return await self._load_booking(UUID(booking_id))
            except (ValueError, NotFoundError):
                logger.warning("Webhook references unknown booking", extra={"booking_id": booking_id})

        if session_id:
            stmt = select(Booking.id).where(Booking.checkout_session_id == session_id)
            found = (await self.db.execute(stmt)).scalar_one_or_none()
            if found:
                return await self._load_booking(found)
        return None

    def _mark_paid(
        self,
        booking: Booking,
        amount: int,
        currency: Optional[str],
        payment_intent_id: Optional[str],
        session_id: Optional[str] = None,
        payment_method: Optional[str] = None,
        status: PaymentStatus = PaymentStatus.PAID,
    ) -> Payment:
        payment = self._ensure_payment(booking)
        payment.status = status
        payment.amount_paid = amount
        payment.paid_at = utcnow()
        if currency:
            payment.currency = currency.upper()
        if payment_intent_id:
            payment.payment_intent_id = payment_intent_id
        if session_id:
            payment.checkout_session_id = session_id
        if payment_method:
            payment.payment_method = payment_method
        return payment

    async def _settle(
        self,
        booking: Booking,
        amount: int,
        currency: Optional[str],
        payment_intent_id: Optional[str],
        session_id: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> str:
        """
        Record a captured payment and confirm the booking it pays for.

        A booking that no longer holds its seats (cancelled, refunded, or
        expired with the seats resold) keeps its status, and the payment is
        recorded as ``refund_due`` so it can be refunded.
        """
        if booking.status in UNPAID_BOOKING_STATUSES:
            confirm = True
        elif booking.status == BookingStatus.EXPIRED:
            # Paid after expiry: take the seats back if they are still free
            confirm = await self.availability_service.adjust_booked_slots(booking.occurrence_id, booking.slots)
        else:
            confirm = False

        holds_seats = confirm or booking.status in (BookingStatus.CONFIRMED, BookingStatus.RESCHEDULED)
        self._mark_paid(
            booking,
            amount=amount,
            currency=currency,
            payment_intent_id=payment_intent_id,
            session_id=session_id,
            payment_method=payment_method,
            status=PaymentStatus.PAID if holds_seats else PaymentStatus.REFUND_DUE,
        )

        if not holds_seats:
            logger.error(
                "Payment captured for booking that no longer holds seats, refund required",
                extra={
                    "booking_id": str(booking.id),
                    "booking_status": BookingStatus(booking.status).value,
                    "payment_intent_id": payment_intent_id,
                    "amount": amount
                }
            )
            return OUTCOME_REFUND_DUE

        if confirm:
            booking.status = BookingStatus.CONFIRMED
            metrics_collector.record_booking_confirmed()
        return OUTCOME_PROCESSED

    @staticmethod
    def _already_settled(booking: Booking) -> bool:
        return (
            booking.payment is not None
            and booking.payment.status in SETTLED_PAYMENT_STATUSES
            and booking.status not in UNPAID_BOOKING_STATUSES
        )

    @staticmethod
    def _payment_method(stripe_object: dict[str, Any]) -> Optional[str]:
        types = stripe_object.get("payment_method_types") or []
        return types[0] if types else None

    async def _handle_checkout_completed(self, session: dict[str, Any]) -> str:
        metadata = session.get("metadata") or {}
        booking = await self._find_booking(metadata.get("booking_id"), session.get("id"))
        if booking is None:
            logger.warning("Completed checkout session has no booking", extra={"session_id": session.get("id")})
            return OUTCOME_ORPHAN

        if self._already_settled(booking):
            return OUTCOME_DUPLICATE

        return await self._settle(
            booking,
            amount=session.get("amount_total") or booking.total_price,
            currency=session.get("currency"),
            payment_intent_id=session.get("payment_intent"),
            session_id=session.get("id"),
            payment_method=self._payment_method(session),
        )

    async def _handle_checkout_expired(self, session: dict[str, Any]) -> str:
        session_id = session.get("id")
        metadata = session.get("metadata") or {}
        booking = await self._find_booking(metadata.get("booking_id"), session_id)
        if booking is None:
            return OUTCOME_ORPHAN

        if booking.checkout_session_id != session_id:
            # A newer session replaced this one
            return OUTCOME_DUPLICATE

        if booking.payment and booking.payment.status == PaymentStatus.PENDING:
            booking.payment.status = PaymentStatus.EXPIRED

        if await self.availability_service.end_booking(booking, BookingStatus.EXPIRED, UNPAID_BOOKING_STATUSES):
            metrics_collector.record_bookings_expired(1)
            return OUTCOME_PROCESSED
        return OUTCOME_DUPLICATE

    async def _handle_payment_intent_succeeded(self, intent: dict[str, Any]) -> str:
        metadata = intent.get("metadata") or {}
        booking_id = metadata.get("booking_id")
        booking = await self._find_booking(booking_id) if booking_id else None
        if booking is None:
            logger.warning(
                "Payment intent succeeded without a matching booking",
                extra={"payment_intent_id": intent.get("id"), "booking_id": booking_id}
            )
            return OUTCOME_ORPHAN

        if self._already_settled(booking):
            return OUTCOME_DUPLICATE

        return await self._settle(
            booking,
            amount=intent.get("amount_received") or intent.get("amount") or booking.total_price,
            currency=intent.get("currency"),
            payment_intent_id=intent.get("id"),
            payment_method=self._payment_method(intent),
        )

    async def _handle_charge_refunded(self, charge: dict[str, Any]) -> str:
        payment_intent_id = charge.get("payment_intent")
        payment = await self._get_payment_by_intent(payment_intent_id) if payment_intent_id else None
        if payment is None:
            logger.warning("Refunded charge has no local payment", extra={"payment_intent_id": payment_intent_id})
            return OUTCOME_ORPHAN

        amount = charge.get("amount", 0)
        refunded = charge.get("amount_refunded", 0)
        fully_refunded = bool(charge.get("refunded")) or refunded >= amount

        # Loading the booking refreshes its payment, so change the payment afterwards
        booking = await self._load_booking(payment.booking_id)
        payment = booking.payment
        payment.refunded_amount = refunded
        payment.status = PaymentStatus.REFUNDED if fully_refunded else PaymentStatus.PARTIALLY_REFUNDED
        payment.refunded_at = payment.refunded_at or utcnow()

        new_status = BookingStatus.REFUNDED if fully_refunded else BookingStatus.CANCELLED
        if await self.availability_service.end_booking(booking, new_status):
            metrics_collector.record_booking_cancelled()
        elif fully_refunded and booking.status == BookingStatus.CANCELLED:
            booking.status = BookingStatus.REFUNDED

        return OUTCOME_PROCESSED
