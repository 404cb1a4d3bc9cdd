"""Booking service for business logic operations."""

import logging
import secrets
import string
from collections import Counter
from datetime import date, time, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.clock import utcnow
from ..core.config import settings
from ..core.exceptions import (
    CapacityFullError,
    ConflictError,
    NotFoundError,
    PaymentProviderError,
    ValidationError,
    parse_uuid,
)
from ..core.observability import metrics_collector
from ..models.booking import (
    ACTIVE_BOOKING_STATUSES,
    UNPAID_BOOKING_STATUSES,
    Booking,
    BookingProduct,
    BookingStatus,
)
from ..models.payment import Payment, PaymentStatus
from ..models.product import Product
from ..models.tour import Tour
from ..models.user import User
from ..schemas.booking import CreateBookingRequest, ProductLine, SlotDetail
from .availability_service import AvailabilityService
from .payment_service import PaymentService
from .product_service import ProductService
from .promo_service import PromoService, compute_discount
from .schedule_service import ScheduleService
from .stripe_gateway import StripeGateway
from .tour_service import TourService
from .user_service import UserService

logger = logging.getLogger(__name__)

REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
PAID_PAYMENT_STATUSES = (PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED)


def generate_reference(length: int = 8) -> str:
    """Random booking reference such as ``K7Q2M9XA``."""
    return ''.join(secrets.choice(REFERENCE_ALPHABET) for _ in range(length))


def status_name(status) -> str:
    return BookingStatus(status).value


class BookingService:
    """Service for booking-related operations."""

    def __init__(self, db: AsyncSession, gateway: Optional[StripeGateway] = None):
        self.db = db
        self.gateway = gateway or StripeGateway()
        self.tour_service = TourService(db)
        self.schedule_service = ScheduleService(db)
        self.availability_service = AvailabilityService(db)
        self.promo_service = PromoService(db, self.gateway)
        self.product_service = ProductService(db)
        self.user_service = UserService(db)

    async def _unique_reference(self) -> str:
        reference = generate_reference()
        while await self.get_booking_by_reference(reference):
            reference = generate_reference()
        return reference

    def _price_seats(self, tour: Tour, slots: int, slot_details: Optional[list[SlotDetail]]) -> tuple[int, Optional[list[dict]]]:
        """Seat total and the priced per-seat details to store on the booking."""
        if not slot_details:
            return slots * tour.rate_amount, None

        priced = []
        for detail in slot_details:
            price = tour.price_for_slot_type(detail.slot_type)
            if price is None:
                raise ValidationError(
                    f"Unknown slot type '{detail.slot_type}' for tour '{tour.slug}'",
                    errors={"slot_details": [tier["name"] for tier in tour.slot_types or []]},
                )
            priced.append({"slot_type": detail.slot_type, "price_amount": price})

        return sum(seat["price_amount"] for seat in priced), priced

    async def _price_products(self, tour_id: UUID, lines: list[ProductLine]) -> list[tuple[Product, int]]:
        """Resolve add-on lines to products offered with the tour, merging repeated products."""
        quantities: Counter = Counter()
        for line in lines:
            quantities[parse_uuid(line.product_id, "product")] += line.quantity

        priced = []
        for product_id, quantity in quantities.items():
            product = await self.product_service.get_product_by_id_or_raise(product_id)
            if not product.is_active or not await self.product_service.get_assignment(tour_id, product_id):
                raise ValidationError(f"Product '{product.name}' is not offered with this tour")
            priced.append((product, quantity))

        return priced

    async def create_booking(self, request: CreateBookingRequest) -> Booking:
        """
        Create a pending booking with an atomic capacity check.

        One transaction increments the occurrence's booked counter with a
        conditional update, reserves the promo code and inserts the booking.
        If the counter update matches no row the occurrence is full and
        nothing is written.

        Args:
            request: Booking creation request

        Returns:
            Created booking entity

        Raises:
            NotFoundError: If the tour, occurrence, product or promo code does not exist
            ValidationError: If the tour is inactive, the date is past or a slot type is unknown
            CapacityFullError: If the occurrence has fewer remaining slots than requested
            PromoUnavailableError: If the promo code can no longer be used
        """
        tour_id = parse_uuid(request.tour_id, "tour")
        tour = await self.tour_service.get_tour_by_id_or_raise(tour_id)
        if not tour.is_active:
            raise ValidationError(f"Tour '{tour.slug}' is not accepting bookings")

        seat_total, priced_details = self._price_seats(tour, request.slots, request.slot_details)
        products = await self._price_products(tour_id, request.products)
        sub_total = seat_total + sum(product.price_amount * quantity for product, quantity in products)

        try:
            occurrence = await self.schedule_service.get_or_create_occurrence(
                tour, request.date, request.start_time
            )

            if not await self.availability_service.adjust_booked_slots(occurrence.id, request.slots):
                current = await self.schedule_service.get_occurrence(tour_id, request.date, request.start_time)
                metrics_collector.record_capacity_rejection(str(tour_id))
                logger.warning(
                    "Booking rejected - insufficient capacity",
                    extra={
                        "tour_id": str(tour_id),
                        "date": request.date.isoformat(),
                        "start_time": request.start_time.isoformat(),
                        "requested_slots": request.slots,
                        "remaining_slots": current.remaining_slots
                    }
                )
                raise CapacityFullError(
                    tour_id=str(tour_id),
                    booking_date=request.date.isoformat(),
                    start_time=request.start_time.isoformat(),
                    requested_slots=request.slots,
                    remaining_slots=current.remaining_slots,
                )

            promo = None
            discount = 0
            if request.promo_code:
                promo, discount = await self.promo_service.validate_promo(request.promo_code, sub_total)
                await self.promo_service.reserve_promo(promo.id, promo.code, commit=False)

            customer = await self.user_service.get_or_create_customer(request.customer)

            booking = Booking(
                reference_number=await self._unique_reference(),
                manage_token=secrets.token_urlsafe(32),
                tour_id=tour_id,
                occurrence_id=occurrence.id,
                customer_id=customer.id,
                promo_code_id=promo.id if promo else None,
                booking_date=request.date,
                start_time=request.start_time,
                slots=request.slots,
                slot_details=priced_details,
                sub_total=sub_total,
                discount_amount=discount,
                total_price=sub_total - discount,
                currency=tour.currency,
                status=BookingStatus.PENDING,
                notes=request.notes,
                products=[
                    BookingProduct(product_id=product.id, quantity=quantity, unit_price=product.price_amount)
                    for product, quantity in products
                ],
            )
            self.db.add(booking)
            await self.db.commit()

        except Exception:
            await self.db.rollback()
            raise

        metrics_collector.record_booking_created(str(tour_id))
        metrics_collector.set_occurrence_utilization(
            str(tour_id), occurrence.booked_slots + request.slots, occurrence.max_slots
        )

        logger.info(
            "Booking created successfully",
            extra={
                "booking_id": str(booking.id),
                "reference_number": booking.reference_number,
                "tour_id": str(tour_id),
                "occurrence_id": str(occurrence.id),
                "slots": booking.slots,
                "total_price": booking.total_price,
                "promo_code": promo.code if promo else None
            }
        )

        return booking

    async def update_booking_slots(self, booking_id: UUID, slots: int) -> Booking:
        """
        Change the number of seats on an active booking.

        The occurrence counter is adjusted by the difference only, so the
        booking's own seats are never counted against it. Unpaid bookings are
        repriced at the tour rate; paid bookings keep the amounts charged.

        Raises:
            NotFoundError: If booking not found
            ConflictError: If the booking is no longer active
            CapacityFullError: If the extra seats are not available
        """
        booking = await self.get_booking_by_id_or_raise(booking_id)
        self._require_active(booking)

        delta = slots - booking.slots
        if delta == 0:
            return booking

        try:
            if not await self.availability_service.adjust_booked_slots(booking.occurrence_id, delta):
                current = await self.schedule_service.get_occurrence(
                    booking.tour_id, booking.booking_date, booking.start_time
                )
                metrics_collector.record_capacity_rejection(str(booking.tour_id))
                raise CapacityFullError(
                    tour_id=str(booking.tour_id),
                    booking_date=booking.booking_date.isoformat(),
                    start_time=booking.start_time.isoformat(),
                    requested_slots=slots,
                    remaining_slots=current.remaining_slots + booking.slots,
                )

            previous_slots = booking.slots
            booking.slots = slots

            if booking.status in UNPAID_BOOKING_STATUSES:
                await self._reprice(booking)

            await self.db.commit()
            await self.db.refresh(booking)

        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Booking slots updated",
            extra={
                "booking_id": str(booking.id),
                "previous_slots": previous_slots,
                "slots": slots,
                "total_price": booking.total_price
            }
        )
        return booking

    async def _reprice(self, booking: Booking) -> None:
        tour = await self.tour_service.get_tour_by_id_or_raise(booking.tour_id)
        products_total = sum(line.line_total for line in booking.products)

        booking.slot_details = None
        booking.sub_total = booking.slots * tour.rate_amount + products_total

        discount = 0
        if booking.promo_code_id:
            promo = await self.promo_service.get_promo_by_id(booking.promo_code_id)
            if promo:
                discount = compute_discount(promo, booking.sub_total)
        booking.discount_amount = discount
        booking.total_price = booking.sub_total - discount

    async def reschedule_booking(self, booking_id: UUID, new_date: date, new_start_time: time) -> Booking:
        """
        Move an active booking's seats to another occurrence of the same tour.

        Seats are taken on the new occurrence before they are given back on
        the old one, in one transaction. Paid bookings become ``rescheduled``;
        unpaid ones keep their status so they can still expire.

        Raises:
            NotFoundError: If the booking or target occurrence does not exist
            ConflictError: If the booking is no longer active
            CapacityFullError: If the target occurrence lacks seats
        """
        booking = await self.get_booking_by_id_or_raise(booking_id)
        self._require_active(booking)
        tour = await self.tour_service.get_tour_by_id_or_raise(booking.tour_id)

        try:
            target = await self.schedule_service.get_or_create_occurrence(tour, new_date, new_start_time)
            if target.id == booking.occurrence_id:
                return booking

            if not await self.availability_service.adjust_booked_slots(target.id, booking.slots):
                metrics_collector.record_capacity_rejection(str(booking.tour_id))
                current = await self.schedule_service.get_occurrence(tour.id, new_date, new_start_time)
                raise CapacityFullError(
                    tour_id=str(booking.tour_id),
                    booking_date=new_date.isoformat(),
                    start_time=new_start_time.isoformat(),
                    requested_slots=booking.slots,
                    remaining_slots=current.remaining_slots,
                )

            if not await self.availability_service.adjust_booked_slots(booking.occurrence_id, -booking.slots):
                logger.error(
                    "Occurrence counter lower than released seats, counter left unchanged",
                    extra={
                        "booking_id": str(booking.id),
                        "occurrence_id": str(booking.occurrence_id),
                        "slots": booking.slots
                    }
                )

            previous_occurrence_id = booking.occurrence_id
            booking.occurrence_id = target.id
            booking.booking_date = new_date
            booking.start_time = new_start_time
            if booking.status not in UNPAID_BOOKING_STATUSES:
                booking.status = BookingStatus.RESCHEDULED

            await self.db.commit()
            await self.db.refresh(booking)

        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Booking rescheduled",
            extra={
                "booking_id": str(booking.id),
                "from_occurrence_id": str(previous_occurrence_id),
                "to_occurrence_id": str(target.id),
                "slots": booking.slots
            }
        )
        return booking

    async def update_payment_link(self, booking_id: UUID, payment_link: str) -> Booking:
        """
        Store a payment link for an unpaid booking and mark it as awaiting payment.

        Raises:
            NotFoundError: If booking not found
            ConflictError: If the booking is not awaiting payment
        """
        booking = await self.get_booking_by_id_or_raise(booking_id)
        if booking.status not in UNPAID_BOOKING_STATUSES:
            raise ConflictError(detail=f"Booking is {status_name(booking.status)} and not awaiting payment")

        booking.payment_link = payment_link
        booking.status = BookingStatus.PENDING_PAYMENT
        await self.db.commit()
        await self.db.refresh(booking)

        logger.info("Booking payment link updated", extra={"booking_id": str(booking.id)})
        return booking

    async def cancel_booking(
        self,
        booking_id: UUID,
        refund: bool = False,
        refund_amount: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Booking:
        """
        Cancel a booking, optionally refunding its payment, and release its seats.

        Cancelling a booking that has already ended returns it unchanged. An
        unpaid booking's open checkout session is expired first.

        Raises:
            NotFoundError: If booking not found
            ValidationError: If a refund is requested but nothing was paid
            RefundNotAllowedError: If the refund exceeds what can be refunded
            PaymentProviderError: If the refund fails at the provider
        """
        booking = await self.get_booking_by_id_or_raise(booking_id)

        if booking.status not in ACTIVE_BOOKING_STATUSES:
            logger.info(
                "Booking already ended - returning existing booking",
                extra={"booking_id": str(booking_id), "status": status_name(booking.status)}
            )
            return booking

        if refund:
            payment = booking.payment
            if not payment or not payment.payment_intent_id or payment.status not in PAID_PAYMENT_STATUSES:
                raise ValidationError("Booking has no captured payment to refund")
            await PaymentService(self.db, self.gateway).refund_payment(payment.payment_intent_id, refund_amount)

        await self._expire_open_checkout(booking)

        try:
            ended = await self.availability_service.end_booking(booking, BookingStatus.CANCELLED)
            if reason:
                booking.notes = f"{booking.notes}\n{reason}" if booking.notes else reason
            await self.db.commit()
            await self.db.refresh(booking)
        except Exception:
            await self.db.rollback()
            raise

        if ended:
            metrics_collector.record_booking_cancelled()
            logger.info(
                "Booking cancelled successfully",
                extra={
                    "booking_id": str(booking.id),
                    "reference_number": booking.reference_number,
                    "seats_released": booking.slots,
                    "refunded": refund
                }
            )

        return booking

    async def _expire_open_checkout(self, booking: Booking) -> None:
        """Expire the unpaid booking's checkout session so it can no longer be paid."""
        if (
            booking.status not in UNPAID_BOOKING_STATUSES
            or not booking.checkout_session_id
            or not self.gateway.configured
        ):
            return

        try:
            await self.gateway.expire_checkout_session(booking.checkout_session_id)
        except PaymentProviderError:
            # Session already completed or expired
            logger.warning(
                "Could not expire checkout session of cancelled booking",
                extra={"booking_id": str(booking.id), "session_id": booking.checkout_session_id}
            )
            return

        if booking.payment and booking.payment.status == PaymentStatus.PENDING:
            booking.payment.status = PaymentStatus.EXPIRED

    def _require_active(self, booking: Booking) -> None:
        if booking.status not in ACTIVE_BOOKING_STATUSES:
            raise ConflictError(
                detail=f"Booking is {status_name(booking.status)} and can no longer be changed",
                conflicting_resource={"id": str(booking.id), "status": status_name(booking.status)}
            )

    async def expire_stale_bookings(self, ttl_minutes: Optional[int] = None, batch_size: int = 100) -> int:
        """
        Expire unpaid bookings older than the TTL and release their seats.

        Args:
            ttl_minutes: Age after which unpaid bookings expire; defaults to settings
            batch_size: Maximum bookings handled per call

        Returns:
            Number of bookings expired
        """
        cutoff = utcnow() - timedelta(minutes=ttl_minutes or settings.pending_booking_ttl_minutes)

        stmt = (
            select(Booking)
            .where(
                Booking.status.in_(UNPAID_BOOKING_STATUSES),
                Booking.created_at <= cutoff
            )
            .order_by(Booking.created_at)
            .limit(batch_size)
        )
        stale = list((await self.db.execute(stmt)).scalars())

        expired_count = 0
        for booking in stale:
            if not await self.availability_service.end_booking(
                booking, BookingStatus.EXPIRED, UNPAID_BOOKING_STATUSES
            ):
                continue

            await self.db.execute(
                update(Payment)
                .where(Payment.booking_id == booking.id, Payment.status == PaymentStatus.PENDING)
                .values(status=PaymentStatus.EXPIRED, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            expired_count += 1

        if expired_count > 0:
            await self.db.commit()
            metrics_collector.record_bookings_expired(expired_count)
            logger.info(
                "Stale booking expiry batch completed",
                extra={
                    "expired_count": expired_count,
                    "cutoff": cutoff.isoformat(),
                    "batch_size": batch_size
                }
            )

        return expired_count

    async def get_booking_by_id(self, booking_id: UUID, detail: bool = False) -> Optional[Booking]:
        """Get booking by ID, with its tour, customer and product names when ``detail`` is set."""
        options = [selectinload(Booking.products), selectinload(Booking.payment)]
        if detail:
            options = [
                selectinload(Booking.tour),
                selectinload(Booking.customer),
                selectinload(Booking.promo_code),
                selectinload(Booking.payment),
                selectinload(Booking.products).selectinload(BookingProduct.product),
            ]

        stmt = (
            select(Booking)
            .options(*options)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_booking_by_id_or_raise(self, booking_id: UUID, detail: bool = False) -> Booking:
        """Get booking by ID or raise NotFoundError."""
        booking = await self.get_booking_by_id(booking_id, detail=detail)
        if not booking:
            logger.warning(
                "Booking not found",
                extra={"booking_id": str(booking_id)}
            )
            raise NotFoundError(
                resource_type="booking",
                resource_id=str(booking_id)
            )
        return booking

    async def get_booking_detail(self, booking_id: UUID, manage_token: Optional[str] = None, admin: bool = False) -> Booking:
        """
        Booking with tour, customer, products and payment loaded.

        Non-admin callers must present the booking's manage token; a wrong
        token is reported as not found.

        Raises:
            NotFoundError: If booking not found or the token does not match
        """
        booking = await self.get_booking_by_id_or_raise(booking_id, detail=True)
        if not admin and not (manage_token and secrets.compare_digest(manage_token, booking.manage_token)):
            logger.warning("Booking detail requested with invalid manage token", extra={"booking_id": str(booking_id)})
            raise NotFoundError(resource_type="booking", resource_id=str(booking_id))
        return booking

    async def get_booking_by_reference(self, reference_number: str) -> Optional[Booking]:
        stmt = select(Booking).where(Booking.reference_number == reference_number)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_bookings(
        self,
        status: Optional[BookingStatus] = None,
        tour_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        customer_email: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> tuple[list[Booking], Optional[str]]:
        """
        List bookings with filters and cursor-based pagination.

        Returns:
            Tuple of (bookings, next_cursor)
        """
        stmt = select(Booking)

        conditions = []
        if status:
            conditions.append(Booking.status == status)
        if tour_id:
            conditions.append(Booking.tour_id == tour_id)
        if date_from:
            conditions.append(Booking.booking_date >= date_from)
        if date_to:
            conditions.append(Booking.booking_date <= date_to)
        if customer_email:
            stmt = stmt.join(User, Booking.customer_id == User.id)
            conditions.append(User.email == customer_email.strip().lower())

        if cursor:
            try:
                conditions.append(Booking.id > UUID(cursor))
            except ValueError:
                logger.warning("Invalid cursor provided in booking listing", extra={"cursor": cursor})

        if conditions:
            stmt = stmt.where(and_(*conditions))

        stmt = stmt.order_by(Booking.id).limit(limit + 1)
        bookings = list((await self.db.execute(stmt)).scalars())

        next_cursor = None
        if len(bookings) > limit:
            bookings = bookings[:limit]
            next_cursor = str(bookings[-1].id)

        return bookings, next_cursor
