"""Promo code service: validation, atomic reservation and lifecycle."""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.config import settings
from ..core.exceptions import ConflictError, NotFoundError, PromoUnavailableError
from ..core.observability import metrics_collector
from ..models.booking import Booking
from ..models.promo import DiscountType, PromoCode
from ..schemas.promo import CreatePromoRequest, UpdatePromoRequest
from .stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

PROMO_EXPIRED = "Promo code has expired"
PROMO_INACTIVE = "Promo code is not active"
PROMO_EXHAUSTED = "Promo code has reached its usage limit"


def evaluate_promo(promo: PromoCode, now: datetime) -> Optional[str]:
    """
    Decide whether a promo code can be redeemed at ``now``.

    ``max_uses`` of None or 0 means unlimited. The SQL guard used when
    reserving a use, ``promo_available_clause``, expresses the same rules.

    Returns:
        None if the code is available, otherwise the reason it is not
    """
    if not promo.is_active:
        return PROMO_INACTIVE
    if promo.expires_at is not None and promo.expires_at <= now:
        return PROMO_EXPIRED
    if promo.max_uses and promo.times_used >= promo.max_uses:
        return PROMO_EXHAUSTED
    return None


def promo_available_clause(now: datetime):
    """SQL form of ``evaluate_promo`` for conditional updates."""
    return and_(
        PromoCode.is_active.is_(True),
        or_(PromoCode.expires_at.is_(None), PromoCode.expires_at > now),
        or_(
            PromoCode.max_uses.is_(None),
            PromoCode.max_uses == 0,
            PromoCode.times_used < PromoCode.max_uses,
        ),
    )


def compute_discount(promo: PromoCode, total: int) -> int:
    """
    Discount in minor units for an order total, capped at the total.

    Percentages round half up to the nearest minor unit.
    """
    if total <= 0:
        return 0
    if promo.discount_type == DiscountType.PERCENTAGE:
        discount = (total * promo.discount_value + 50) // 100
    else:
        discount = promo.discount_value
    return min(discount, total)


class PromoService:
    """Service for promo code operations."""

    def __init__(self, db: AsyncSession, gateway: Optional[StripeGateway] = None):
        self.db = db
        self.gateway = gateway or StripeGateway()

    async def get_promo_by_id(self, promo_id: UUID) -> Optional[PromoCode]:
        stmt = select(PromoCode).where(PromoCode.id == promo_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_promo_by_code(self, code: str) -> Optional[PromoCode]:
        stmt = select(PromoCode).where(PromoCode.code == code.strip().upper())
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_promo_by_id_or_raise(self, promo_id: UUID) -> PromoCode:
        promo = await self.get_promo_by_id(promo_id)
        if not promo:
            logger.warning("Promo code not found", extra={"promo_id": str(promo_id)})
            raise NotFoundError(resource_type="promo code", resource_id=str(promo_id))
        return promo

    async def validate_promo(self, code: str, total_amount: int) -> tuple[PromoCode, int]:
        """
        Validate a promo code against an order total.

        Args:
            code: Code as entered; trimmed and upper-cased before lookup
            total_amount: Order total in minor units

        Returns:
            Tuple of (promo, discount_amount)

        Raises:
            NotFoundError: If the code is unknown or inactive
            PromoUnavailableError: If the code has expired or is used up
        """
        code = code.strip().upper()
        promo = await self.get_promo_by_code(code)

        reason = PROMO_INACTIVE if promo is None else evaluate_promo(promo, utcnow())
        if reason == PROMO_INACTIVE:
            logger.info("Unknown or inactive promo code", extra={"code": code})
            raise NotFoundError(resource_type="promo code", detail=f"Promo code '{code}' is not valid")
        if reason:
            logger.info("Promo code unavailable", extra={"code": code, "reason": reason})
            raise PromoUnavailableError(code, reason)

        return promo, compute_discount(promo, total_amount)

    async def reserve_promo(self, promo_code_id: UUID, code: str, commit: bool = True) -> PromoCode:
        """
        Consume one use of a promo code with a single conditional update.

        The increment only applies while the code is still available, so two
        concurrent reservations of the last use cannot both succeed.

        Args:
            promo_code_id: Promo ID returned by validation
            code: The code itself; must match the ID
            commit: Commit immediately; pass False to join the caller's transaction

        Raises:
            PromoUnavailableError: If no use could be reserved
        """
        code = code.strip().upper()
        stmt = (
            update(PromoCode)
            .where(
                PromoCode.id == promo_code_id,
                PromoCode.code == code,
                promo_available_clause(utcnow()),
            )
            .values(times_used=PromoCode.times_used + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if result.rowcount != 1:
            logger.warning(
                "Promo reservation rejected",
                extra={"promo_code_id": str(promo_code_id), "code": code}
            )
            if commit:
                await self.db.rollback()
            raise PromoUnavailableError(code)

        if commit:
            await self.db.commit()

        metrics_collector.record_promo_redemption(code)

        stmt = (
            select(PromoCode)
            .where(PromoCode.id == promo_code_id)
            .execution_options(populate_existing=True)
        )
        return (await self.db.execute(stmt)).scalar_one()

    async def create_promo(self, request: CreatePromoRequest) -> PromoCode:
        """
        Create a promo code and, when payments are configured, its Stripe coupon.

        The coupon is deleted again if the database write fails.

        Raises:
            ConflictError: If the code already exists
            PaymentProviderError: If the coupon cannot be created
        """
        existing = await self.get_promo_by_code(request.code)
        if existing:
            raise ConflictError(
                detail=f"Promo code '{request.code}' already exists",
                conflicting_resource={"id": str(existing.id), "code": existing.code}
            )

        coupon_id = None
        if settings.stripe_enabled:
            coupon = await self.gateway.create_coupon(
                code=request.code,
                discount_type=request.discount_type,
                discount_value=request.discount_value,
                currency=settings.default_currency,
                max_uses=request.max_uses,
                expires_at=request.expires_at,
            )
            coupon_id = coupon.id

        promo = PromoCode(
            code=request.code,
            description=request.description,
            discount_type=request.discount_type,
            discount_value=request.discount_value,
            max_uses=request.max_uses,
            expires_at=request.expires_at,
            stripe_coupon_id=coupon_id,
        )

        try:
            self.db.add(promo)
            await self.db.commit()
            await self.db.refresh(promo)
        except Exception as e:
            await self.db.rollback()
            logger.error(
                "Promo code creation failed, removing provider coupon",
                extra={"code": request.code, "coupon_id": coupon_id, "error": str(e)}
            )
            if coupon_id:
                await self.gateway.delete_coupon(coupon_id)
            if isinstance(e, IntegrityError):
                raise ConflictError(detail=f"Promo code '{request.code}' already exists") from e
            raise

        logger.info(
            "Promo code created",
            extra={
                "promo_id": str(promo.id),
                "code": promo.code,
                "discount_type": promo.discount_type,
                "discount_value": promo.discount_value,
                "coupon_id": coupon_id
            }
        )

        return promo

    async def update_promo(self, promo_id: UUID, request: UpdatePromoRequest) -> PromoCode:
        """Update a promo code's description, limits, expiry or active flag."""
        promo = await self.get_promo_by_id_or_raise(promo_id)

        for field, value in request.model_dump(exclude_unset=True).items():
            setattr(promo, field, value)

        await self.db.commit()
        await self.db.refresh(promo)

        logger.info(
            "Promo code updated",
            extra={"promo_id": str(promo_id), "fields": sorted(request.model_fields_set)}
        )
        return promo

    async def list_promos(
        self,
        active_only: bool = False,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> tuple[list[PromoCode], Optional[str]]:
        """List promo codes with cursor-based pagination."""
        stmt = select(PromoCode)
        if active_only:
            stmt = stmt.where(PromoCode.is_active.is_(True))
        if cursor:
            try:
                stmt = stmt.where(PromoCode.id > UUID(cursor))
            except ValueError:
                logger.warning("Invalid cursor provided in promo listing", extra={"cursor": cursor})

        stmt = stmt.order_by(PromoCode.id).limit(limit + 1)
        promos = list((await self.db.execute(stmt)).scalars())

        next_cursor = None
        if len(promos) > limit:
            promos = promos[:limit]
            next_cursor = str(promos[-1].id)

        return promos, next_cursor

    async def delete_promo(self, promo_id: UUID) -> None:
        """
        Delete a promo code and its Stripe coupon.

        The coupon goes first so a provider failure leaves the code intact.
        Bookings that used the code keep their discount and lose the link.

        Raises:
            NotFoundError: If the promo does not exist
            PaymentProviderError: If the coupon cannot be deleted
        """
        promo = await self.get_promo_by_id_or_raise(promo_id)

        if promo.stripe_coupon_id and settings.stripe_enabled:
            await self.gateway.delete_coupon(promo.stripe_coupon_id)

        await self.db.execute(
            update(Booking)
            .where(Booking.promo_code_id == promo_id)
            .values(promo_code_id=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.delete(promo)
        await self.db.commit()

        logger.info(
            "Promo code deleted",
            extra={"promo_id": str(promo_id), "code": promo.code, "coupon_id": promo.stripe_coupon_id}
        )
