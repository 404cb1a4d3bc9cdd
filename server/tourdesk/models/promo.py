"""Promo code model definition."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.clock import utcnow
from ..core.database import Base


class DiscountType(str, Enum):
    """How a promo code's ``discount_value`` is applied."""
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class PromoCode(Base):
    """Discount code redeemable against booking totals."""

    __tablename__ = "promo_codes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Stored upper-cased
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    discount_type: Mapped[DiscountType] = mapped_column(String(20), nullable=False)
    # Whole percent for percentage codes, minor units for fixed amounts
    discount_value: Mapped[int] = mapped_column(Integer, nullable=False)

    # None or 0 means unlimited
    max_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    times_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    stripe_coupon_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("length(code) > 0", name="ck_promo_code_not_empty"),
        CheckConstraint("discount_value > 0", name="ck_promo_discount_positive"),
        CheckConstraint("times_used >= 0", name="ck_promo_times_used_non_negative"),
        CheckConstraint(
            "discount_type <> 'percentage' OR discount_value <= 100",
            name="ck_promo_percentage_lte_100"
        ),
    )

    def __repr__(self) -> str:
        return f"<PromoCode(code='{self.code}', {self.discount_type}={self.discount_value}, used={self.times_used})>"
