"""Promo code Pydantic schemas."""

from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, BeforeValidator, Field, model_validator

from ..core.clock import to_naive_utc
from ..models.promo import DiscountType
from .common import PaginatedResponse


def normalize_code(value: str) -> str:
    return value.strip().upper()


def _parse_discount_type(v):
    # "fixed" is accepted as shorthand for fixed_amount
    if isinstance(v, str) and v.strip().lower() == "fixed":
        return DiscountType.FIXED_AMOUNT
    return v


PromoCodeStr = Annotated[str, AfterValidator(normalize_code)]
DiscountTypeIn = Annotated[DiscountType, BeforeValidator(_parse_discount_type)]
NaiveUTCDatetime = Annotated[datetime, AfterValidator(to_naive_utc)]


class CreatePromoRequest(BaseModel):
    """Request schema for creating a promo code."""

    code: PromoCodeStr = Field(..., min_length=1, max_length=64, pattern=r"^\s*[A-Za-z0-9_-]+\s*$")
    description: str | None = Field(None, max_length=500)
    discount_type: DiscountTypeIn = Field(..., description="percentage or fixed_amount")
    discount_value: int = Field(..., gt=0, description="Whole percent, or minor units for fixed amounts")
    max_uses: int | None = Field(None, ge=0, description="Null or 0 for unlimited")
    expires_at: NaiveUTCDatetime | None = None

    @model_validator(mode="after")
    def check_percentage(self) -> "CreatePromoRequest":
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Percentage discounts cannot exceed 100")
        return self


class UpdatePromoRequest(BaseModel):
    """Partial update; the code and discount are fixed once created."""

    description: str | None = Field(None, max_length=500)
    max_uses: int | None = Field(None, ge=0)
    expires_at: NaiveUTCDatetime | None = None
    is_active: bool | None = None


class PromoCode(BaseModel):
    """Promo code response schema."""

    id: str
    code: str
    description: str | None = None
    discount_type: DiscountType
    discount_value: int
    max_uses: int | None = None
    times_used: int
    expires_at: datetime | None = None
    is_active: bool
    stripe_coupon_id: str | None = None
    created_at: datetime


class ListPromosResponse(PaginatedResponse):
    items: list[PromoCode]


class ValidatePromoRequest(BaseModel):
    """Check a code against an order total."""

    code: PromoCodeStr = Field(..., min_length=1, max_length=64)
    total_amount: int = Field(..., ge=0, description="Order total in minor units")


class ValidatePromoResponse(BaseModel):
    promo_code_id: str
    code: str
    discount_type: DiscountType
    discount_value: int
    discount_amount: int = Field(..., description="Discount in minor units, never above the total")
    final_amount: int
    stripe_coupon_id: str | None = None


class ReservePromoRequest(BaseModel):
    """Consume one use of a validated promo code."""

    promo_code_id: str
    code: PromoCodeStr = Field(..., min_length=1, max_length=64)


class ReservePromoResponse(BaseModel):
    promo_code_id: str
    code: str
    times_used: int
