"""Promo code router for validation, reservation and administration."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import AdminAuth
from ..core.exceptions import ProblemDetailsException, parse_uuid, unexpected_error
from ..schemas.promo import (
    CreatePromoRequest,
    ListPromosResponse,
    PromoCode,
    ReservePromoRequest,
    ReservePromoResponse,
    UpdatePromoRequest,
    ValidatePromoRequest,
    ValidatePromoResponse,
)
from ..services.promo_service import PromoService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/promos", tags=["promos"])

DB_DEPENDENCY = Depends(get_db)


def _convert_promo_to_schema(promo_model) -> PromoCode:
    """Convert promo code model to schema."""
    return PromoCode(
        id=str(promo_model.id),
        code=promo_model.code,
        description=promo_model.description,
        discount_type=promo_model.discount_type,
        discount_value=promo_model.discount_value,
        max_uses=promo_model.max_uses,
        times_used=promo_model.times_used,
        expires_at=promo_model.expires_at,
        is_active=promo_model.is_active,
        stripe_coupon_id=promo_model.stripe_coupon_id,
        created_at=promo_model.created_at
    )


@router.post("/validate", response_model=ValidatePromoResponse)
async def validate_promo(
    request: ValidatePromoRequest,
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    """
    Check a promo code against an order total and return the discount.

    Validation does not consume a use; see ``/reserve``.
    """
    promo_service = PromoService(db)

    try:
        promo, discount = await promo_service.validate_promo(request.code, request.total_amount)
        response_data = ValidatePromoResponse(
            promo_code_id=str(promo.id),
            code=promo.code,
            discount_type=promo.discount_type,
            discount_value=promo.discount_value,
            discount_amount=discount,
            final_amount=request.total_amount - discount,
            stripe_coupon_id=promo.stripe_coupon_id
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("promo validation", e, code=request.code) from e


@router.post("/reserve", response_model=ReservePromoResponse)
async def reserve_promo(
    request: ReservePromoRequest,
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    """
    Consume one use of a promo code.

    Returns 409 when the code is no longer available.
    """
    promo_service = PromoService(db)

    try:
        promo = await promo_service.reserve_promo(
            parse_uuid(request.promo_code_id, "promo code"), request.code
        )
        response_data = ReservePromoResponse(
            promo_code_id=str(promo.id),
            code=promo.code,
            times_used=promo.times_used
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("promo reservation", e, promo_code_id=request.promo_code_id) from e


@router.post("", response_model=PromoCode, status_code=201)
async def create_promo(
    request: CreatePromoRequest,
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> JSONResponse:
    """Create a promo code and its payment provider coupon."""
    promo_service = PromoService(db)

    try:
        promo = await promo_service.create_promo(request)
        return JSONResponse(status_code=201, content=_convert_promo_to_schema(promo).model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("promo creation", e, code=request.code) from e


@router.get("", response_model=ListPromosResponse)
async def list_promos(
    active_only: bool = Query(False, description="Only active codes"),
    cursor: Optional[str] = Query(None, description="Pagination cursor"),
    limit: int = Query(50, ge=1, le=100, description="Number of items to return"),
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> JSONResponse:
    """List promo codes with cursor-based pagination."""
    promo_service = PromoService(db)

    try:
        promos, next_cursor = await promo_service.list_promos(active_only=active_only, cursor=cursor, limit=limit)
        response_data = ListPromosResponse(
            items=[_convert_promo_to_schema(promo) for promo in promos],
            next_cursor=next_cursor
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("promo listing", e) from e


@router.patch("/{promo_id}", response_model=PromoCode)
async def update_promo(
    promo_id: UUID,
    request: UpdatePromoRequest,
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> JSONResponse:
    """Update a promo code's description, usage limit, expiry or active flag."""
    promo_service = PromoService(db)

    try:
        promo = await promo_service.update_promo(promo_id, request)
        return JSONResponse(status_code=200, content=_convert_promo_to_schema(promo).model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("promo update", e, promo_id=str(promo_id)) from e


@router.delete("/{promo_id}", status_code=204)
async def delete_promo(
    promo_id: UUID,
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> Response:
    """Delete a promo code and its payment provider coupon."""
    promo_service = PromoService(db)

    try:
        await promo_service.delete_promo(promo_id)
        return Response(status_code=204)

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("promo deletion", e, promo_id=str(promo_id)) from e
