"""Tests for promo code validation, reservation and lifecycle."""

from datetime import timedelta
from types import SimpleNamespace
from uuid import uuid4

import pytest

from tourdesk.core.clock import utcnow
from tourdesk.core.config import settings
from tourdesk.core.exceptions import ConflictError, NotFoundError, PromoUnavailableError
from tourdesk.models.promo import DiscountType
from tourdesk.schemas.promo import CreatePromoRequest, UpdatePromoRequest
from tourdesk.services.promo_service import (
    PROMO_EXHAUSTED,
    PROMO_EXPIRED,
    PROMO_INACTIVE,
    PromoService,
    compute_discount,
    evaluate_promo,
)


def _promo(**overrides):
    values = {
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": 10,
        "is_active": True,
        "expires_at": None,
        "max_uses": None,
        "times_used": 0,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_percentage_discount_rounds_half_up():
    assert compute_discount(_promo(discount_value=10), 5000) == 500
    assert compute_discount(_promo(discount_value=15), 1010) == 152
    assert compute_discount(_promo(discount_value=50), 1) == 1


def test_fixed_discount_is_capped_at_total():
    promo = _promo(discount_type=DiscountType.FIXED_AMOUNT, discount_value=3000)
    assert compute_discount(promo, 5000) == 3000
    assert compute_discount(promo, 1200) == 1200
    assert compute_discount(promo, 0) == 0


def test_evaluate_promo():
    now = utcnow()
    assert evaluate_promo(_promo(), now) is None
    assert evaluate_promo(_promo(is_active=False), now) == PROMO_INACTIVE
    assert evaluate_promo(_promo(expires_at=now - timedelta(minutes=1)), now) == PROMO_EXPIRED
    assert evaluate_promo(_promo(max_uses=2, times_used=2), now) == PROMO_EXHAUSTED


def test_zero_max_uses_is_unlimited():
    assert evaluate_promo(_promo(max_uses=0, times_used=500), utcnow()) is None


def test_create_request_normalises_code():
    request = CreatePromoRequest(code="  summer-25 ", discount_type="fixed", discount_value=250)
    assert request.code == "SUMMER-25"
    assert request.discount_type == DiscountType.FIXED_AMOUNT


def test_create_request_rejects_large_percentage():
    with pytest.raises(ValueError):
        CreatePromoRequest(code="HALFPLUS", discount_type="percentage", discount_value=101)


@pytest.mark.asyncio
async def test_create_promo(test_session):
    promo = await PromoService(test_session).create_promo(
        CreatePromoRequest(code="spring10", discount_type="percentage", discount_value=10, max_uses=100)
    )

    assert promo.code == "SPRING10"
    assert promo.times_used == 0
    assert promo.is_active is True
    assert promo.stripe_coupon_id is None


@pytest.mark.asyncio
async def test_create_promo_with_coupon(test_session, fake_gateway, monkeypatch):
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123")

    promo = await PromoService(test_session, fake_gateway).create_promo(
        CreatePromoRequest(code="WELCOME", discount_type="fixed", discount_value=500)
    )

    assert promo.stripe_coupon_id == "coupon_WELCOME"
    assert fake_gateway.calls == [("create_coupon", {"code": "WELCOME"})]


@pytest.mark.asyncio
async def test_create_duplicate_promo(test_session):
    promo_service = PromoService(test_session)
    await promo_service.create_promo(CreatePromoRequest(code="DUP", discount_type="fixed", discount_value=100))

    with pytest.raises(ConflictError):
        await promo_service.create_promo(CreatePromoRequest(code="dup", discount_type="fixed", discount_value=200))


@pytest.mark.asyncio
async def test_validate_promo(test_session):
    promo_service = PromoService(test_session)
    created = await promo_service.create_promo(
        CreatePromoRequest(code="SPRING10", discount_type="percentage", discount_value=10)
    )

    promo, discount = await promo_service.validate_promo(" spring10", 5000)

    assert promo.id == created.id
    assert discount == 500


@pytest.mark.asyncio
async def test_validate_unknown_or_inactive_promo(test_session):
    promo_service = PromoService(test_session)
    created = await promo_service.create_promo(
        CreatePromoRequest(code="PAUSED", discount_type="fixed", discount_value=100)
    )
    await promo_service.update_promo(created.id, UpdatePromoRequest(is_active=False))

    with pytest.raises(NotFoundError):
        await promo_service.validate_promo("NOPE", 1000)
    with pytest.raises(NotFoundError):
        await promo_service.validate_promo("PAUSED", 1000)


@pytest.mark.asyncio
async def test_validate_expired_promo(test_session):
    promo_service = PromoService(test_session)
    await promo_service.create_promo(
        CreatePromoRequest(
            code="LASTYEAR",
            discount_type="fixed",
            discount_value=100,
            expires_at=utcnow() - timedelta(days=1),
        )
    )

    with pytest.raises(PromoUnavailableError) as exc_info:
        await promo_service.validate_promo("LASTYEAR", 1000)

    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_reserve_promo_stops_at_max_uses(test_session):
    """The last use can be reserved once; the next reservation is rejected."""
    promo_service = PromoService(test_session)
    created = await promo_service.create_promo(
        CreatePromoRequest(code="TWICE", discount_type="fixed", discount_value=100, max_uses=2)
    )
    promo_id = created.id

    assert (await promo_service.reserve_promo(promo_id, "TWICE")).times_used == 1
    assert (await promo_service.reserve_promo(promo_id, "twice")).times_used == 2

    with pytest.raises(PromoUnavailableError):
        await promo_service.reserve_promo(promo_id, "TWICE")

    assert (await promo_service.get_promo_by_id(promo_id)).times_used == 2


@pytest.mark.asyncio
async def test_reserve_promo_requires_matching_code(test_session):
    promo_service = PromoService(test_session)
    created = await promo_service.create_promo(
        CreatePromoRequest(code="MATCH", discount_type="fixed", discount_value=100)
    )
    promo_id = created.id

    with pytest.raises(PromoUnavailableError):
        await promo_service.reserve_promo(promo_id, "OTHER")
    with pytest.raises(PromoUnavailableError):
        await promo_service.reserve_promo(uuid4(), "MATCH")


@pytest.mark.asyncio
async def test_list_and_delete_promos(test_session):
    promo_service = PromoService(test_session)
    first = await promo_service.create_promo(CreatePromoRequest(code="ONE", discount_type="fixed", discount_value=100))
    await promo_service.create_promo(CreatePromoRequest(code="TWO", discount_type="fixed", discount_value=200))
    await promo_service.update_promo(first.id, UpdatePromoRequest(is_active=False))

    everything, _ = await promo_service.list_promos()
    active, _ = await promo_service.list_promos(active_only=True)
    assert {promo.code for promo in everything} == {"ONE", "TWO"}
    assert [promo.code for promo in active] == ["TWO"]

    await promo_service.delete_promo(first.id)

    assert await promo_service.get_promo_by_code("ONE") is None
    with pytest.raises(NotFoundError):
        await promo_service.delete_promo(first.id)
