"""Tests for the Stripe SDK wrapper."""

from datetime import datetime
from unittest.mock import patch

import pytest
import stripe

from tourdesk.core.exceptions import PaymentProviderError, PaymentProviderNotConfiguredError
from tourdesk.models.promo import DiscountType
from tourdesk.services.stripe_gateway import StripeGateway


@pytest.fixture
def gateway():
    return StripeGateway(secret_key="sk_test_123")


@pytest.mark.asyncio
async def test_unconfigured_gateway_refuses_calls():
    gateway = StripeGateway(secret_key="")

    with patch("stripe.PaymentIntent.create") as create:
        with pytest.raises(PaymentProviderNotConfiguredError):
            await gateway.create_payment_intent(1000, "USD", "ana@example.com", {})

    create.assert_not_called()


@pytest.mark.asyncio
async def test_payment_intent_parameters(gateway):
    with patch("stripe.PaymentIntent.create", return_value={"id": "pi_1"}) as create:
        intent = await gateway.create_payment_intent(2500, "EUR", "ana@example.com", {"booking_id": "b1"})

    assert intent == {"id": "pi_1"}
    create.assert_called_once_with(
        amount=2500,
        currency="eur",
        receipt_email="ana@example.com",
        metadata={"booking_id": "b1"},
        automatic_payment_methods={"enabled": True},
    )


@pytest.mark.asyncio
async def test_checkout_session_applies_coupon(gateway):
    with patch("stripe.checkout.Session.create", return_value={"id": "cs_1"}) as create:
        await gateway.create_checkout_session(
            line_items=[{"quantity": 1}],
            success_url="https://example.com/ok",
            cancel_url="https://example.com/cancel",
            metadata={"booking_id": "b1"},
            coupon_id="coupon_1",
        )

    kwargs = create.call_args.kwargs
    assert kwargs["mode"] == "payment"
    assert kwargs["discounts"] == [{"coupon": "coupon_1"}]
    assert kwargs["payment_intent_data"] == {"metadata": {"booking_id": "b1"}}
    assert "customer_email" not in kwargs


@pytest.mark.asyncio
async def test_coupon_parameters(gateway):
    with patch("stripe.Coupon.create", return_value={"id": "co_1"}) as create:
        await gateway.create_coupon("SAVE5", DiscountType.FIXED_AMOUNT, 500, "USD", max_uses=10,
                                    expires_at=datetime(2030, 1, 1))
        await gateway.create_coupon("TENOFF", DiscountType.PERCENTAGE, 10, "USD")

    fixed, percent = (call.kwargs for call in create.call_args_list)
    assert fixed["amount_off"] == 500
    assert fixed["currency"] == "usd"
    assert fixed["max_redemptions"] == 10
    assert fixed["redeem_by"] == 1893456000
    assert fixed["duration"] == "once"
    assert percent["percent_off"] == 10
    assert "max_redemptions" not in percent
    assert "redeem_by" not in percent


@pytest.mark.asyncio
async def test_refund_without_amount_refunds_everything(gateway):
    with patch("stripe.Refund.create", return_value={"id": "re_1"}) as create:
        await gateway.create_refund("pi_1")

    create.assert_called_once_with(payment_intent="pi_1")


@pytest.mark.asyncio
async def test_stripe_errors_become_provider_errors(gateway):
    failure = stripe.APIConnectionError("connection reset by peer")

    with patch("stripe.Refund.create", side_effect=failure):
        with pytest.raises(PaymentProviderError) as exc_info:
            await gateway.create_refund("pi_1", 500)

    assert exc_info.value.status_code == 502
    assert "connection reset" not in (exc_info.value.detail or "")


@pytest.mark.asyncio
async def test_missing_coupon_counts_as_deleted(gateway):
    missing = stripe.InvalidRequestError("No such coupon", "id", code="resource_missing")

    with patch("stripe.Coupon.delete", side_effect=missing):
        await gateway.delete_coupon("co_gone")

    other = stripe.InvalidRequestError("Bad request", "id", code="parameter_invalid")
    with patch("stripe.Coupon.delete", side_effect=other):
        with pytest.raises(PaymentProviderError):
            await gateway.delete_coupon("co_1")
