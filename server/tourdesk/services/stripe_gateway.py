"""Thin async wrapper over the blocking Stripe SDK."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import stripe

from ..core.config import settings
from ..core.exceptions import PaymentProviderError, PaymentProviderNotConfiguredError
from ..models.promo import DiscountType

logger = logging.getLogger(__name__)


class StripeGateway:
    """
    Runs Stripe SDK calls in a worker thread and maps failures to problem details.

    Provider error messages are logged and never returned to clients.
    """

    def __init__(self, secret_key: Optional[str] = None):
        self.secret_key = settings.stripe_secret_key if secret_key is None else secret_key
        if self.secret_key:
            stripe.api_key = self.secret_key

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    async def _call(self, operation: str, func: Callable[..., Any], *args, **kwargs) -> Any:
        if not self.configured:
            raise PaymentProviderNotConfiguredError()

        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except stripe.StripeError as e:
            logger.error(
                "Stripe call failed",
                extra={
                    "operation": operation,
                    "error_type": type(e).__name__,
                    "stripe_code": getattr(e, "code", None),
                    "error": str(e)
                }
            )
            raise PaymentProviderError(operation=operation) from e

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        receipt_email: str,
        metadata: dict[str, str],
    ) -> Any:
        return await self._call(
            "payment_intent.create",
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency.lower(),
            receipt_email=receipt_email,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
        )

    async def create_checkout_session(
        self,
        line_items: list[dict[str, Any]],
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        customer_email: Optional[str] = None,
        coupon_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Any:
        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
        }
        if customer_email:
            params["customer_email"] = customer_email
        if coupon_id:
            params["discounts"] = [{"coupon": coupon_id}]
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        return await self._call("checkout.session.create", stripe.checkout.Session.create, **params)

    async def retrieve_checkout_session(self, session_id: str) -> Any:
        return await self._call("checkout.session.retrieve", stripe.checkout.Session.retrieve, session_id)

    async def expire_checkout_session(self, session_id: str) -> Any:
        return await self._call("checkout.session.expire", stripe.checkout.Session.expire, session_id)

    async def retrieve_payment_intent(self, payment_intent_id: str) -> Any:
        return await self._call("payment_intent.retrieve", stripe.PaymentIntent.retrieve, payment_intent_id)

    async def retrieve_charge(self, charge_id: str) -> Any:
        return await self._call("charge.retrieve", stripe.Charge.retrieve, charge_id)

    async def create_refund(self, payment_intent_id: str, amount: Optional[int] = None) -> Any:
        params: dict[str, Any] = {"payment_intent": payment_intent_id}
        if amount is not None:
            params["amount"] = amount
        return await self._call("refund.create", stripe.Refund.create, **params)

    async def create_coupon(
        self,
        code: str,
        discount_type: DiscountType,
        discount_value: int,
        currency: str,
        max_uses: Optional[int] = None,
        expires_at: Optional[datetime] = None,
    ) -> Any:
        """Create a single-use-per-checkout coupon mirroring a promo code."""
        params: dict[str, Any] = {"name": code, "duration": "once", "metadata": {"promo_code": code}}
        if discount_type == DiscountType.PERCENTAGE:
            params["percent_off"] = discount_value
        else:
            params["amount_off"] = discount_value
            params["currency"] = currency.lower()
        if max_uses:
            params["max_redemptions"] = max_uses
        if expires_at:
            params["redeem_by"] = int(expires_at.replace(tzinfo=timezone.utc).timestamp())

        return await self._call("coupon.create", stripe.Coupon.create, **params)

    async def delete_coupon(self, coupon_id: str) -> None:
        """Delete a coupon; one that no longer exists counts as deleted."""
        if not self.configured:
            raise PaymentProviderNotConfiguredError()

        try:
            await asyncio.to_thread(stripe.Coupon.delete, coupon_id)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) != "resource_missing":
                logger.error(
                    "Stripe coupon deletion failed",
                    extra={"coupon_id": coupon_id, "error": str(e)}
                )
                raise PaymentProviderError(operation="coupon.delete") from e
            logger.info("Stripe coupon already deleted", extra={"coupon_id": coupon_id})
        except stripe.StripeError as e:
            logger.error(
                "Stripe coupon deletion failed",
                extra={"coupon_id": coupon_id, "error": str(e)}
            )
            raise PaymentProviderError(operation="coupon.delete") from e

    def construct_event(self, payload: bytes, signature: str) -> Any:
        """Verify a webhook signature; raises ``stripe.SignatureVerificationError`` or ``ValueError``."""
        return stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
