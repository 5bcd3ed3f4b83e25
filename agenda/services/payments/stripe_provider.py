"""
Stripe client built on the official SDK.

Checkouts are Stripe Checkout Sessions; the session id is what the payments
table stores as ``provider_payment_id``. The SDK is synchronous, so calls
run in a worker thread to keep the event loop free and the caller's
timeouts effective.
"""

import asyncio
import json
import logging
from typing import Any, Optional

import stripe

from agenda.config import settings
from agenda.exceptions import ExternalServiceError
from agenda.services.payments.base import (
    CheckoutResult,
    CustomerInfo,
    PaymentResult,
    StripeChargeSnapshot,
    StripeSession,
    as_int,
)

logger = logging.getLogger(__name__)


def _as_dict(obj: Any) -> dict:
    if obj is None:
        return {}
    if isinstance(obj, dict) and not isinstance(obj, stripe.StripeObject):
        return obj
    return json.loads(str(obj))


def session_from_payload(data: dict) -> Optional[StripeSession]:
    """Typed snapshot of a Checkout Session (payment intent expanded or not)."""
    session_id = data.get("id")
    if not isinstance(session_id, str) or not session_id:
        return None

    intent = data.get("payment_intent")
    intent_id = intent if isinstance(intent, str) else None
    intent_status = None
    charges: list[StripeChargeSnapshot] = []
    if isinstance(intent, dict):
        intent_id = intent.get("id")
        intent_status = intent.get("status")
        latest = intent.get("latest_charge")
        charge_objects = [latest] if isinstance(latest, dict) else []
        legacy = (intent.get("charges") or {}).get("data")
        if isinstance(legacy, list):
            charge_objects = [c for c in legacy if isinstance(c, dict)]
        for charge in charge_objects:
            captured = charge.get("amount_captured")
            charges.append(
                StripeChargeSnapshot(
                    id=charge.get("id"),
                    amount_captured=as_int(captured if captured is not None else charge.get("amount")),
                    amount_refunded=as_int(charge.get("amount_refunded")),
                )
            )

    metadata = data.get("metadata") or {}
    appointment_id = metadata.get("appointment_id") if isinstance(metadata, dict) else None

    return StripeSession(
        id=session_id,
        payment_status=data.get("payment_status"),
        payment_intent_id=intent_id,
        payment_intent_status=intent_status,
        charges=tuple(charges),
        appointment_id=appointment_id if isinstance(appointment_id, str) else None,
        raw=data,
    )


class StripeProvider:
    """Stripe payment provider."""

    name = "stripe"

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        currency: Optional[str] = None,
    ):
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        self.currency = (currency or settings.PAYMENT_CURRENCY).lower()
        if self.secret_key:
            stripe.api_key = self.secret_key

    def is_configured(self) -> bool:
        return bool(self.secret_key)

    async def create_order(
        self,
        title: str,
        amount_cents: int,
        reference: str,
        notification_url: str,
        customer: Optional[CustomerInfo] = None,
    ) -> CheckoutResult:
        if not self.is_configured():
            raise ExternalServiceError(self.name, "Payment system not configured")

        success_url = f"{settings.public_base_url}/success?ref={reference}"
        params = {
            "mode": "payment",
            "line_items": [
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": self.currency,
                        "unit_amount": amount_cents,
                        "product_data": {"name": title},
                    },
                }
            ],
            "client_reference_id": reference,
            "metadata": {"appointment_id": reference},
            "payment_intent_data": {"metadata": {"appointment_id": reference}},
            "success_url": success_url,
            "cancel_url": success_url,
        }
        if customer and customer.email:
            params["customer_email"] = customer.email

        try:
            session = await asyncio.to_thread(stripe.checkout.Session.create, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session creation failed: {e}")
            raise ExternalServiceError(self.name, str(e))

        logger.info(f"Stripe checkout session created: {session.id} for {reference}")
        return CheckoutResult(
            order_id=session.id,
            checkout_url=getattr(session, "url", None),
            client_secret=getattr(session, "client_secret", None),
        )

    async def get_order(self, order_id: str) -> Optional[StripeSession]:
        if not self.is_configured():
            return None
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.retrieve,
                order_id,
                expand=["payment_intent", "payment_intent.latest_charge"],
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe session lookup failed for {order_id}: {e}")
            return None
        return session_from_payload(_as_dict(session))

    async def find_session_by_payment_intent(self, payment_intent_id: str) -> Optional[str]:
        """Checkout session id that produced a payment intent."""
        if not self.is_configured():
            return None
        try:
            sessions = await asyncio.to_thread(
                stripe.checkout.Session.list, payment_intent=payment_intent_id, limit=1
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe session search failed for {payment_intent_id}: {e}")
            return None
        data = _as_dict(sessions).get("data") or []
        return data[0].get("id") if data else None

    async def refund(self, provider_payment_id: str, amount_cents: Optional[int] = None) -> PaymentResult:
        """Refund the payment intent behind a checkout session."""
        session = await self.get_order(provider_payment_id)
        if session is None or not session.payment_intent_id:
            return PaymentResult(success=False, error_message=f"Session {provider_payment_id} has no payment")

        refund_params = {"payment_intent": session.payment_intent_id}
        if amount_cents:
            refund_params["amount"] = amount_cents

        try:
            refund = await asyncio.to_thread(stripe.Refund.create, **refund_params)
        except stripe.StripeError as e:
            logger.error(f"Stripe refund failed for {provider_payment_id}: {e}")
            return PaymentResult(success=False, error_message=str(e))

        logger.info(f"Stripe refund {refund.id} created for {session.payment_intent_id}, amount={amount_cents}")
        return PaymentResult(success=True, charge_id=refund.id)

    def verify_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        """Validate the ``Stripe-Signature`` header.

        Without a configured secret every delivery is accepted.
        """
        if not self.webhook_secret:
            logger.warning("Stripe webhook secret not configured, skipping signature check")
            return True
        if not signature:
            return False
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError):
            return False
        return True
