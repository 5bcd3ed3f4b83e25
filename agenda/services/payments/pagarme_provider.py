"""
Pagar.me (core v5) client.

Orders are created as hosted checkouts; refunds cancel the paid charge of an
order, partially when an amount is given. Webhooks are signed with an
HMAC-SHA1 of the raw body in the ``X-Hub-Signature`` header.
"""

import hashlib
import hmac
import logging
from typing import Optional

import httpx

from agenda.config import settings
from agenda.exceptions import ExternalServiceError
from agenda.services.payments.base import (
    CheckoutResult,
    CustomerInfo,
    PagarmeCharge,
    PagarmeOrder,
    PaymentResult,
    as_int,
)

logger = logging.getLogger(__name__)


def order_from_payload(data: dict) -> Optional[PagarmeOrder]:
    """Typed snapshot of a Pagar.me order body, None when it has no id."""
    order_id = data.get("id")
    if not isinstance(order_id, str) or not order_id:
        return None

    charges = tuple(
        PagarmeCharge(
            id=charge.get("id"),
            status=str(charge.get("status") or ""),
            amount=as_int(charge.get("amount")),
            paid_amount=as_int(charge.get("paid_amount")),
        )
        for charge in data.get("charges") or []
        if isinstance(charge, dict)
    )

    # The appointment id travels as the order code, or in metadata
    appointment_id = data.get("code") if isinstance(data.get("code"), str) and data.get("code") else None
    metadata = data.get("metadata")
    if appointment_id is None and isinstance(metadata, dict):
        candidate = metadata.get("appointment_id")
        appointment_id = candidate if isinstance(candidate, str) else None

    return PagarmeOrder(
        id=order_id,
        status=str(data.get("status") or ""),
        charges=charges,
        appointment_id=appointment_id,
        raw=data,
    )


class PagarmeProvider:
    """Pagar.me payment provider over its REST API."""

    name = "pagarme"

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        api_url: Optional[str] = None,
        currency: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.secret_key = secret_key or settings.PAGARME_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.PAGARME_WEBHOOK_SECRET
        self.api_url = (api_url or settings.PAGARME_API_URL).rstrip("/")
        self.currency = (currency or settings.PAYMENT_CURRENCY).upper()
        self.timeout = timeout or settings.PAYMENT_PROVIDER_TIMEOUT_SECONDS

    def is_configured(self) -> bool:
        return bool(self.secret_key)

    def _auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(self.secret_key or "", "")

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

        body = {
            "code": reference,
            "items": [{"amount": amount_cents, "description": title, "quantity": 1, "code": reference}],
            "customer": {
                "name": (customer.name if customer else None) or "Cliente",
                "email": customer.email if customer else None,
                "type": "individual",
            },
            "payments": [
                {
                    "payment_method": "checkout",
                    "amount": amount_cents,
                    "checkout": {
                        "expires_in": 3600,
                        "accepted_payment_methods": ["credit_card", "pix"],
                        "success_url": f"{settings.public_base_url}/success?ref={reference}",
                        "pix": {"expires_in": 3600},
                    },
                }
            ],
            "metadata": {"appointment_id": reference, "notification_url": notification_url},
        }

        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    f"{self.api_url}/orders",
                    auth=self._auth(),
                    json=body,
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            logger.error(f"Pagar.me create_order exception: {e}")
            raise ExternalServiceError(self.name, str(e))

        if resp.status_code not in (200, 201):
            logger.error(f"Pagar.me create_order failed: {resp.status_code} - {resp.text}")
            raise ExternalServiceError(self.name, f"Order creation failed ({resp.status_code})")

        data = resp.json()
        checkouts = data.get("checkouts") or []
        checkout_url = checkouts[0].get("payment_url") if checkouts and isinstance(checkouts[0], dict) else None
        logger.info(f"Pagar.me order created: {data.get('id')} for {reference}")
        return CheckoutResult(order_id=data.get("id"), checkout_url=checkout_url, raw=data)

    async def get_order(self, order_id: str) -> Optional[PagarmeOrder]:
        if not self.is_configured():
            return None
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(
                    f"{self.api_url}/orders/{order_id}",
                    auth=self._auth(),
                    timeout=self.timeout,
                )
                if resp.status_code == 200:
                    return order_from_payload(resp.json())
                logger.warning(f"Pagar.me get_order {order_id} failed: {resp.status_code}")
                return None
        except httpx.HTTPError as e:
            logger.error(f"Pagar.me get_order exception: {e}")
            return None

    async def refund(self, provider_payment_id: str, amount_cents: Optional[int] = None) -> PaymentResult:
        """Cancel (refund) the paid charge of an order."""
        order = await self.get_order(provider_payment_id)
        if order is None:
            return PaymentResult(success=False, error_message=f"Order {provider_payment_id} not found")

        charge = next((c for c in order.charges if c.status in ("paid", "partial_paid") and c.id), None)
        if charge is None:
            return PaymentResult(success=False, error_message="No paid charge to refund")

        body = {"amount": amount_cents} if amount_cents else {}
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.request(
                    "DELETE",
                    f"{self.api_url}/charges/{charge.id}",
                    auth=self._auth(),
                    json=body,
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            logger.error(f"Pagar.me refund exception: {e}")
            return PaymentResult(success=False, charge_id=charge.id, error_message=str(e))

        if resp.status_code == 200:
            logger.info(f"Pagar.me refund successful: charge_id={charge.id}, amount={amount_cents}")
            return PaymentResult(success=True, charge_id=charge.id)

        logger.error(f"Pagar.me refund failed: {resp.status_code} - {resp.text}")
        return PaymentResult(success=False, charge_id=charge.id, error_message=f"Refund failed ({resp.status_code})")

    def verify_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        """Check ``sha1=<hex>`` against the raw body.

        Without a configured secret every delivery is accepted.
        """
        if not self.webhook_secret:
            logger.warning("Pagar.me webhook secret not configured, skipping signature check")
            return True
        if not signature:
            return False

        expected = "sha1=" + hmac.new(self.webhook_secret.encode(), payload, hashlib.sha1).hexdigest()
        return hmac.compare_digest(expected, signature)
