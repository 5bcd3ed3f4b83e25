"""
Payment provider webhooks.

Both providers retry on anything but 2xx, so a delivery that was received
and understood is always acknowledged with 200, even when it was a no-op
(duplicate, unknown order). Signature failures answer 401 and unparseable
bodies 422.
"""

import json
import logging
from functools import partial
from typing import Optional

from fastapi import APIRouter, Request
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.api.deps import Config, DbSession, ProviderLookup
from agenda.config import SchedulingConfig
from agenda.exceptions import UnauthorizedError, ValidationError
from agenda.schemas.payment import WebhookAck
from agenda.services.payment_reconciliation import record_payment_event
from agenda.services.payments import PaymentProvider
from agenda.services.reminder_service import enqueue_default_reminders

logger = logging.getLogger(__name__)

payments_webhook_router = APIRouter()


async def _handle_delivery(
    db: AsyncSession,
    provider_name: str,
    provider: Optional[PaymentProvider],
    body: bytes,
    signature: Optional[str],
    config: SchedulingConfig,
) -> WebhookAck:
    if provider is None:
        logger.error(f"{provider_name} webhook received but provider is not configured")
        raise ValidationError(f"Payment provider not available: {provider_name}", reason="invalid_provider")

    if not provider.verify_signature(body, signature):
        logger.warning(f"Rejected {provider_name} webhook with invalid signature")
        raise UnauthorizedError("Invalid webhook signature")

    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise ValidationError("Webhook body is not valid JSON", reason="invalid_payload")
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object", reason="invalid_payload")

    outcome = await record_payment_event(
        db,
        provider_name,
        payload,
        provider,
        reminders=partial(enqueue_default_reminders, config=config),
        config=config,
    )
    logger.info(
        f"{provider_name} webhook processed: payment={outcome.payment_status} "
        f"appointment={outcome.appointment_status} note={outcome.note}"
    )
    return WebhookAck(
        note=outcome.note,
        payment_status=outcome.payment_status,
        appointment_status=outcome.appointment_status,
    )


@payments_webhook_router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(request: Request, db: DbSession, config: Config, providers: ProviderLookup):
    """Stripe events: checkout.session.*, payment_intent.*, charge.refunded."""
    body = await request.body()
    return await _handle_delivery(
        db, "stripe", providers("stripe"), body, request.headers.get("stripe-signature"), config
    )


@payments_webhook_router.post("/pagarme", response_model=WebhookAck)
async def pagarme_webhook(request: Request, db: DbSession, config: Config, providers: ProviderLookup):
    """Pagar.me order and charge events."""
    body = await request.body()
    signature = request.headers.get("x-hub-signature") or request.headers.get("x-pagarme-signature")
    return await _handle_delivery(db, "pagarme", providers("pagarme"), body, signature, config)
