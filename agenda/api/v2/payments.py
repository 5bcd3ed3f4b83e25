"""
Payment checkout endpoint.
"""

import logging

from fastapi import APIRouter

from agenda.api.deps import Config, CurrentCustomerId, DbSession, ProviderLookup
from agenda.exceptions import ValidationError
from agenda.schemas.payment import CheckoutCreate, CheckoutResponse
from agenda.services.checkout_service import create_payment_checkout

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/create", response_model=CheckoutResponse)
async def create_checkout(
    db: DbSession,
    config: Config,
    customer_id: CurrentCustomerId,
    providers: ProviderLookup,
    payload: CheckoutCreate,
) -> CheckoutResponse:
    """
    Start a checkout for the deposit, the remaining balance or the full price.

    An open checkout for the same amount is handed back instead of creating
    a new one.
    """
    provider = providers(payload.provider)
    if provider is None:
        raise ValidationError(f"Unknown payment provider: {payload.provider}", reason="invalid_provider")

    session = await create_payment_checkout(
        db,
        appointment_id=payload.appointment_id,
        customer_id=customer_id,
        mode=payload.mode,
        provider=provider,
        config=config,
    )
    return CheckoutResponse(
        payment_id=session.payment_id,
        provider=session.provider,
        order_id=session.order_id,
        amount_cents=session.amount_cents,
        checkout_url=session.checkout_url,
        client_secret=session.client_secret,
        reused=session.reused,
    )
