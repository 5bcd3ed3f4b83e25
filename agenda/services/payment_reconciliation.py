"""
Payment reconciliation.

Provider webhooks arrive in loosely shaped JSON. They are parsed once into
the small event variants below; the provider is then asked for the current
state of the order, which is classified into a PaymentStatus. The payment
rows and the appointment status follow from that classification.

Deliveries are retried by providers, so every "cannot act on this" case is
a successful no-op rather than an error.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.config import SchedulingConfig
from agenda.models.appointment import Appointment, AppointmentStatus
from agenda.models.payment import Payment, PaymentStatus, WebhookEvent
from agenda.services.appointment_lifecycle import assert_transition
from agenda.services.payment_totals import get_paid_totals, resolve_deposit_cents
from agenda.services.payments.base import PagarmeOrder, PaymentProvider, StripeSession, as_int

logger = logging.getLogger(__name__)

ReminderHook = Callable[[AsyncSession, str], Awaitable[Any]]


# =========================================================================
# Event variants
# =========================================================================


@dataclass(frozen=True)
class PagarmeOrderEvent:
    event_id: Optional[str]
    event_type: str
    order_id: Optional[str]


@dataclass(frozen=True)
class StripeCheckoutSessionEvent:
    event_id: Optional[str]
    event_type: str
    session_id: Optional[str]
    appointment_id: Optional[str] = None


@dataclass(frozen=True)
class StripePaymentIntentEvent:
    event_id: Optional[str]
    event_type: str
    payment_intent_id: Optional[str]
    appointment_id: Optional[str] = None


@dataclass(frozen=True)
class StripeChargeEvent:
    event_id: Optional[str]
    event_type: str
    payment_intent_id: Optional[str]
    appointment_id: Optional[str] = None


@dataclass(frozen=True)
class UnsupportedEvent:
    event_id: Optional[str]
    event_type: str
    reason: str = "unsupported"


PaymentEvent = Union[
    PagarmeOrderEvent,
    StripeCheckoutSessionEvent,
    StripePaymentIntentEvent,
    StripeChargeEvent,
    UnsupportedEvent,
]


def _str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _event_id(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (str, int)):
        return str(value) or None
    return None


def parse_pagarme_event(payload: Any) -> PaymentEvent:
    body = _dict(payload)
    event_id = _event_id(body.get("id"))
    event_type = _str(body.get("event")) or _str(body.get("type")) or ""
    if not body:
        return UnsupportedEvent(event_id, event_type, reason="empty_payload")

    data = _dict(body.get("data"))
    order_id = (
        _str(data.get("id"))
        or _str(_dict(data.get("order")).get("id"))
        or _str(_dict(body.get("order")).get("id"))
        or _str(body.get("resource_id"))
    )
    return PagarmeOrderEvent(event_id=event_id, event_type=event_type, order_id=order_id)


def parse_stripe_event(payload: Any) -> PaymentEvent:
    body = _dict(payload)
    event_id = _event_id(body.get("id"))
    event_type = _str(body.get("type")) or ""
    obj = _dict(_dict(body.get("data")).get("object"))
    object_type = _str(obj.get("object"))
    appointment_id = _str(_dict(obj.get("metadata")).get("appointment_id"))

    if object_type == "checkout.session":
        return StripeCheckoutSessionEvent(event_id, event_type, _str(obj.get("id")), appointment_id)
    if object_type == "payment_intent":
        return StripePaymentIntentEvent(event_id, event_type, _str(obj.get("id")), appointment_id)
    if object_type == "charge":
        return StripeChargeEvent(event_id, event_type, _str(obj.get("payment_intent")), appointment_id)
    return UnsupportedEvent(event_id, event_type, reason=f"unsupported object {object_type!r}")


EVENT_PARSERS: dict[str, Callable[[Any], PaymentEvent]] = {
    "pagarme": parse_pagarme_event,
    "stripe": parse_stripe_event,
}


# =========================================================================
# Classification
# =========================================================================

PAGARME_PAID = ("paid", "partial_paid")
PAGARME_FAILURE_EVENTS = ("payment_failed", "order.canceled")
STRIPE_FAILURE_EVENTS = (
    "checkout.session.async_payment_failed",
    "checkout.session.expired",
    "payment_intent.payment_failed",
)


def classify_pagarme_order(order: PagarmeOrder, event_type: str = "") -> PaymentStatus:
    """Map a Pagar.me order onto PaymentStatus.

    Refund states win over everything else: canceled charges that had been
    paid mean refunded when no paid charge remains and every canceled charge
    was paid, partially_refunded otherwise.
    """
    paid = [c for c in order.charges if c.status in PAGARME_PAID]
    canceled = [c for c in order.charges if c.status == "canceled"]
    canceled_paid = [c for c in canceled if c.paid_amount > 0]

    if canceled_paid:
        if not paid and len(canceled_paid) == len(canceled):
            return PaymentStatus.refunded
        return PaymentStatus.partially_refunded

    if any(marker in event_type for marker in PAGARME_FAILURE_EVENTS):
        return PaymentStatus.failed

    if paid:
        return PaymentStatus.approved

    if canceled or order.status in ("canceled", "failed"):
        return PaymentStatus.failed

    if order.charges and all(c.status == "failed" for c in order.charges):
        return PaymentStatus.failed

    return PaymentStatus.pending


def classify_stripe_session(session: StripeSession, event_type: str = "") -> Optional[PaymentStatus]:
    """Map a Checkout Session onto PaymentStatus, None when nothing is known yet."""
    captured = sum(c.amount_captured for c in session.charges)
    refunded = sum(c.amount_refunded for c in session.charges)
    if refunded > 0:
        if captured > 0 and refunded >= captured:
            return PaymentStatus.refunded
        return PaymentStatus.partially_refunded

    if session.payment_status == "paid" or session.payment_intent_status == "succeeded":
        return PaymentStatus.approved

    if event_type in STRIPE_FAILURE_EVENTS or session.payment_intent_status in ("requires_payment_method", "canceled"):
        return PaymentStatus.failed

    return None


def classify_order(order: Union[PagarmeOrder, StripeSession], event_type: str) -> Optional[PaymentStatus]:
    if isinstance(order, PagarmeOrder):
        return classify_pagarme_order(order, event_type)
    if isinstance(order, StripeSession):
        return classify_stripe_session(order, event_type)
    raise TypeError(f"Unknown provider order {type(order).__name__}")


def should_confirm(appointment_status: str, paid_total_cents: int, deposit_cents: int) -> bool:
    """A pending appointment confirms once approved payments cover its deposit."""
    return (
        appointment_status == AppointmentStatus.pending.value
        and max(0, paid_total_cents) >= max(0, deposit_cents)
    )


# =========================================================================
# Recording
# =========================================================================


@dataclass
class ReconciliationOutcome:
    payment_status: Optional[str] = None
    appointment_status: Optional[str] = None
    note: Optional[str] = None


@dataclass
class LedgerEntry:
    id: Optional[str] = None
    duplicate: bool = False


async def _find_ledger_entry(db: AsyncSession, provider_name: str, event_id: str) -> Optional[WebhookEvent]:
    result = await db.execute(
        select(WebhookEvent).where(
            WebhookEvent.provider == provider_name,
            WebhookEvent.event_id == event_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _open_ledger_entry(db: AsyncSession, provider_name: str, event_id: str, payload: Any) -> LedgerEntry:
    """Find or append the ledger row for a delivery.

    Only an event that was already applied counts as a duplicate; a row left
    unprocessed by an earlier failed attempt is reused. Any other storage
    failure is logged and the event is processed without a ledger row.
    """
    existing = await _find_ledger_entry(db, provider_name, event_id)
    if existing is not None:
        if existing.processed_at is not None:
            logger.info(f"Duplicate {provider_name} webhook event {event_id}")
            return LedgerEntry(id=existing.id, duplicate=True)
        logger.info(f"Retrying unprocessed {provider_name} webhook event {event_id}")
        return LedgerEntry(id=existing.id)

    entry = WebhookEvent(provider=provider_name, event_id=event_id, payload=payload)
    db.add(entry)
    try:
        await db.commit()
    except IntegrityError:
        # Concurrent delivery of the same event won the insert
        await db.rollback()
        existing = await _find_ledger_entry(db, provider_name, event_id)
        if existing is None or existing.processed_at is not None:
            logger.info(f"Duplicate {provider_name} webhook event {event_id}")
            return LedgerEntry(duplicate=True)
        return LedgerEntry(id=existing.id)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to record {provider_name} webhook event {event_id}: {e}")
        return LedgerEntry()
    return LedgerEntry(id=entry.id)


async def _mark_processed(db: AsyncSession, entry: LedgerEntry) -> None:
    if entry.id is None:
        return
    try:
        await db.execute(
            update(WebhookEvent)
            .where(WebhookEvent.id == entry.id)
            .values(processed_at=datetime.now(timezone.utc))
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to mark webhook event {entry.id} processed: {e}")


async def _resolve_order_id(
    event: PaymentEvent,
    provider: PaymentProvider,
    timeout_seconds: float,
) -> tuple[Optional[str], Optional[str]]:
    """Provider order id and any appointment id the event itself carries."""
    if isinstance(event, PagarmeOrderEvent):
        return event.order_id, None
    if isinstance(event, StripeCheckoutSessionEvent):
        return event.session_id, event.appointment_id
    if isinstance(event, (StripePaymentIntentEvent, StripeChargeEvent)):
        intent_id = event.payment_intent_id
        if not intent_id or not hasattr(provider, "find_session_by_payment_intent"):
            return None, event.appointment_id
        try:
            session_id = await asyncio.wait_for(
                provider.find_session_by_payment_intent(intent_id), timeout=timeout_seconds
            )
        except Exception as e:
            logger.error(f"Session lookup for payment intent {intent_id} failed: {e}")
            return None, event.appointment_id
        return session_id, event.appointment_id
    if isinstance(event, UnsupportedEvent):
        return None, None
    raise TypeError(f"Unknown payment event {type(event).__name__}")


async def record_payment_event(
    db: AsyncSession,
    provider_name: str,
    payload: Any,
    provider: PaymentProvider,
    reminders: Optional[ReminderHook] = None,
    config: Optional[SchedulingConfig] = None,
) -> ReconciliationOutcome:
    """Apply one provider webhook delivery.

    Duplicate deliveries, events without an order id and orders the
    provider cannot return are no-ops. Otherwise the matching payment rows
    take the classified status and a pending appointment whose approved
    total reaches its deposit is confirmed, then reminders are enqueued.

    An event only counts as a duplicate once a delivery of it was applied,
    so a redelivery after a failed lookup is processed normally.
    """
    config = config or SchedulingConfig()
    parser = EVENT_PARSERS.get(provider_name)
    if parser is None:
        return ReconciliationOutcome(note="unknown_provider")

    event = parser(payload)
    if event.event_id:
        ledger = await _open_ledger_entry(db, provider_name, event.event_id, payload)
        if ledger.duplicate:
            return ReconciliationOutcome(note="duplicate_event")
    else:
        ledger = LedgerEntry()
        logger.warning(f"{provider_name} webhook without event id, ledger skipped")

    if isinstance(event, UnsupportedEvent):
        await _mark_processed(db, ledger)
        return ReconciliationOutcome(note=event.reason)

    # From here on a no-op leaves the ledger row unprocessed so a
    # redelivery of the same event is applied.
    order_id, event_appointment_id = await _resolve_order_id(event, provider, config.provider_timeout_seconds)
    if not order_id:
        return ReconciliationOutcome(note="missing_order_id")

    try:
        order = await asyncio.wait_for(provider.get_order(order_id), timeout=config.provider_timeout_seconds)
    except Exception as e:
        logger.error(f"{provider_name} order lookup for {order_id} failed: {e}")
        order = None
    if order is None:
        return ReconciliationOutcome(note="order_not_found")

    new_status = classify_order(order, event.event_type)
    appointment_id = order.appointment_id or event_appointment_id

    payments = await _matching_payments(db, provider_name, order, appointment_id)
    for payment in payments:
        payment.payload = order.raw or payment.payload
        if new_status is not None:
            payment.status = new_status.value
            payment.provider_payment_id = order.id
    await db.commit()

    outcome = ReconciliationOutcome(payment_status=new_status.value if new_status else None)
    if not payments:
        logger.warning(f"No payment row matches {provider_name} order {order.id}")
        outcome.note = "no_matching_payment"
        return outcome

    if new_status == PaymentStatus.approved:
        appointment_id = appointment_id or payments[0].appointment_id
        outcome.appointment_status = await _confirm_if_covered(db, appointment_id, reminders)

    await _mark_processed(db, ledger)
    return outcome


def order_amount_cents(order: Union[PagarmeOrder, StripeSession]) -> int:
    """Amount the provider reports for an order: paid when anything was paid, charged otherwise."""
    if isinstance(order, PagarmeOrder):
        paid = sum(c.paid_amount for c in order.charges)
        return paid if paid > 0 else sum(c.amount for c in order.charges)
    if isinstance(order, StripeSession):
        captured = sum(c.amount_captured for c in order.charges)
        return captured if captured > 0 else as_int(order.raw.get("amount_total"))
    raise TypeError(f"Unknown provider order {type(order).__name__}")


async def _matching_payments(
    db: AsyncSession,
    provider_name: str,
    order: Union[PagarmeOrder, StripeSession],
    appointment_id: Optional[str],
) -> list[Payment]:
    result = await db.execute(select(Payment).where(Payment.provider_payment_id == order.id))
    payments = list(result.scalars().all())
    if payments or not appointment_id:
        return payments

    # Provider id unknown to us, e.g. a retried checkout. Only a single
    # pending row of exactly the order's amount is taken over.
    amount = order_amount_cents(order)
    result = await db.execute(
        select(Payment).where(
            Payment.appointment_id == appointment_id,
            Payment.provider == provider_name,
            Payment.status == PaymentStatus.pending.value,
            Payment.amount_cents == amount,
        )
    )
    candidates = list(result.scalars().all())
    if len(candidates) != 1:
        logger.warning(
            f"{provider_name} order {order.id} ({amount}) matches {len(candidates)} pending payments "
            f"of appointment {appointment_id}, nothing recorded"
        )
        return []
    return candidates


async def _confirm_if_covered(
    db: AsyncSession,
    appointment_id: str,
    reminders: Optional[ReminderHook],
) -> Optional[str]:
    result = await db.execute(
        select(Appointment).where(Appointment.id == appointment_id).with_for_update()
    )
    appointment = result.scalar_one_or_none()
    if appointment is None:
        logger.warning(f"Approved payment references unknown appointment {appointment_id}")
        return None

    deposit = resolve_deposit_cents(appointment.deposit_cents, appointment.legacy_deposit_amount)
    paid = (await get_paid_totals(db, [appointment.id])).get(appointment.id, 0)
    if not should_confirm(appointment.status, paid, deposit):
        return appointment.status

    assert_transition(appointment.status, AppointmentStatus.confirmed.value)
    appointment.status = AppointmentStatus.confirmed.value
    await db.commit()
    logger.info(f"Appointment {appointment_id} confirmed: paid={paid} deposit={deposit}")

    if reminders is not None:
        try:
            await reminders(db, appointment_id)
        except Exception as e:
            await db.rollback()
            logger.error(f"Failed to enqueue reminders for appointment {appointment_id}: {e}")

    return AppointmentStatus.confirmed.value
