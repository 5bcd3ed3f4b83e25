"""
Tests for webhook parsing, order classification and payment reconciliation.
"""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agenda.config import SchedulingConfig
from agenda.models.appointment import Appointment
from agenda.models.payment import Payment, PaymentStatus, WebhookEvent
from agenda.services.payment_reconciliation import (
    PagarmeOrderEvent,
    StripeChargeEvent,
    StripeCheckoutSessionEvent,
    UnsupportedEvent,
    classify_pagarme_order,
    classify_stripe_session,
    parse_pagarme_event,
    parse_stripe_event,
    record_payment_event,
    should_confirm,
)
from agenda.services.payment_totals import get_paid_totals
from agenda.services.payments.base import (
    PagarmeCharge,
    PagarmeOrder,
    StripeChargeSnapshot,
    StripeSession,
)

from factories import AppointmentFactory, PaymentFactory, make_provider, seed_booking

CONFIG = SchedulingConfig(provider_timeout_seconds=0.5)


def pagarme_order(*charges, status="pending", order_id="or_1", appointment_id=None):
    return PagarmeOrder(
        id=order_id,
        status=status,
        charges=tuple(PagarmeCharge(id=f"ch_{i}", status=s, amount=a, paid_amount=p) for i, (s, a, p) in enumerate(charges)),
        appointment_id=appointment_id,
        raw={"id": order_id, "status": status},
    )


class TestEventParsing:
    def test_pagarme_order_id_locations(self):
        assert parse_pagarme_event({"id": "hook_1", "type": "order.paid", "data": {"id": "or_1"}}).order_id == "or_1"
        assert parse_pagarme_event({"id": "hook_2", "data": {"order": {"id": "or_2"}}}).order_id == "or_2"
        assert parse_pagarme_event({"id": "hook_3", "order": {"id": "or_3"}}).order_id == "or_3"

    def test_pagarme_empty_payload(self):
        assert isinstance(parse_pagarme_event({}), UnsupportedEvent)
        assert isinstance(parse_pagarme_event("not a dict"), UnsupportedEvent)

    def test_pagarme_numeric_event_id(self):
        event = parse_pagarme_event({"id": 42, "type": "charge.paid", "data": {"id": "or_1"}})
        assert isinstance(event, PagarmeOrderEvent)
        assert event.event_id == "42"

    def test_stripe_checkout_session(self):
        event = parse_stripe_event({
            "id": "evt_1",
            "type": "checkout.session.completed",
            "data": {"object": {"object": "checkout.session", "id": "cs_1", "metadata": {"appointment_id": "ap_1"}}},
        })
        assert event == StripeCheckoutSessionEvent("evt_1", "checkout.session.completed", "cs_1", "ap_1")

    def test_stripe_charge_points_at_intent(self):
        event = parse_stripe_event({
            "id": "evt_2",
            "type": "charge.refunded",
            "data": {"object": {"object": "charge", "id": "ch_1", "payment_intent": "pi_1"}},
        })
        assert isinstance(event, StripeChargeEvent)
        assert event.payment_intent_id == "pi_1"

    def test_stripe_unknown_object(self):
        event = parse_stripe_event({"id": "evt_3", "type": "customer.created", "data": {"object": {"object": "customer"}}})
        assert isinstance(event, UnsupportedEvent)


class TestClassifyPagarmeOrder:
    def test_paid(self):
        assert classify_pagarme_order(pagarme_order(("paid", 3000, 3000))) == PaymentStatus.approved

    def test_partial_paid_is_approved(self):
        assert classify_pagarme_order(pagarme_order(("partial_paid", 3000, 1000))) == PaymentStatus.approved

    def test_pending(self):
        assert classify_pagarme_order(pagarme_order(("pending", 3000, 0))) == PaymentStatus.pending

    def test_all_failed(self):
        order = pagarme_order(("failed", 3000, 0), ("failed", 3000, 0))
        assert classify_pagarme_order(order) == PaymentStatus.failed

    def test_canceled_order(self):
        assert classify_pagarme_order(pagarme_order(status="canceled")) == PaymentStatus.failed

    def test_failure_event_overrides_paid_charge(self):
        order = pagarme_order(("paid", 3000, 3000))
        assert classify_pagarme_order(order, "order.payment_failed") == PaymentStatus.failed

    def test_refunded(self):
        assert classify_pagarme_order(pagarme_order(("canceled", 3000, 3000))) == PaymentStatus.refunded

    def test_partially_refunded(self):
        order = pagarme_order(("canceled", 3000, 3000), ("paid", 2000, 2000))
        assert classify_pagarme_order(order) == PaymentStatus.partially_refunded


class TestClassifyStripeSession:
    def test_paid(self):
        session = StripeSession(id="cs_1", payment_status="paid")
        assert classify_stripe_session(session) == PaymentStatus.approved

    def test_unknown_yet(self):
        session = StripeSession(id="cs_1", payment_status="unpaid", payment_intent_status="processing")
        assert classify_stripe_session(session) is None

    def test_expired(self):
        session = StripeSession(id="cs_1", payment_status="unpaid")
        assert classify_stripe_session(session, "checkout.session.expired") == PaymentStatus.failed

    def test_refunds(self):
        full = StripeSession(id="cs_1", payment_status="paid", charges=(StripeChargeSnapshot("ch", 3000, 3000),))
        partial = StripeSession(id="cs_1", payment_status="paid", charges=(StripeChargeSnapshot("ch", 3000, 1000),))
        assert classify_stripe_session(full) == PaymentStatus.refunded
        assert classify_stripe_session(partial) == PaymentStatus.partially_refunded


class TestShouldConfirm:
    def test_rules(self):
        assert should_confirm("pending", 3000, 3000)
        assert not should_confirm("pending", 2999, 3000)
        assert not should_confirm("canceled", 5000, 3000)
        assert should_confirm("pending", 0, 0)


async def _appointment_with_checkout(db: AsyncSession, provider: str = "pagarme", order_id: str = "or_1"):
    setup = await seed_booking(db)
    appointment = AppointmentFactory(
        branch_id=setup["branch"].id,
        customer_id=setup["customer"].id,
        staff_id=setup["staff"].id,
        deposit_cents=3000,
    )
    db.add(appointment)
    await db.flush()
    payment = PaymentFactory(
        appointment_id=appointment.id,
        provider=provider,
        provider_payment_id=order_id,
        status="pending",
        amount_cents=3000,
    )
    db.add(payment)
    await db.commit()
    return appointment, payment


class TestRecordPaymentEvent:
    @pytest.mark.asyncio
    async def test_paid_order_confirms_and_enqueues_reminders(self, test_db: AsyncSession):
        appointment, payment = await _appointment_with_checkout(test_db)
        provider = make_provider("pagarme", order=pagarme_order(("paid", 3000, 3000)))
        reminders = AsyncMock()

        outcome = await record_payment_event(
            test_db, "pagarme", {"id": "hook_1", "type": "order.paid", "data": {"id": "or_1"}},
            provider, reminders=reminders, config=CONFIG,
        )

        assert outcome.payment_status == "approved"
        assert outcome.appointment_status == "confirmed"
        assert (await test_db.get(Payment, payment.id)).status == "approved"
        assert (await test_db.get(Appointment, appointment.id)).status == "confirmed"
        reminders.assert_awaited_once_with(test_db, appointment.id)

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_a_noop(self, test_db: AsyncSession):
        await _appointment_with_checkout(test_db)
        provider = make_provider("pagarme", order=pagarme_order(("paid", 3000, 3000)))
        payload = {"id": "hook_1", "type": "order.paid", "data": {"id": "or_1"}}

        await record_payment_event(test_db, "pagarme", payload, provider, config=CONFIG)
        outcome = await record_payment_event(test_db, "pagarme", payload, provider, config=CONFIG)

        assert outcome.note == "duplicate_event"
        assert provider.get_order.await_count == 1
        ledger = (await test_db.execute(select(WebhookEvent))).scalars().all()
        assert len(ledger) == 1

    @pytest.mark.asyncio
    async def test_partial_payment_does_not_confirm(self, test_db: AsyncSession):
        appointment, payment = await _appointment_with_checkout(test_db)
        payment.amount_cents = 1000
        await test_db.commit()
        provider = make_provider("pagarme", order=pagarme_order(("paid", 1000, 1000)))

        outcome = await record_payment_event(
            test_db, "pagarme", {"id": "hook_1", "data": {"id": "or_1"}}, provider, config=CONFIG,
        )

        assert outcome.payment_status == "approved"
        assert outcome.appointment_status == "pending"

    @pytest.mark.asyncio
    async def test_missing_order_id(self, test_db: AsyncSession):
        provider = make_provider("pagarme")
        outcome = await record_payment_event(
            test_db, "pagarme", {"id": "hook_1", "type": "order.paid", "data": {}}, provider, config=CONFIG,
        )
        assert outcome.note == "missing_order_id"
        provider.get_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_order_not_found_upstream(self, test_db: AsyncSession):
        appointment, _ = await _appointment_with_checkout(test_db)
        provider = make_provider("pagarme", order=None)

        outcome = await record_payment_event(
            test_db, "pagarme", {"id": "hook_1", "data": {"id": "or_1"}}, provider, config=CONFIG,
        )

        assert outcome.note == "order_not_found"
        assert (await test_db.get(Appointment, appointment.id)).status == "pending"

    @pytest.mark.asyncio
    async def test_provider_lookup_error_is_a_noop(self, test_db: AsyncSession):
        await _appointment_with_checkout(test_db)
        provider = make_provider("pagarme")
        provider.get_order = AsyncMock(side_effect=RuntimeError("boom"))

        outcome = await record_payment_event(
            test_db, "pagarme", {"id": "hook_1", "data": {"id": "or_1"}}, provider, config=CONFIG,
        )
        assert outcome.note == "order_not_found"

    @pytest.mark.asyncio
    async def test_failed_order_marks_payment_failed(self, test_db: AsyncSession):
        appointment, payment = await _appointment_with_checkout(test_db)
        provider = make_provider("pagarme", order=pagarme_order(("failed", 3000, 0)))

        outcome = await record_payment_event(
            test_db, "pagarme", {"id": "hook_1", "type": "charge.payment_failed", "data": {"id": "or_1"}},
            provider, config=CONFIG,
        )

        assert outcome.payment_status == "failed"
        assert outcome.appointment_status is None
        assert (await test_db.get(Payment, payment.id)).status == "failed"
        assert (await test_db.get(Appointment, appointment.id)).status == "pending"

    @pytest.mark.asyncio
    async def test_unknown_order_id_falls_back_to_pending_payment(self, test_db: AsyncSession):
        appointment, payment = await _appointment_with_checkout(test_db, order_id="or_old")
        full = PaymentFactory(
            appointment_id=appointment.id,
            provider="pagarme",
            provider_payment_id="or_full",
            kind="full",
            status="pending",
            amount_cents=10000,
        )
        test_db.add(full)
        await test_db.commit()
        order = pagarme_order(("paid", 3000, 3000), order_id="or_retry", appointment_id=appointment.id)
        provider = make_provider("pagarme", order=order)

        outcome = await record_payment_event(
            test_db, "pagarme", {"id": "hook_9", "data": {"id": "or_retry"}}, provider, config=CONFIG,
        )

        assert outcome.appointment_status == "confirmed"
        matched = await test_db.get(Payment, payment.id)
        assert matched.status == "approved"
        assert matched.provider_payment_id == "or_retry"
        assert (await test_db.get(Payment, full.id)).status == "pending"
        paid = (await get_paid_totals(test_db, [appointment.id]))[appointment.id]
        assert paid == 3000

    @pytest.mark.asyncio
    async def test_unknown_order_id_with_ambiguous_pending_payments(self, test_db: AsyncSession):
        appointment, payment = await _appointment_with_checkout(test_db, order_id="or_a")
        other = PaymentFactory(
            appointment_id=appointment.id,
            provider="pagarme",
            provider_payment_id="or_b",
            status="pending",
            amount_cents=3000,
        )
        test_db.add(other)
        await test_db.commit()
        order = pagarme_order(("paid", 3000, 3000), order_id="or_other", appointment_id=appointment.id)
        provider = make_provider("pagarme", order=order)

        outcome = await record_payment_event(
            test_db, "pagarme", {"id": "hook_10", "data": {"id": "or_other"}}, provider, config=CONFIG,
        )

        assert outcome.note == "no_matching_payment"
        assert outcome.appointment_status is None
        statuses = (await test_db.execute(select(Payment.status))).scalars().all()
        assert statuses == ["pending", "pending"]
        assert (await test_db.get(Appointment, appointment.id)).status == "pending"

    @pytest.mark.asyncio
    async def test_redelivery_after_failed_lookup_is_applied(self, test_db: AsyncSession):
        appointment, payment = await _appointment_with_checkout(test_db)
        payload = {"id": "hook_1", "type": "order.paid", "data": {"id": "or_1"}}
        flaky = make_provider("pagarme")
        flaky.get_order = AsyncMock(side_effect=RuntimeError("503 from provider"))
        healthy = make_provider("pagarme", order=pagarme_order(("paid", 3000, 3000)))

        first = await record_payment_event(test_db, "pagarme", payload, flaky, config=CONFIG)
        second = await record_payment_event(test_db, "pagarme", payload, healthy, config=CONFIG)
        third = await record_payment_event(test_db, "pagarme", payload, healthy, config=CONFIG)

        assert first.note == "order_not_found"
        assert second.appointment_status == "confirmed"
        assert third.note == "duplicate_event"
        assert healthy.get_order.await_count == 1
        assert (await test_db.get(Appointment, appointment.id)).status == "confirmed"
        ledger = (await test_db.execute(select(WebhookEvent))).scalar_one()
        assert ledger.processed_at is not None

    @pytest.mark.asyncio
    async def test_stripe_checkout_completed(self, test_db: AsyncSession):
        appointment, payment = await _appointment_with_checkout(test_db, provider="stripe", order_id="cs_1")
        session = StripeSession(id="cs_1", payment_status="paid", appointment_id=appointment.id)
        provider = make_provider("stripe", order=session)

        outcome = await record_payment_event(
            test_db,
            "stripe",
            {
                "id": "evt_1",
                "type": "checkout.session.completed",
                "data": {"object": {"object": "checkout.session", "id": "cs_1"}},
            },
            provider,
            config=CONFIG,
        )

        provider.get_order.assert_awaited_once_with("cs_1")
        assert outcome.appointment_status == "confirmed"

    @pytest.mark.asyncio
    async def test_stripe_refund_via_charge_event(self, test_db: AsyncSession):
        appointment, payment = await _appointment_with_checkout(test_db, provider="stripe", order_id="cs_1")
        payment.status = "approved"
        await test_db.commit()
        session = StripeSession(
            id="cs_1", payment_status="paid", charges=(StripeChargeSnapshot("ch_1", 3000, 3000),),
        )
        provider = make_provider("stripe", order=session)
        provider.find_session_by_payment_intent = AsyncMock(return_value="cs_1")

        outcome = await record_payment_event(
            test_db,
            "stripe",
            {
                "id": "evt_2",
                "type": "charge.refunded",
                "data": {"object": {"object": "charge", "id": "ch_1", "payment_intent": "pi_1"}},
            },
            provider,
            config=CONFIG,
        )

        provider.find_session_by_payment_intent.assert_awaited_once_with("pi_1")
        assert outcome.payment_status == "refunded"
        assert (await test_db.get(Payment, payment.id)).status == "refunded"

    @pytest.mark.asyncio
    async def test_reminder_failure_keeps_confirmation(self, test_db: AsyncSession):
        appointment, _ = await _appointment_with_checkout(test_db)
        provider = make_provider("pagarme", order=pagarme_order(("paid", 3000, 3000)))
        reminders = AsyncMock(side_effect=RuntimeError("queue down"))

        outcome = await record_payment_event(
            test_db, "pagarme", {"id": "hook_1", "data": {"id": "or_1"}}, provider,
            reminders=reminders, config=CONFIG,
        )

        assert outcome.appointment_status == "confirmed"
        status = (await test_db.execute(select(Appointment.status).where(Appointment.id == appointment.id))).scalar_one()
        assert status == "confirmed"

    @pytest.mark.asyncio
    async def test_unknown_provider(self, test_db: AsyncSession):
        outcome = await record_payment_event(test_db, "paypal", {"id": "x"}, make_provider("paypal"), config=CONFIG)
        assert outcome.note == "unknown_provider"
