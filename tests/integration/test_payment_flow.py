# tests/integration/test_payment_flow.py

from datetime import timedelta

import pytest
from sqlalchemy import func, select, update

from fannu.application.booking_service import BookingService
from fannu.application.payment_service import PaymentService
from fannu.application.quote_service import QuoteService
from fannu.domain.clock import utc_now
from fannu.domain.events import ActorType, EventType
from fannu.domain.exceptions import (
    ConflictError,
    InvalidStateTransitionError,
    PaymentMismatchError,
    PaymentNotFoundError,
    QuoteExpiredError,
    QuoteNotActiveError,
    QuoteNotFoundError,
)
from fannu.domain.payments import PaymentOutcome, PaymentStatus
from fannu.domain.quotes import QuoteStatus
from fannu.domain.reference_codes import RECEIPT_ID_PATTERN
from fannu.domain.state_machine import BookingStatus
from fannu.infrastructure.db.models import BookingEventLog, BookingPayment, PaymentWebhookEvent
from fannu.infrastructure.payments.provider import SimulatedPaymentProvider
from fannu.infrastructure.repositories.webhook_repository import WebhookRepository


def _quoted_booking(db, make_booking, **quote_fields):
    booking = make_booking()
    quote_fields.setdefault("total_amount", 30000)
    quote_fields.setdefault("deposit_percent", 30)
    quote = QuoteService(db).issue_quote(booking.id, **quote_fields)
    db.commit()
    return booking, quote


def _count_events(db, booking_id, event_type):
    return db.execute(
        select(func.count(BookingEventLog.id))
        .where(BookingEventLog.booking_id == booking_id)
        .where(BookingEventLog.event_type == event_type.value)
    ).scalar_one()


def _payments(db, booking_id):
    return db.execute(
        select(BookingPayment).where(BookingPayment.booking_id == booking_id)
    ).scalars().all()


# ---------------------
# IDEMPOTENT CHECKOUT
# ---------------------

def test_repeated_checkout_returns_same_receipt(db, make_booking):
    booking, quote = _quoted_booking(db, make_booking)

    first = PaymentService(db).initiate_deposit_payment(booking.id, quote.id)
    db.commit()
    second = PaymentService(db).initiate_deposit_payment(booking.id, quote.id)
    db.commit()

    assert RECEIPT_ID_PATTERN.match(first.receipt_id)
    assert first.receipt_id == second.receipt_id
    assert first.created and not second.created

    payments = _payments(db, booking.id)
    assert len(payments) == 1
    assert payments[0].status == PaymentStatus.PAID
    assert payments[0].amount == 9000
    assert payments[0].paid_at is not None
    assert _count_events(db, booking.id, EventType.DEPOSIT_PAID) == 1


def test_deposit_paid_entry_attributed_to_system(db, make_booking):
    booking, quote = _quoted_booking(db, make_booking)

    result = PaymentService(db).initiate_deposit_payment(booking.id, quote.id)
    db.commit()

    entry = BookingService(db).list_events(booking.id)[-1]
    assert entry.event_type == "deposit_paid"
    assert entry.actor_type == ActorType.SYSTEM
    assert entry.event_metadata["payment_id"] == result.payment_id
    assert entry.event_metadata["quote_id"] == quote.id
    assert entry.event_metadata["from_status"] == "QUOTED"
    assert entry.event_metadata["to_status"] == "DEPOSIT_PAID"


def test_failed_payment_leaves_booking_quoted(db, make_booking, monkeypatch):
    booking, quote = _quoted_booking(db, make_booking)
    monkeypatch.setenv("PAYMENT_SIMULATED_OUTCOME", "failed")

    failed = PaymentService(db).initiate_deposit_payment(booking.id, quote.id)
    db.commit()

    assert failed.status == PaymentStatus.FAILED
    assert booking.status == BookingStatus.QUOTED
    assert quote.status == QuoteStatus.ACTIVE
    assert _count_events(db, booking.id, EventType.PAYMENT_FAILED) == 1

    # Retry against the same quote succeeds with a fresh payment.
    monkeypatch.setenv("PAYMENT_SIMULATED_OUTCOME", "success")
    retry = PaymentService(db).initiate_deposit_payment(booking.id, quote.id)
    db.commit()

    assert retry.status == PaymentStatus.PAID
    assert retry.receipt_id != failed.receipt_id
    assert sorted(p.status for p in _payments(db, booking.id)) == [
        PaymentStatus.FAILED,
        PaymentStatus.PAID,
    ]
    assert booking.status == BookingStatus.DEPOSIT_PAID


def test_auto_confirm(db, make_booking, monkeypatch):
    monkeypatch.setenv("BOOKING_AUTO_CONFIRM", "true")
    booking, quote = _quoted_booking(db, make_booking)

    PaymentService(db).initiate_deposit_payment(booking.id, quote.id)
    db.commit()

    assert booking.status == BookingStatus.CONFIRMED
    assert [e.event_type for e in BookingService(db).list_events(booking.id)][-2:] == [
        "deposit_paid",
        "booking_confirmed",
    ]


# ---------------------
# QUOTE CHECKS
# ---------------------

def test_expired_quote_cannot_be_paid(db, make_booking):
    booking, quote = _quoted_booking(db, make_booking, now=utc_now() - timedelta(hours=49))

    # Still labelled ACTIVE: the sweep has not run.
    assert quote.status == QuoteStatus.ACTIVE
    with pytest.raises(QuoteExpiredError):
        PaymentService(db).initiate_deposit_payment(booking.id, quote.id)
    assert _payments(db, booking.id) == []

    assert QuoteService(db).expire_stale_quotes() == 1
    db.commit()
    assert quote.status == QuoteStatus.EXPIRED
    with pytest.raises(QuoteNotActiveError):
        PaymentService(db).initiate_deposit_payment(booking.id, quote.id)


def test_superseded_quote_cannot_be_paid(db, make_booking):
    booking, first = _quoted_booking(db, make_booking)
    QuoteService(db).issue_quote(booking.id, total_amount=28000)
    db.commit()

    with pytest.raises(QuoteNotActiveError) as exc_info:
        PaymentService(db).initiate_deposit_payment(booking.id, first.id)

    assert exc_info.value.code == "QUOTE_NOT_ACTIVE"
    assert isinstance(exc_info.value, InvalidStateTransitionError)


def test_quote_from_other_booking(db, make_booking):
    booking, _ = _quoted_booking(db, make_booking)
    _, other_quote = _quoted_booking(db, make_booking)

    with pytest.raises(QuoteNotFoundError):
        PaymentService(db).initiate_deposit_payment(booking.id, other_quote.id)


# ---------------------
# WEBHOOKS
# ---------------------

def _deferred_checkout(db, booking, quote):
    service = PaymentService(db, provider=SimulatedPaymentProvider("deferred"))
    result = service.initiate_deposit_payment(booking.id, quote.id)
    db.commit()
    return db.get(BookingPayment, result.payment_id)


def test_deferred_checkout_is_resumed_not_duplicated(db, make_booking):
    booking, quote = _quoted_booking(db, make_booking)

    payment = _deferred_checkout(db, booking, quote)
    again = PaymentService(
        db,
        provider=SimulatedPaymentProvider("deferred"),
    ).initiate_deposit_payment(booking.id, quote.id)
    db.commit()

    assert payment.status == PaymentStatus.PENDING
    assert again.payment_id == payment.id
    assert not again.created
    assert len(_payments(db, booking.id)) == 1


def test_requote_blocked_while_deposit_pending(db, make_booking):
    booking, quote = _quoted_booking(db, make_booking)
    _deferred_checkout(db, booking, quote)

    with pytest.raises(ConflictError):
        QuoteService(db).issue_quote(booking.id, total_amount=25000)


def _failure_reasons(db, booking_id):
    entries = db.execute(
        select(BookingEventLog)
        .where(BookingEventLog.booking_id == booking_id)
        .where(BookingEventLog.event_type == EventType.PAYMENT_FAILED.value)
    ).scalars().all()
    return [entry.event_metadata.get("reason") for entry in entries]


def test_requote_after_expiry_fails_pending_deposit(db, make_booking):
    booking, quote = _quoted_booking(db, make_booking)
    payment = _deferred_checkout(db, booking, quote)
    later = utc_now() + timedelta(hours=49)

    with pytest.raises(QuoteExpiredError):
        PaymentService(db).initiate_deposit_payment(booking.id, quote.id, now=later)
    db.rollback()

    fresh = QuoteService(db).issue_quote(booking.id, total_amount=25000, now=later)
    db.commit()

    assert quote.status == QuoteStatus.SUPERSEDED
    assert fresh.status == QuoteStatus.ACTIVE
    assert payment.status == PaymentStatus.FAILED
    assert booking.status == BookingStatus.QUOTED
    assert _failure_reasons(db, booking.id) == ["quote_expired"]

    # The provider confirming the abandoned attempt late changes nothing.
    with pytest.raises(InvalidStateTransitionError):
        PaymentService(db).handle_webhook(payment.psp_ref, PaymentOutcome.SUCCESS)
    db.rollback()
    assert fresh.status == QuoteStatus.ACTIVE
    assert _count_events(db, booking.id, EventType.DEPOSIT_PAID) == 0


def test_requote_after_sweep_fails_pending_deposit(db, make_booking):
    booking, quote = _quoted_booking(db, make_booking)
    payment = _deferred_checkout(db, booking, quote)
    later = utc_now() + timedelta(hours=49)

    QuoteService(db).expire_stale_quotes(now=later)
    db.commit()
    assert quote.status == QuoteStatus.EXPIRED

    fresh = QuoteService(db).issue_quote(booking.id, total_amount=25000, now=later)
    db.commit()

    assert fresh.status == QuoteStatus.ACTIVE
    assert quote.status == QuoteStatus.EXPIRED
    assert payment.status == PaymentStatus.FAILED

    # The new quote can be paid normally.
    result = PaymentService(db).initiate_deposit_payment(booking.id, fresh.id, now=later)
    db.commit()
    assert result.created
    assert booking.status == BookingStatus.DEPOSIT_PAID


def test_decline_expired_quote_releases_pending_deposit(db, make_booking):
    booking, quote = _quoted_booking(db, make_booking)
    payment = _deferred_checkout(db, booking, quote)

    QuoteService(db).decline_quote(
        booking.id,
        quote.id,
        now=utc_now() + timedelta(hours=49),
    )
    db.commit()

    assert quote.status == QuoteStatus.DECLINED
    assert payment.status == PaymentStatus.FAILED
    assert booking.status == BookingStatus.QUOTED


def test_decline_blocked_while_deposit_pending(db, make_booking):
    booking, quote = _quoted_booking(db, make_booking)
    payment = _deferred_checkout(db, booking, quote)

    with pytest.raises(ConflictError):
        QuoteService(db).decline_quote(booking.id, quote.id)
    db.rollback()

    assert quote.status == QuoteStatus.ACTIVE
    assert payment.status == PaymentStatus.PENDING


def test_webhook_success_and_redelivery(db, make_booking):
    booking, quote = _quoted_booking(db, make_booking)
    payment = _deferred_checkout(db, booking, quote)

    service = PaymentService(db)
    _, duplicate = service.process_webhook_delivery(
        provider="SIMULATED",
        psp_ref=payment.psp_ref,
        outcome=PaymentOutcome.SUCCESS,
        payload_hash="hash-1",
        amount=9000,
        currency="ETB",
    )
    db.commit()
    assert not duplicate
    assert payment.status == PaymentStatus.PAID
    assert booking.status == BookingStatus.DEPOSIT_PAID

    _, duplicate = service.process_webhook_delivery(
        provider="SIMULATED",
        psp_ref=payment.psp_ref,
        outcome=PaymentOutcome.SUCCESS,
        payload_hash="hash-1",
    )
    db.commit()
    assert duplicate

    # A different body for the same payment is applied but has no effect.
    service.handle_webhook(payment.psp_ref, PaymentOutcome.SUCCESS)
    db.commit()
    assert _count_events(db, booking.id, EventType.DEPOSIT_PAID) == 1


def test_concurrent_identical_delivery_reported_as_duplicate(db, make_booking, monkeypatch):
    booking, quote = _quoted_booking(db, make_booking)
    payment = _deferred_checkout(db, booking, quote)
    delivery = dict(
        provider="SIMULATED",
        psp_ref=payment.psp_ref,
        outcome=PaymentOutcome.SUCCESS,
        payload_hash="hash-race",
        amount=9000,
        currency="ETB",
    )

    PaymentService(db).process_webhook_delivery(**delivery)
    db.commit()

    # The second request checked the ledger before the first one committed.
    monkeypatch.setattr(WebhookRepository, "get_delivery", lambda self, *args: None)
    returned, duplicate = PaymentService(db).process_webhook_delivery(**delivery)
    db.commit()

    assert duplicate
    assert returned.id == payment.id
    assert returned.status == PaymentStatus.PAID
    assert _count_events(db, booking.id, EventType.DEPOSIT_PAID) == 1
    ledger = db.execute(
        select(func.count(PaymentWebhookEvent.id))
        .where(PaymentWebhookEvent.psp_ref == payment.psp_ref)
    ).scalar_one()
    assert ledger == 1


def test_locked_read_sees_status_written_elsewhere(db, make_booking):
    booking, quote = _quoted_booking(db, make_booking)
    payment = _deferred_checkout(db, booking, quote)
    assert payment.status == PaymentStatus.PENDING

    # Another transaction failed the payment; this session still holds PENDING.
    db.connection().execute(
        update(BookingPayment.__table__)
        .where(BookingPayment.__table__.c.id == payment.id)
        .values(status=PaymentStatus.FAILED)
    )

    with pytest.raises(InvalidStateTransitionError):
        PaymentService(db).handle_webhook(payment.psp_ref, PaymentOutcome.SUCCESS)
    db.rollback()

    assert booking.status == BookingStatus.QUOTED
    assert _count_events(db, booking.id, EventType.DEPOSIT_PAID) == 0


def test_webhook_after_sweep_still_honoured(db, make_booking):
    booking, quote = _quoted_booking(db, make_booking)
    payment = _deferred_checkout(db, booking, quote)

    QuoteService(db).expire_stale_quotes(now=utc_now() + timedelta(hours=49))
    db.commit()
    assert quote.status == QuoteStatus.EXPIRED

    PaymentService(db).handle_webhook(payment.psp_ref, PaymentOutcome.SUCCESS)
    db.commit()

    assert quote.status == QuoteStatus.ACCEPTED
    assert booking.status == BookingStatus.DEPOSIT_PAID


def test_webhook_amount_mismatch(db, make_booking):
    booking, quote = _quoted_booking(db, make_booking)
    payment = _deferred_checkout(db, booking, quote)

    with pytest.raises(PaymentMismatchError):
        PaymentService(db).handle_webhook(payment.psp_ref, PaymentOutcome.SUCCESS, amount=1)
    with pytest.raises(PaymentMismatchError):
        PaymentService(db).handle_webhook(
            payment.psp_ref,
            PaymentOutcome.SUCCESS,
            amount=9000,
            currency="USD",
        )

    assert payment.status == PaymentStatus.PENDING


def test_webhook_unknown_psp_ref(db):
    with pytest.raises(PaymentNotFoundError):
        PaymentService(db).handle_webhook("TXN-UNKNOWN000", PaymentOutcome.SUCCESS)


def test_webhook_failure_then_late_success_rejected(db, make_booking):
    booking, quote = _quoted_booking(db, make_booking)
    payment = _deferred_checkout(db, booking, quote)

    service = PaymentService(db)
    service.handle_webhook(payment.psp_ref, PaymentOutcome.FAILED)
    db.commit()
    assert payment.status == PaymentStatus.FAILED

    with pytest.raises(InvalidStateTransitionError):
        service.handle_webhook(payment.psp_ref, PaymentOutcome.SUCCESS)


def test_success_for_cancelled_booking_leaves_payment_pending(db, make_booking):
    booking, quote = _quoted_booking(db, make_booking)
    payment = _deferred_checkout(db, booking, quote)
    BookingService(db).cancel(booking.id, "Venue fell through last minute", ActorType.BOOKER)
    db.commit()

    with pytest.raises(InvalidStateTransitionError):
        PaymentService(db).handle_webhook(payment.psp_ref, PaymentOutcome.SUCCESS)
    db.rollback()

    assert payment.status == PaymentStatus.PENDING
    assert booking.status == BookingStatus.CANCELLED
    assert _count_events(db, booking.id, EventType.DEPOSIT_PAID) == 0
