import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fannu.application.booking_service import BookingService
from fannu.domain.clock import utc_now
from fannu.domain.events import ActorType, EventType
from fannu.domain.exceptions import (
    ConflictError,
    PaymentMismatchError,
    PaymentNotFoundError,
    QuoteExpiredError,
    QuoteNotActiveError,
    QuoteNotFoundError,
)
from fannu.domain.payments import (
    PaymentOutcome,
    PaymentStateMachine,
    PaymentStatus,
    PaymentType,
)
from fannu.domain.quotes import QuoteStatus, is_expired
from fannu.domain.reference_codes import (
    allocate_code,
    generate_psp_ref,
    generate_receipt_id,
)
from fannu.domain.state_machine import BookingEvent, BookingStateMachine, BookingStatus
from fannu.infrastructure.db.models import Booking, BookingPayment, BookingQuote
from fannu.infrastructure.payments.provider import PaymentProvider, SimulatedPaymentProvider
from fannu.infrastructure.repositories.webhook_repository import WebhookRepository

logger = logging.getLogger(__name__)


def _auto_confirm_enabled() -> bool:
    return os.getenv("BOOKING_AUTO_CONFIRM", "false").lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class PaymentResult:
    payment_id: str
    receipt_id: str
    status: PaymentStatus
    created: bool
    checkout_url: Optional[str] = None


class PaymentService:
    """
    Deposit checkout and payment-to-booking reconciliation.

    Every write for one payment outcome (payment row, quote, booking, log
    entry) happens inside the caller's transaction.
    """

    def __init__(self, db: Session, provider: Optional[PaymentProvider] = None):
        self.db = db
        self.provider = provider or SimulatedPaymentProvider()
        self.bookings = BookingService(db)
        self.payment_repository = self.bookings.payment_repository
        self.quote_repository = self.bookings.quote_repository
        self.webhook_repository = WebhookRepository(db)

    # ---------------------
    # Checkout
    # ---------------------

    def initiate_deposit_payment(
        self,
        booking_id: str,
        quote_id: str,
        now: Optional[datetime] = None,
    ) -> PaymentResult:
        booking = self.bookings.load_for_update(booking_id)
        quote = self.quote_repository.get_for_update(quote_id)
        if quote is None or quote.booking_id != booking.id:
            raise QuoteNotFoundError(quote_id)

        existing = self.payment_repository.get_live_deposit(booking.id, quote.id)
        if existing is not None and existing.status == PaymentStatus.PAID:
            logger.info(
                "Deposit for booking %s / quote %s already paid, returning receipt %s",
                booking.id,
                quote.id,
                existing.receipt_id,
            )
            return self._result(existing, created=False)

        if quote.status != QuoteStatus.ACTIVE:
            raise QuoteNotActiveError(quote.status.value)
        if is_expired(quote.expires_at, now):
            raise QuoteExpiredError(quote.expires_at.isoformat())

        BookingStateMachine.target_for(booking.status, BookingEvent.PAY_DEPOSIT)

        if existing is not None:
            # PENDING: a double click or a retry after a lost response.
            logger.info("Resuming pending deposit %s for booking %s", existing.id, booking.id)
            return self._hand_off(existing, created=False)

        try:
            payment = self.payment_repository.create(
                booking_id=booking.id,
                quote_id=quote.id,
                amount=quote.deposit_amount,
                currency=quote.currency,
                type=PaymentType.DEPOSIT,
                receipt_id=allocate_code(
                    generate_receipt_id,
                    self.payment_repository.receipt_id_exists,
                ),
                psp_ref=generate_psp_ref(),
            )
        except IntegrityError as exc:
            # Lost a race with a concurrent checkout for the same quote.
            self.db.rollback()
            winner = self.payment_repository.get_live_deposit(booking_id, quote_id)
            if winner is None:
                raise ConflictError(
                    "Could not create payment, please retry",
                    details={"booking_id": booking_id, "quote_id": quote_id},
                ) from exc
            logger.warning(
                "Concurrent checkout for booking %s / quote %s, using payment %s",
                booking_id,
                quote_id,
                winner.id,
            )
            return self._result(winner, created=False)

        logger.info(
            "Created deposit payment %s (%s %s) for booking %s",
            payment.id,
            payment.amount,
            payment.currency,
            booking.id,
        )
        return self._hand_off(payment, created=True)

    def _hand_off(self, payment: BookingPayment, created: bool) -> PaymentResult:
        session = self.provider.create_checkout(
            psp_ref=payment.psp_ref,
            amount=payment.amount,
            currency=payment.currency,
            receipt_id=payment.receipt_id,
        )
        if session.outcome is not None:
            payment = self.resolve_payment_outcome(payment.id, session.outcome)
        return self._result(payment, created=created, checkout_url=session.checkout_url)

    @staticmethod
    def _result(
        payment: BookingPayment,
        created: bool,
        checkout_url: Optional[str] = None,
    ) -> PaymentResult:
        return PaymentResult(
            payment_id=payment.id,
            receipt_id=payment.receipt_id,
            status=payment.status,
            created=created,
            checkout_url=checkout_url,
        )

    # ---------------------
    # Reconciliation
    # ---------------------

    def resolve_payment_outcome(
        self,
        payment_id: str,
        outcome: PaymentOutcome,
    ) -> BookingPayment:
        found = self.payment_repository.get_by_id(payment_id)
        if found is None:
            raise PaymentNotFoundError(payment_id)

        # Lock order matches checkout and refunds: booking, quote, payment.
        booking = self.bookings.load_for_update(found.booking_id)
        quote = self.quote_repository.get_for_update(found.quote_id)
        payment = self.payment_repository.get_for_update(payment_id)

        if outcome == PaymentOutcome.SUCCESS:
            return self._apply_success(booking, quote, payment)
        return self._apply_failure(booking, payment)

    def fail_stale_deposit(self, booking: Booking, payment: BookingPayment) -> BookingPayment:
        """
        Give up on a PENDING deposit whose quote expired before the provider
        answered. The caller already holds the booking and payment locks.
        """
        return self._apply_failure(booking, payment, reason="quote_expired")

    def _apply_success(
        self,
        booking: Booking,
        quote: Optional[BookingQuote],
        payment: BookingPayment,
    ) -> BookingPayment:
        if payment.status == PaymentStatus.PAID:
            logger.info("Payment %s already PAID, ignoring repeat success", payment.id)
            return payment

        PaymentStateMachine.validate_transition(payment.status, PaymentStatus.PAID)

        if quote is None:
            raise QuoteNotFoundError(payment.quote_id)
        # Checkout was only allowed on a usable quote, so a quote that
        # expired while the provider was processing is still honoured.
        if quote.status not in (QuoteStatus.ACTIVE, QuoteStatus.EXPIRED):
            raise QuoteNotActiveError(quote.status.value)

        # Guard before any write so a rejected booking leaves the payment PENDING.
        BookingStateMachine.target_for(booking.status, BookingEvent.PAY_DEPOSIT)

        self.payment_repository.update_status(payment, PaymentStatus.PAID)
        payment.paid_at = utc_now()
        self.quote_repository.update_status(quote, QuoteStatus.ACCEPTED)
        self.bookings.apply_transition(
            booking,
            BookingEvent.PAY_DEPOSIT,
            EventType.DEPOSIT_PAID,
            ActorType.SYSTEM,
            metadata={
                "payment_id": payment.id,
                "quote_id": quote.id,
                "amount": payment.amount,
                "currency": payment.currency,
                "receipt_id": payment.receipt_id,
            },
        )
        self.bookings.notifications.notify_booker(
            booking,
            EventType.DEPOSIT_PAID.value,
            {"receipt_id": payment.receipt_id, "amount": payment.amount},
            dedupe_suffix=payment.id,
        )
        creator = self.bookings.creator_repository.get_by_id(booking.creator_id)
        self.bookings.notifications.notify_creator(
            booking,
            creator.phone,
            EventType.DEPOSIT_PAID.value,
            {"amount": payment.amount, "currency": payment.currency},
            dedupe_suffix=payment.id,
        )

        if _auto_confirm_enabled() and booking.status == BookingStatus.DEPOSIT_PAID:
            self.bookings.apply_transition(
                booking,
                BookingEvent.CONFIRM,
                EventType.BOOKING_CONFIRMED,
                ActorType.SYSTEM,
                metadata={"automatic": True},
            )

        logger.info("Payment %s PAID; booking %s is %s", payment.id, booking.id, booking.status.value)
        return payment

    def _apply_failure(
        self,
        booking: Booking,
        payment: BookingPayment,
        reason: Optional[str] = None,
    ) -> BookingPayment:
        if payment.status == PaymentStatus.FAILED:
            logger.info("Payment %s already FAILED, ignoring repeat failure", payment.id)
            return payment

        PaymentStateMachine.validate_transition(payment.status, PaymentStatus.FAILED)

        self.payment_repository.update_status(payment, PaymentStatus.FAILED)
        metadata = {
            "payment_id": payment.id,
            "quote_id": payment.quote_id,
            "psp_ref": payment.psp_ref,
        }
        if reason:
            metadata["reason"] = reason
        self.bookings.event_log.record(
            booking_id=payment.booking_id,
            event_type=EventType.PAYMENT_FAILED,
            actor_type=ActorType.SYSTEM,
            metadata=metadata,
        )
        self.bookings.notifications.notify_booker(
            booking,
            EventType.PAYMENT_FAILED.value,
            {"receipt_id": payment.receipt_id},
            dedupe_suffix=payment.id,
        )

        logger.warning("Payment %s FAILED for booking %s", payment.id, payment.booking_id)
        return payment

    # ---------------------
    # Provider callbacks
    # ---------------------

    def handle_webhook(
        self,
        psp_ref: str,
        outcome: PaymentOutcome,
        amount: Optional[int] = None,
        currency: Optional[str] = None,
    ) -> BookingPayment:
        payment = self.payment_repository.get_by_psp_ref(psp_ref)
        if payment is None:
            logger.warning("Webhook for unknown psp_ref %s", psp_ref)
            raise PaymentNotFoundError(psp_ref)

        if amount is not None and amount != payment.amount:
            raise PaymentMismatchError(
                "Webhook amount does not match payment",
                details={"expected": payment.amount, "received": amount},
            )
        if currency is not None and currency.upper() != payment.currency.upper():
            raise PaymentMismatchError(
                "Webhook currency does not match payment",
                details={"expected": payment.currency, "received": currency},
            )

        return self.resolve_payment_outcome(payment.id, outcome)

    def process_webhook_delivery(
        self,
        provider: str,
        psp_ref: str,
        outcome: PaymentOutcome,
        payload_hash: str,
        amount: Optional[int] = None,
        currency: Optional[str] = None,
    ) -> tuple[BookingPayment, bool]:
        """
        Apply one provider delivery. Returns (payment, duplicate) where
        duplicate is True for a byte-identical redelivery.
        """
        delivered = self.webhook_repository.get_delivery(provider, psp_ref, payload_hash)
        if delivered is not None:
            logger.info("Duplicate webhook delivery for %s ignored", psp_ref)
            return self._payment_for_psp_ref(psp_ref), True

        payment = self.handle_webhook(psp_ref, outcome, amount, currency)
        try:
            self.webhook_repository.record_delivery(
                provider=provider,
                psp_ref=psp_ref,
                outcome=outcome.value,
                payment_id=payment.id,
                booking_id=payment.booking_id,
                payload_hash=payload_hash,
                status="PROCESSED",
            )
        except IntegrityError:
            # A concurrent identical delivery recorded itself first and
            # already applied the outcome.
            self.db.rollback()
            logger.info("Concurrent duplicate webhook delivery for %s ignored", psp_ref)
            return self._payment_for_psp_ref(psp_ref), True
        return payment, False

    def _payment_for_psp_ref(self, psp_ref: str) -> BookingPayment:
        payment = self.payment_repository.get_by_psp_ref(psp_ref)
        if payment is None:
            raise PaymentNotFoundError(psp_ref)
        return payment

    # ---------------------
    # Lookups
    # ---------------------

    def get_by_receipt_id(self, receipt_id: str) -> BookingPayment:
        payment = self.payment_repository.get_by_receipt_id(receipt_id)
        if payment is None:
            raise PaymentNotFoundError(receipt_id)
        return payment

    def list_for_booking(self, booking_id: str) -> list[BookingPayment]:
        return self.payment_repository.list_for_booking(booking_id)
