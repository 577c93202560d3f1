import logging
import os
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from fannu.application.booking_service import BookingService
from fannu.application.payment_service import PaymentService
from fannu.domain.clock import utc_now
from fannu.domain.events import ActorType, EventType
from fannu.domain.exceptions import (
    ConflictError,
    QuoteNotActiveError,
    QuoteNotFoundError,
)
from fannu.domain.payments import PaymentStatus
from fannu.domain.quotes import (
    QuoteStatus,
    compute_deposit_amount,
    compute_expires_at,
    is_quote_usable,
    render_terms_text,
    validate_quote_input,
)
from fannu.domain.state_machine import BookingEvent, BookingStateMachine, BookingStatus
from fannu.infrastructure.db.models import Booking, BookingQuote

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "ETB")
DEFAULT_EXPIRY_HOURS = 48


class QuoteService:
    """Issues, re-issues, declines and expires creator quotes."""

    def __init__(self, db: Session):
        self.db = db
        self.bookings = BookingService(db)
        self.quote_repository = self.bookings.quote_repository
        self.payment_repository = self.bookings.payment_repository
        self.creator_repository = self.bookings.creator_repository

    def issue_quote(
        self,
        booking_id: str,
        total_amount: int,
        deposit_percent: Optional[int] = None,
        deposit_refundable: Optional[bool] = None,
        expiry_hours: int = DEFAULT_EXPIRY_HOURS,
        additional_terms: Optional[str] = None,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BookingQuote:
        booking = self.bookings.load_for_update(booking_id)
        creator = self.creator_repository.get_by_id(booking.creator_id)

        if deposit_percent is None:
            deposit_percent = creator.default_deposit_percent
        if deposit_refundable is None:
            deposit_refundable = creator.default_deposit_refundable
        if additional_terms is None:
            additional_terms = creator.default_additional_terms

        validate_quote_input(total_amount, deposit_percent, expiry_hours, additional_terms)

        # Re-quote only while the booker has not acted yet.
        event = (
            BookingEvent.REQUOTE
            if booking.status == BookingStatus.QUOTED
            else BookingEvent.SEND_QUOTE
        )

        # Validate the booking transition before touching any quote row.
        BookingStateMachine.target_for(booking.status, event)

        self._release_pending_deposits(booking, now)

        previous = self.quote_repository.get_active_for_booking(booking.id, lock=True)
        if previous is not None:
            self.quote_repository.update_status(previous, QuoteStatus.SUPERSEDED)
            # The partial unique index must see the old row leave ACTIVE first.
            self.db.flush()

        quote = self.quote_repository.create(
            booking_id=booking.id,
            total_amount=total_amount,
            deposit_percent=deposit_percent,
            deposit_amount=compute_deposit_amount(total_amount, deposit_percent),
            currency=DEFAULT_CURRENCY,
            deposit_refundable=deposit_refundable,
            expires_at=compute_expires_at(expiry_hours, now),
            terms_text=render_terms_text(deposit_refundable, additional_terms),
        )

        metadata = {
            "quote_id": quote.id,
            "amount": quote.total_amount,
            "deposit_amount": quote.deposit_amount,
            "expires_at": quote.expires_at.isoformat(),
        }
        if previous is not None:
            metadata["superseded_quote_id"] = previous.id

        self.bookings.apply_transition(
            booking,
            event,
            EventType.QUOTE_SENT,
            ActorType.CREATOR,
            actor_id,
            metadata=metadata,
        )
        self.bookings.notifications.notify_booker(
            booking,
            EventType.QUOTE_SENT.value,
            {
                "total_amount": quote.total_amount,
                "deposit_amount": quote.deposit_amount,
                "currency": quote.currency,
            },
            dedupe_suffix=quote.id,
        )
        return quote

    def decline_quote(
        self,
        booking_id: str,
        quote_id: str,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BookingQuote:
        """
        The booker turns the quote down. The booking stays QUOTED so the
        creator can send a new one.
        """
        booking = self.bookings.load_for_update(booking_id)
        quote = self.quote_repository.get_for_update(quote_id)
        if quote is None or quote.booking_id != booking.id:
            raise QuoteNotFoundError(quote_id)
        if quote.status != QuoteStatus.ACTIVE:
            raise QuoteNotActiveError(quote.status.value)

        self._release_pending_deposits(booking, now, quote_id=quote.id)

        self.quote_repository.update_status(quote, QuoteStatus.DECLINED)
        self.bookings.event_log.record(
            booking_id=booking.id,
            event_type=EventType.QUOTE_DECLINED,
            actor_type=ActorType.BOOKER,
            actor_id=actor_id,
            metadata={"quote_id": quote.id},
        )
        creator = self.creator_repository.get_by_id(booking.creator_id)
        self.bookings.notifications.notify_creator(
            booking,
            creator.phone,
            EventType.QUOTE_DECLINED.value,
            {"quote_id": quote.id},
            dedupe_suffix=quote.id,
        )
        return quote

    def _release_pending_deposits(
        self,
        booking: Booking,
        now: Optional[datetime] = None,
        quote_id: Optional[str] = None,
    ) -> None:
        """
        A PENDING deposit pins a usable quote. Once its quote can no longer
        be paid, the deposit is failed so the booking can move on.
        """
        for pending in self.payment_repository.list_pending_deposits(booking.id):
            if quote_id is not None and pending.quote_id != quote_id:
                continue

            quote = self.quote_repository.get_for_update(pending.quote_id)
            payment = self.payment_repository.get_for_update(pending.id)
            if payment.status != PaymentStatus.PENDING:
                continue

            if is_quote_usable(quote, now):
                raise ConflictError(
                    "A deposit payment is in progress for the current quote",
                    details={"quote_id": quote.id, "payment_id": payment.id},
                )

            logger.warning(
                "Quote %s can no longer be paid, failing pending deposit %s",
                quote.id,
                payment.id,
            )
            PaymentService(self.db).fail_stale_deposit(booking, payment)

    def get_quote(self, booking_id: str, quote_id: str) -> BookingQuote:
        quote = self.quote_repository.get_by_id(quote_id)
        if quote is None or quote.booking_id != booking_id:
            raise QuoteNotFoundError(quote_id)
        return quote

    def get_active_quote(self, booking_id: str) -> Optional[BookingQuote]:
        self.bookings.get_booking(booking_id)
        return self.quote_repository.get_active_for_booking(booking_id)

    def list_quotes(self, booking_id: str) -> list[BookingQuote]:
        return self.quote_repository.list_for_booking(booking_id)

    def expire_stale_quotes(self, now: Optional[datetime] = None) -> int:
        """
        Relabel ACTIVE quotes past expires_at as EXPIRED.

        Optional housekeeping for list views; checkout checks the timestamp
        itself and does not depend on this having run.
        """
        stale = self.quote_repository.list_stale_active(now or utc_now())
        for quote in stale:
            self.quote_repository.update_status(quote, QuoteStatus.EXPIRED)

        if stale:
            logger.info("Expired %s stale quote(s)", len(stale))
        return len(stale)
