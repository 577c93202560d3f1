import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from fannu.application.booking_service import BookingService
from fannu.domain.clock import utc_now
from fannu.domain.events import (
    ActorType,
    EventType,
    override_event_type,
    transition_metadata,
)
from fannu.domain.exceptions import InvalidStateTransitionError, ValidationError
from fannu.domain.payments import PaymentStateMachine, PaymentStatus, PaymentType
from fannu.domain.state_machine import BookingEvent, BookingStateMachine, BookingStatus
from fannu.infrastructure.db.models import Booking, BookingPayment

logger = logging.getLogger(__name__)

MAX_ADMIN_NOTES_LENGTH = 5000


class AdminService:
    """
    Privileged booking operations. Every call here is attributed to an
    ADMIN actor in the event log.
    """

    def __init__(self, db: Session):
        self.db = db
        self.bookings = BookingService(db)
        self.payment_repository = self.bookings.payment_repository

    def open_dispute(
        self,
        booking_id: str,
        reason: str,
        admin_id: Optional[str] = None,
    ) -> Booking:
        return self.bookings.open_dispute(booking_id, reason, ActorType.ADMIN, admin_id)

    def resolve_dispute(
        self,
        booking_id: str,
        admin_id: Optional[str] = None,
        resolution: BookingStatus = BookingStatus.CONFIRMED,
        note: Optional[str] = None,
    ) -> Booking:
        booking = self.bookings.load_for_update(booking_id)
        self.bookings.apply_transition(
            booking,
            BookingEvent.RESOLVE,
            EventType.DISPUTE_RESOLVED,
            ActorType.ADMIN,
            admin_id,
            metadata={"note": note},
            resolution=resolution,
        )
        self.bookings.notifications.notify_booker(
            booking,
            EventType.DISPUTE_RESOLVED.value,
            {"resolution": booking.status.value},
        )
        return booking

    def issue_refund(
        self,
        booking_id: str,
        admin_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Booking:
        booking = self.bookings.load_for_update(booking_id)
        self.bookings.apply_transition(
            booking,
            BookingEvent.ISSUE_REFUND,
            EventType.REFUND_INITIATED,
            ActorType.ADMIN,
            admin_id,
            metadata={"reason": reason},
        )
        return booking

    def process_refund(
        self,
        booking_id: str,
        admin_id: Optional[str] = None,
    ) -> Booking:
        """
        Close out a refund: the paid deposit becomes REFUNDED and the
        booking ends CANCELLED. Valid from REFUND_PENDING, or from
        CANCELLED when a deposit was actually paid.
        """
        booking = self.bookings.load_for_update(booking_id)
        # Surface the state error before looking at payments.
        BookingStateMachine.target_for(booking.status, BookingEvent.PROCESS_REFUND)

        payment = self.payment_repository.get_paid_deposit(booking.id)
        if payment is None:
            if booking.status == BookingStatus.CANCELLED:
                raise InvalidStateTransitionError(
                    from_state=booking.status.value,
                    to_state=BookingStatus.CANCELLED.value,
                    message="Booking has no paid deposit to refund",
                )
            # REFUND_PENDING without a deposit (admin override history):
            # nothing to move, but the booking still closes.
            logger.warning("Processing refund for booking %s with no paid deposit", booking.id)

        metadata = {}
        if payment is not None:
            PaymentStateMachine.validate_transition(payment.status, PaymentStatus.REFUNDED)
            self.payment_repository.update_status(payment, PaymentStatus.REFUNDED)
            payment.refunded_at = utc_now()
            metadata = {
                "payment_id": payment.id,
                "amount": payment.amount,
                "currency": payment.currency,
            }

        self.bookings.apply_transition(
            booking,
            BookingEvent.PROCESS_REFUND,
            EventType.REFUND_PROCESSED,
            ActorType.ADMIN,
            admin_id,
            metadata=metadata,
        )
        self.bookings.notifications.notify_booker(
            booking,
            EventType.REFUND_PROCESSED.value,
            metadata,
        )
        return booking

    def override_status(
        self,
        booking_id: str,
        new_status: BookingStatus,
        admin_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Booking:
        """
        Force a booking into new_status without consulting the guard table.
        Terminal bookings stay terminal.
        """
        booking = self.bookings.load_for_update(booking_id)
        from_status = booking.status

        if BookingStateMachine.is_terminal(from_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=new_status.value,
                message=f"Cannot override a {from_status.value} booking",
            )
        if new_status == from_status:
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=new_status.value,
                message=f"Booking is already {from_status.value}",
            )

        self.bookings.booking_repository.update_status(booking, new_status)
        self.bookings.event_log.record(
            booking_id=booking.id,
            event_type=override_event_type(new_status),
            actor_type=ActorType.ADMIN,
            actor_id=admin_id,
            metadata=transition_metadata(from_status, new_status, reason=reason),
        )
        logger.warning(
            "Admin %s overrode booking %s: %s -> %s",
            admin_id or "<unknown>",
            booking.id,
            from_status.value,
            new_status.value,
        )
        return booking

    def save_admin_notes(
        self,
        booking_id: str,
        notes: str,
        admin_id: Optional[str] = None,
    ) -> Booking:
        if len(notes) > MAX_ADMIN_NOTES_LENGTH:
            raise ValidationError(
                "Notes too long",
                details={"notes": f"At most {MAX_ADMIN_NOTES_LENGTH} characters"},
            )
        booking = self.bookings.load_for_update(booking_id)
        booking.admin_notes = notes or None
        booking.updated_at = utc_now()
        self.bookings.event_log.record(
            booking_id=booking.id,
            event_type=EventType.NOTES_UPDATED,
            actor_type=ActorType.ADMIN,
            actor_id=admin_id,
            metadata={"length": len(notes)},
        )
        return booking

    def list_bookings(
        self,
        status: Optional[BookingStatus] = None,
    ) -> list[tuple[Booking, PaymentStatus]]:
        return [
            (booking, self.bookings.deposit_status(booking.id))
            for booking in self.bookings.booking_repository.list_all(status)
        ]

    def dashboard_stats(self) -> dict:
        counts = self.bookings.booking_repository.count_by_status()
        revenue = self.db.execute(
            select(func.coalesce(func.sum(BookingPayment.amount), 0))
            .where(BookingPayment.type == PaymentType.DEPOSIT)
            .where(BookingPayment.status == PaymentStatus.PAID)
        ).scalar_one()

        return {
            "total_bookings": sum(counts.values()),
            "active_disputes": counts.get(BookingStatus.DISPUTED, 0),
            "pending_refunds": counts.get(BookingStatus.REFUND_PENDING, 0),
            "deposit_revenue": int(revenue),
            "by_status": {status.value: counts.get(status, 0) for status in BookingStatus},
        }
