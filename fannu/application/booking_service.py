import logging
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fannu.domain.bookings import validate_booking_request, validate_cancellation_reason
from fannu.domain.clock import ensure_utc, utc_now
from fannu.domain.creators import CreatorStatus
from fannu.domain.events import ActorType, EventType, transition_metadata
from fannu.domain.exceptions import (
    BookingNotFoundError,
    ConflictError,
    CreatorNotFoundError,
    CreatorUnavailableError,
    InvalidStateTransitionError,
    ValidationError,
)
from fannu.domain.payments import PaymentStatus, derive_deposit_status
from fannu.domain.quotes import QuoteStatus
from fannu.domain.reference_codes import allocate_code, generate_reference_code
from fannu.domain.state_machine import (
    BookingEvent,
    BookingStateMachine,
    BookingStatus,
    BookingType,
)
from fannu.application.notifications import NotificationService
from fannu.infrastructure.db.models import Booking, BookingEventLog
from fannu.infrastructure.repositories.booking_repository import BookingRepository
from fannu.infrastructure.repositories.creator_repository import CreatorRepository
from fannu.infrastructure.repositories.event_log_repository import EventLogRepository
from fannu.infrastructure.repositories.payment_repository import PaymentRepository
from fannu.infrastructure.repositories.quote_repository import QuoteRepository

logger = logging.getLogger(__name__)


class BookingService:
    """Application service coordinating the booking lifecycle."""

    def __init__(self, db: Session):
        self.db = db
        self.booking_repository = BookingRepository(db)
        self.creator_repository = CreatorRepository(db)
        self.quote_repository = QuoteRepository(db)
        self.payment_repository = PaymentRepository(db)
        self.event_log = EventLogRepository(db)
        self.notifications = NotificationService(db)

    # ---------------------
    # Creation & lookups
    # ---------------------

    def create_booking(
        self,
        creator_slug: str,
        booker_name: str,
        booker_phone: str,
        type: BookingType,
        start_at: datetime,
        end_at: datetime,
        location_city: str,
        budget_min: int,
        budget_max: int,
        notes: str,
        booker_email: Optional[str] = None,
        location_venue: Optional[str] = None,
        attachments: Optional[Sequence[str]] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        validate_booking_request(
            start_at=start_at,
            end_at=end_at,
            budget_min=budget_min,
            budget_max=budget_max,
            notes=notes,
            attachments=attachments,
            now=now,
        )

        creator = self.creator_repository.get_by_slug(creator_slug)
        if not creator or creator.status != CreatorStatus.ACTIVE:
            raise CreatorNotFoundError(creator_slug)
        if not creator.booking_enabled or not creator.booking_approved:
            raise CreatorUnavailableError("Creator is not accepting bookings")

        reference_code = allocate_code(
            generate_reference_code,
            self.booking_repository.reference_code_exists,
        )

        try:
            booking = self.booking_repository.create_booking(
                reference_code=reference_code,
                creator_id=creator.id,
                booker_name=booker_name,
                booker_phone=booker_phone,
                booker_email=booker_email or None,
                type=type,
                start_at=ensure_utc(start_at),
                end_at=ensure_utc(end_at),
                location_city=location_city,
                location_venue=location_venue or None,
                budget_min=budget_min,
                budget_max=budget_max,
                notes=notes,
                attachments=list(attachments or []),
            )
        except IntegrityError as exc:
            # Another request took the same code between the check and the insert.
            self.db.rollback()
            raise ConflictError(
                "Reference code collision, please retry",
                details={"reference_code": reference_code},
            ) from exc

        self.event_log.record(
            booking_id=booking.id,
            event_type=EventType.REQUESTED,
            actor_type=ActorType.BOOKER,
            metadata=transition_metadata(
                None,
                BookingStatus.REQUESTED,
                booker_name=booker_name,
            ),
        )
        self.notifications.notify_creator(
            booking,
            creator.phone,
            EventType.REQUESTED.value,
            {"booker_name": booker_name, "type": type.value},
        )
        self.notifications.notify_booker(
            booking,
            EventType.REQUESTED.value,
            {"creator": creator.display_name},
        )

        logger.info(
            "Booking %s (%s) requested for creator %s",
            booking.id,
            booking.reference_code,
            creator.slug,
        )
        return booking

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise BookingNotFoundError(booking_id)
        return booking

    def get_by_reference_code(self, reference_code: str) -> Booking:
        booking = self.booking_repository.get_by_reference_code(reference_code)
        if not booking:
            raise BookingNotFoundError(reference_code)
        return booking

    def list_for_creator(
        self,
        creator_id: str,
        status: Optional[BookingStatus] = None,
    ) -> list[Booking]:
        if not self.creator_repository.get_by_id(creator_id):
            raise CreatorNotFoundError(creator_id)
        return self.booking_repository.list_by_creator(creator_id, status)

    def stats_for_creator(self, creator_id: str) -> dict[str, int]:
        if not self.creator_repository.get_by_id(creator_id):
            raise CreatorNotFoundError(creator_id)
        counts = self.booking_repository.count_by_status(creator_id)
        stats = {status.value: counts.get(status, 0) for status in BookingStatus}
        stats["total"] = sum(counts.values())
        return stats

    def list_events(self, booking_id: str) -> list[BookingEventLog]:
        self.get_booking(booking_id)
        return self.event_log.list_for_booking(booking_id)

    def deposit_status(self, booking_id: str) -> PaymentStatus:
        return derive_deposit_status(self.payment_repository.list_for_booking(booking_id))

    # ---------------------
    # Transitions
    # ---------------------

    def load_for_update(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_for_update(booking_id)
        if not booking:
            raise BookingNotFoundError(booking_id)
        return booking

    def apply_transition(
        self,
        booking: Booking,
        event: BookingEvent,
        event_type: EventType,
        actor_type: ActorType,
        actor_id: Optional[str] = None,
        metadata: Optional[dict] = None,
        resolution: Optional[BookingStatus] = None,
    ) -> BookingStatus:
        """
        Validate the event against the state machine, move the booking and
        append exactly one log entry. The caller holds the booking row lock.
        """
        from_status = booking.status
        to_status = BookingStateMachine.target_for(from_status, event, resolution)

        self.booking_repository.update_status(booking, to_status)
        self.event_log.record(
            booking_id=booking.id,
            event_type=event_type,
            actor_type=actor_type,
            actor_id=actor_id,
            metadata=transition_metadata(from_status, to_status, **(metadata or {})),
        )

        logger.info(
            "Booking %s: %s -> %s (%s by %s)",
            booking.id,
            from_status.value,
            to_status.value,
            event.value,
            actor_type.value,
        )
        return to_status

    def decline(
        self,
        booking_id: str,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Booking:
        booking = self.load_for_update(booking_id)
        reason = (reason or "").strip() or None

        self.apply_transition(
            booking,
            BookingEvent.DECLINE,
            EventType.BOOKING_DECLINED,
            ActorType.CREATOR,
            actor_id,
            metadata={"reason": reason},
        )
        booking.decline_reason = reason
        self._close_active_quote(booking.id)
        self.notifications.notify_booker(
            booking,
            EventType.BOOKING_DECLINED.value,
            {"reason": reason},
        )
        return booking

    def confirm(
        self,
        booking_id: str,
        actor_type: ActorType = ActorType.CREATOR,
        actor_id: Optional[str] = None,
    ) -> Booking:
        booking = self.load_for_update(booking_id)
        self.apply_transition(
            booking,
            BookingEvent.CONFIRM,
            EventType.BOOKING_CONFIRMED,
            actor_type,
            actor_id,
        )
        self.notifications.notify_booker(booking, EventType.BOOKING_CONFIRMED.value)
        return booking

    def complete(
        self,
        booking_id: str,
        actor_type: ActorType = ActorType.CREATOR,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        booking = self.load_for_update(booking_id)

        # The system only completes bookings whose event is over;
        # creators may mark completion themselves at any point.
        if actor_type == ActorType.SYSTEM and ensure_utc(booking.end_at) > ensure_utc(now or utc_now()):
            raise InvalidStateTransitionError(
                from_state=booking.status.value,
                to_state=BookingStatus.COMPLETED.value,
                message="Event has not ended yet",
            )

        self.apply_transition(
            booking,
            BookingEvent.COMPLETE,
            EventType.BOOKING_COMPLETED,
            actor_type,
            actor_id,
        )
        return booking

    def cancel(
        self,
        booking_id: str,
        reason: str,
        actor_type: ActorType,
        actor_id: Optional[str] = None,
    ) -> Booking:
        if actor_type not in (ActorType.BOOKER, ActorType.CREATOR, ActorType.ADMIN):
            raise ValidationError(
                "Invalid actor",
                details={"actor_type": "Only bookers, creators and admins can cancel"},
            )
        reason = validate_cancellation_reason(reason)
        booking = self.load_for_update(booking_id)

        self.apply_transition(
            booking,
            BookingEvent.CANCEL,
            EventType.BOOKING_CANCELLED,
            actor_type,
            actor_id,
            metadata={"reason": reason},
        )
        booking.cancellation_reason = reason
        self._close_active_quote(booking.id)
        self.notifications.notify_booker(
            booking,
            EventType.BOOKING_CANCELLED.value,
            {"reason": reason},
        )
        return booking

    def open_dispute(
        self,
        booking_id: str,
        reason: str,
        actor_type: ActorType,
        actor_id: Optional[str] = None,
    ) -> Booking:
        if actor_type not in (ActorType.BOOKER, ActorType.ADMIN):
            raise ValidationError(
                "Invalid actor",
                details={"actor_type": "Only bookers and admins can open disputes"},
            )
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError(
                "A dispute needs a reason",
                details={"reason": "Reason is required"},
            )

        booking = self.load_for_update(booking_id)
        self.apply_transition(
            booking,
            BookingEvent.OPEN_DISPUTE,
            EventType.DISPUTE_OPENED,
            actor_type,
            actor_id,
            metadata={"reason": reason},
        )
        booking.dispute_reason = reason
        return booking

    def _close_active_quote(self, booking_id: str) -> None:
        quote = self.quote_repository.get_active_for_booking(booking_id, lock=True)
        if quote:
            self.quote_repository.update_status(quote, QuoteStatus.DECLINED)
