# fannu/infrastructure/repositories/event_log_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from fannu.domain.events import ActorType, EventType
from fannu.infrastructure.db.models import BookingEventLog


class EventLogRepository:
    """
    Append-only access to booking_event_log.
    Rows are only ever inserted.
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        booking_id: str,
        event_type: EventType | str,
        actor_type: ActorType,
        actor_id: str | None = None,
        metadata: dict | None = None,
    ) -> BookingEventLog:

        entry = BookingEventLog(
            booking_id=booking_id,
            event_type=event_type.value if isinstance(event_type, EventType) else event_type,
            actor_type=actor_type,
            actor_id=actor_id,
            event_metadata=metadata or {},
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def list_for_booking(self, booking_id: str) -> list[BookingEventLog]:
        stmt = (
            select(BookingEventLog)
            .where(BookingEventLog.booking_id == booking_id)
            .order_by(BookingEventLog.created_at, BookingEventLog.id)
        )
        return list(self.db.execute(stmt).scalars().all())
