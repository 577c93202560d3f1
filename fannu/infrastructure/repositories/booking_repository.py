# fannu/infrastructure/repositories/booking_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import func, select

from fannu.domain.clock import utc_now
from fannu.domain.state_machine import BookingStatus
from fannu.infrastructure.db.models import Booking


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_for_update(
        self,
        booking_id: str,
    ) -> Booking | None:
        """
        SELECT ... FOR UPDATE
        Serialises status changes on one booking.
        """

        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .with_for_update()
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_reference_code(
        self,
        reference_code: str,
    ) -> Booking | None:

        stmt = select(Booking).where(
            Booking.reference_code == reference_code.upper()
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def reference_code_exists(self, reference_code: str) -> bool:
        stmt = select(Booking.id).where(Booking.reference_code == reference_code)
        return self.db.execute(stmt).first() is not None

    def create_booking(self, **fields) -> Booking:
        booking = Booking(status=BookingStatus.REQUESTED, **fields)
        self.db.add(booking)
        self.db.flush()
        return booking

    def update_status(
        self,
        booking: Booking,
        new_status: BookingStatus,
    ) -> None:

        booking.status = new_status
        booking.updated_at = utc_now()

    def list_by_creator(
        self,
        creator_id: str,
        status: BookingStatus | None = None,
    ) -> list[Booking]:

        stmt = (
            select(Booking)
            .where(Booking.creator_id == creator_id)
            .order_by(Booking.created_at.desc())
        )
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        return list(self.db.execute(stmt).scalars().all())

    def list_all(self, status: BookingStatus | None = None) -> list[Booking]:
        stmt = select(Booking).order_by(Booking.created_at.desc())
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        return list(self.db.execute(stmt).scalars().all())

    def count_by_status(self, creator_id: str | None = None) -> dict[BookingStatus, int]:
        stmt = select(Booking.status, func.count(Booking.id)).group_by(Booking.status)
        if creator_id is not None:
            stmt = stmt.where(Booking.creator_id == creator_id)
        return {status: count for status, count in self.db.execute(stmt).all()}
