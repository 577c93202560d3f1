# fannu/infrastructure/repositories/quote_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import select

from fannu.domain.quotes import QuoteStatus
from fannu.infrastructure.db.models import BookingQuote


class QuoteRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, quote_id: str) -> BookingQuote | None:
        stmt = select(BookingQuote).where(BookingQuote.id == quote_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_for_update(self, quote_id: str) -> BookingQuote | None:
        stmt = (
            select(BookingQuote)
            .where(BookingQuote.id == quote_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_active_for_booking(
        self,
        booking_id: str,
        lock: bool = False,
    ) -> BookingQuote | None:

        stmt = (
            select(BookingQuote)
            .where(BookingQuote.booking_id == booking_id)
            .where(BookingQuote.status == QuoteStatus.ACTIVE)
        )
        if lock:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_booking(self, booking_id: str) -> list[BookingQuote]:
        stmt = (
            select(BookingQuote)
            .where(BookingQuote.booking_id == booking_id)
            .order_by(BookingQuote.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def create(self, **fields) -> BookingQuote:
        quote = BookingQuote(status=QuoteStatus.ACTIVE, **fields)
        self.db.add(quote)
        self.db.flush()
        return quote

    def update_status(self, quote: BookingQuote, new_status: QuoteStatus) -> None:
        quote.status = new_status

    def list_stale_active(self, now: datetime) -> list[BookingQuote]:
        """ACTIVE quotes whose expires_at has passed, locked for the sweep."""
        stmt = (
            select(BookingQuote)
            .where(BookingQuote.status == QuoteStatus.ACTIVE)
            .where(BookingQuote.expires_at <= now)
            .with_for_update()
        )
        return list(self.db.execute(stmt).scalars().all())
