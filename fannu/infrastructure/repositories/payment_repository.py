# fannu/infrastructure/repositories/payment_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from fannu.domain.payments import PaymentStatus, PaymentType
from fannu.infrastructure.db.models import BookingPayment


class PaymentRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, payment_id: str) -> BookingPayment | None:
        stmt = select(BookingPayment).where(BookingPayment.id == payment_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_for_update(self, payment_id: str) -> BookingPayment | None:
        # The row may already be in the session from an unlocked read.
        stmt = (
            select(BookingPayment)
            .where(BookingPayment.id == payment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_psp_ref(self, psp_ref: str) -> BookingPayment | None:
        stmt = select(BookingPayment).where(BookingPayment.psp_ref == psp_ref)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_receipt_id(self, receipt_id: str) -> BookingPayment | None:
        stmt = select(BookingPayment).where(
            BookingPayment.receipt_id == receipt_id.upper()
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def receipt_id_exists(self, receipt_id: str) -> bool:
        stmt = select(BookingPayment.id).where(BookingPayment.receipt_id == receipt_id)
        return self.db.execute(stmt).first() is not None

    def get_live_deposit(
        self,
        booking_id: str,
        quote_id: str,
    ) -> BookingPayment | None:
        """The non-FAILED deposit for (booking, quote), if any."""

        stmt = (
            select(BookingPayment)
            .where(BookingPayment.booking_id == booking_id)
            .where(BookingPayment.quote_id == quote_id)
            .where(BookingPayment.type == PaymentType.DEPOSIT)
            .where(BookingPayment.status != PaymentStatus.FAILED)
            .with_for_update()
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_paid_deposit(self, booking_id: str) -> BookingPayment | None:
        stmt = (
            select(BookingPayment)
            .where(BookingPayment.booking_id == booking_id)
            .where(BookingPayment.type == PaymentType.DEPOSIT)
            .where(BookingPayment.status == PaymentStatus.PAID)
            .order_by(BookingPayment.created_at.desc())
            .with_for_update()
        )
        return self.db.execute(stmt).scalars().first()

    def list_pending_deposits(self, booking_id: str) -> list[BookingPayment]:
        stmt = (
            select(BookingPayment)
            .where(BookingPayment.booking_id == booking_id)
            .where(BookingPayment.type == PaymentType.DEPOSIT)
            .where(BookingPayment.status == PaymentStatus.PENDING)
            .order_by(BookingPayment.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_for_booking(self, booking_id: str) -> list[BookingPayment]:
        stmt = (
            select(BookingPayment)
            .where(BookingPayment.booking_id == booking_id)
            .order_by(BookingPayment.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def create(self, **fields) -> BookingPayment:
        payment = BookingPayment(status=PaymentStatus.PENDING, **fields)
        self.db.add(payment)
        self.db.flush()
        return payment

    def update_status(self, payment: BookingPayment, new_status: PaymentStatus) -> None:
        payment.status = new_status
