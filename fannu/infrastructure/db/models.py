# fannu/infrastructure/db/models.py

from sqlalchemy import (
    JSON,
    Boolean,
    String,
    Integer,
    DateTime,
    Enum,
    Text,
    Index,
    UniqueConstraint,
    CheckConstraint,
    ForeignKey,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from uuid import uuid4

from fannu.domain.clock import utc_now
from fannu.domain.creators import (
    CreatorStatus,
    SubscriptionStatus,
    VipChannel,
    VipSource,
)
from fannu.domain.events import ActorType
from fannu.domain.payments import PaymentStatus, PaymentType
from fannu.domain.quotes import QuoteStatus
from fannu.domain.state_machine import BookingStatus, BookingType
from fannu.infrastructure.db.session import Base


def _uuid() -> str:
    return str(uuid4())


class Creator(Base):
    __tablename__ = "creators"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    slug: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    booking_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    booking_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    default_deposit_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    default_deposit_refundable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    default_additional_terms: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[CreatorStatus] = mapped_column(
        Enum(CreatorStatus, name="creator_status"),
        nullable=False,
        default=CreatorStatus.PENDING_APPROVAL,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "default_deposit_percent BETWEEN 10 AND 100",
            name="ck_creator_default_deposit_percent",
        ),
    )


class Booking(Base):
    """
    Booking table reflecting domain state.
    Domain controls transitions; rows are never deleted.
    """

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    reference_code: Mapped[str] = mapped_column(String(16), nullable=False)
    creator_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("creators.id"),
        nullable=False,
        index=True,
    )
    booker_name: Mapped[str] = mapped_column(String(100), nullable=False)
    booker_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    booker_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    type: Mapped[BookingType] = mapped_column(
        Enum(BookingType, name="booking_type"),
        nullable=False,
    )
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    location_city: Mapped[str] = mapped_column(String(100), nullable=False)
    location_venue: Mapped[str | None] = mapped_column(String(200), nullable=True)
    budget_min: Mapped[int] = mapped_column(Integer, nullable=False)
    budget_max: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False)
    attachments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status"),
        nullable=False,
        default=BookingStatus.REQUESTED,
    )
    decline_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "reference_code",
            name="uq_booking_reference_code",
        ),
        CheckConstraint("end_at > start_at", name="ck_booking_end_after_start"),
        CheckConstraint("budget_min > 0", name="ck_booking_budget_min_positive"),
        CheckConstraint("budget_max >= budget_min", name="ck_booking_budget_range"),
    )


class BookingQuote(Base):
    __tablename__ = "booking_quotes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id"),
        nullable=False,
        index=True,
    )
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    deposit_percent: Mapped[int] = mapped_column(Integer, nullable=False)
    deposit_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="ETB")
    deposit_refundable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    terms_text: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[QuoteStatus] = mapped_column(
        Enum(QuoteStatus, name="quote_status"),
        nullable=False,
        default=QuoteStatus.ACTIVE,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        # At most one ACTIVE quote per booking.
        Index(
            "uq_booking_quotes_one_active",
            "booking_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
        CheckConstraint("total_amount > 0", name="ck_quote_total_positive"),
        CheckConstraint(
            "deposit_percent BETWEEN 10 AND 100",
            name="ck_quote_deposit_percent",
        ),
        CheckConstraint("deposit_amount >= 0", name="ck_quote_deposit_nonnegative"),
    )


class BookingPayment(Base):
    __tablename__ = "booking_payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id"),
        nullable=False,
        index=True,
    )
    quote_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("booking_quotes.id"),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="ETB")
    type: Mapped[PaymentType] = mapped_column(
        Enum(PaymentType, name="payment_type"),
        nullable=False,
        default=PaymentType.DEPOSIT,
    )
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    receipt_id: Mapped[str] = mapped_column(String(16), nullable=False)
    psp_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("receipt_id", name="uq_payment_receipt_id"),
        UniqueConstraint("psp_ref", name="uq_payment_psp_ref"),
        # At most one non-FAILED deposit per (booking, quote).
        Index(
            "uq_booking_payments_one_live_deposit",
            "booking_id",
            "quote_id",
            unique=True,
            postgresql_where=text("type = 'DEPOSIT' AND status <> 'FAILED'"),
            sqlite_where=text("type = 'DEPOSIT' AND status <> 'FAILED'"),
        ),
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
    )


class BookingEventLog(Base):
    """Append-only audit trail. Nothing in the code base updates or deletes rows."""

    __tablename__ = "booking_event_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id"),
        nullable=False,
        index=True,
    )
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_type: Mapped[ActorType] = mapped_column(
        Enum(ActorType, name="actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    event_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )


class VipSubscription(Base):
    __tablename__ = "vip_subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    creator_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("creators.id"),
        nullable=False,
    )
    fan_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    fan_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    channel: Mapped[VipChannel] = mapped_column(
        Enum(VipChannel, name="vip_channel"),
        nullable=False,
    )
    source: Mapped[VipSource] = mapped_column(
        Enum(VipSource, name="vip_source"),
        nullable=False,
    )
    source_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, name="subscription_status"),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("creator_id", "fan_phone", name="uq_vip_creator_fan_phone"),
    )


class PaymentWebhookEvent(Base):
    __tablename__ = "payment_webhook_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    psp_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    payment_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    booking_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PROCESSED")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "provider",
            "psp_ref",
            "payload_hash",
            name="uq_webhook_provider_delivery",
        ),
    )


class OutboxEvent(Base):
    """Outbound notifications, written in the same transaction as their cause."""

    __tablename__ = "outbox_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    aggregate_type: Mapped[str] = mapped_column(String(64), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(36), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    dedupe_key: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_outbox_dedupe_key"),
    )
