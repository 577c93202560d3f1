from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from fannu.domain.creators import VipChannel, VipSource
from fannu.domain.payments import PaymentOutcome, PaymentStatus, PaymentType
from fannu.domain.quotes import QuoteStatus
from fannu.domain.state_machine import BookingStatus, BookingType

E164_PATTERN = r"^\+[1-9]\d{7,14}$"


class BookingCreateRequest(BaseModel):
    creator_slug: str = Field(min_length=1, max_length=64)
    booker_name: str = Field(min_length=1, max_length=100)
    booker_phone: str = Field(pattern=E164_PATTERN)
    booker_email: str | None = Field(default=None, max_length=255)
    type: BookingType
    start_at: datetime
    end_at: datetime
    location_city: str = Field(min_length=1, max_length=100)
    location_venue: str | None = Field(default=None, max_length=200)
    budget_min: int
    budget_max: int
    notes: str
    attachments: list[str] = Field(default_factory=list)


class BookingCreatedResponse(BaseModel):
    id: str
    reference_code: str
    status: BookingStatus


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    reference_code: str
    creator_id: str
    booker_name: str
    booker_phone: str
    booker_email: str | None = None
    type: BookingType
    start_at: datetime
    end_at: datetime
    location_city: str
    location_venue: str | None = None
    budget_min: int
    budget_max: int
    notes: str
    attachments: list[str]
    status: BookingStatus
    decline_reason: str | None = None
    cancellation_reason: str | None = None
    dispute_reason: str | None = None
    created_at: datetime
    updated_at: datetime


class QuoteCreateRequest(BaseModel):
    total_amount: int = Field(gt=0)
    deposit_percent: int | None = None
    deposit_refundable: bool | None = None
    expiry_hours: int = 48
    additional_terms: str | None = Field(default=None, max_length=1000)


class QuoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    booking_id: str
    total_amount: int
    deposit_percent: int
    deposit_amount: int
    currency: str
    deposit_refundable: bool
    expires_at: datetime
    terms_text: str
    status: QuoteStatus
    created_at: datetime
    usable: bool = False


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    quote_id: str
    amount: int
    currency: str
    type: PaymentType
    status: PaymentStatus
    receipt_id: str
    psp_ref: str | None = None
    created_at: datetime
    paid_at: datetime | None = None
    refunded_at: datetime | None = None


class BookingDetailResponse(BookingResponse):
    deposit_status: PaymentStatus
    quotes: list[QuoteResponse]
    payments: list[PaymentResponse]


class TrackingResponse(BaseModel):
    reference_code: str
    status: BookingStatus
    status_label: str
    type: BookingType
    type_label: str
    creator_name: str
    start_at: datetime
    end_at: datetime
    location_city: str
    deposit_status: PaymentStatus
    active_quote: QuoteResponse | None = None


class EventLogEntryResponse(BaseModel):
    id: int
    event_type: str
    actor_type: str
    actor_id: str | None = None
    metadata: dict
    created_at: datetime


class ReasonRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class CancelRequest(BaseModel):
    reason: str = Field(max_length=1000)
    actor_type: Literal["BOOKER", "CREATOR"] = "BOOKER"


class DisputeRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class CheckoutRequest(BaseModel):
    quote_id: str


class CheckoutResponse(BaseModel):
    payment_id: str
    receipt_id: str
    status: PaymentStatus
    created: bool
    booking_status: BookingStatus
    checkout_url: str | None = None


class WebhookRequest(BaseModel):
    psp_ref: str
    outcome: PaymentOutcome
    amount: int | None = None
    currency: str | None = None
    provider: str = "SIMULATED"


class WebhookResponse(BaseModel):
    payment_id: str
    status: PaymentStatus
    duplicate: bool


class ReceiptResponse(BaseModel):
    receipt_id: str
    reference_code: str
    creator_name: str
    amount: int
    currency: str
    type: str
    status: PaymentStatus
    created_at: datetime
    paid_at: datetime | None = None
    refunded_at: datetime | None = None


class VipSubscribeRequest(BaseModel):
    creator_id: str
    fan_phone: str = Field(pattern=E164_PATTERN)
    fan_name: str | None = Field(default=None, max_length=100)
    channel: VipChannel
    source: VipSource
    source_ref: str | None = Field(default=None, max_length=128)


class VipUnsubscribeRequest(BaseModel):
    creator_id: str
    fan_phone: str = Field(pattern=E164_PATTERN)


class VipResponse(BaseModel):
    id: str
    status: str
    reactivated: bool = False


class ResolveDisputeRequest(BaseModel):
    resolution: BookingStatus = BookingStatus.CONFIRMED
    note: str | None = Field(default=None, max_length=2000)


class OverrideStatusRequest(BaseModel):
    new_status: BookingStatus
    reason: str | None = Field(default=None, max_length=1000)


class AdminNotesRequest(BaseModel):
    notes: str


class AdminBookingResponse(BookingResponse):
    admin_notes: str | None = None
    deposit_status: PaymentStatus


class AdminStatsResponse(BaseModel):
    total_bookings: int
    active_disputes: int
    pending_refunds: int
    deposit_revenue: int
    by_status: dict[str, int]


class ExpireQuotesResponse(BaseModel):
    expired: int


class OutboxEventResponse(BaseModel):
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    payload: str
    status: str
    attempts: int
    created_at: str
