import hmac
import logging
import os
from pathlib import Path

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from fannu.api.errors import error_body
from fannu.api.schemas.schemas import (
    AdminBookingResponse,
    AdminNotesRequest,
    AdminStatsResponse,
    BookingCreatedResponse,
    BookingCreateRequest,
    BookingDetailResponse,
    BookingResponse,
    CancelRequest,
    CheckoutRequest,
    CheckoutResponse,
    DisputeRequest,
    EventLogEntryResponse,
    ExpireQuotesResponse,
    OutboxEventResponse,
    OverrideStatusRequest,
    PaymentResponse,
    QuoteCreateRequest,
    QuoteResponse,
    ReasonRequest,
    ReceiptResponse,
    ResolveDisputeRequest,
    TrackingResponse,
    VipResponse,
    VipSubscribeRequest,
    VipUnsubscribeRequest,
    WebhookRequest,
    WebhookResponse,
)
from fannu.application.admin_service import AdminService
from fannu.application.booking_service import BookingService
from fannu.application.payment_service import PaymentService
from fannu.application.quote_service import QuoteService
from fannu.application.vip_service import VipService
from fannu.domain.events import ActorType
from fannu.domain.exceptions import (
    BookingNotFoundError,
    NotFoundError,
    PaymentNotFoundError,
    ValidationError,
)
from fannu.domain.payments import PaymentStatus
from fannu.domain.quotes import is_quote_usable
from fannu.domain.state_machine import (
    BOOKING_STATUS_LABELS,
    BOOKING_TYPE_LABELS,
    BookingStatus,
)
from fannu.infrastructure.db.models import BookingQuote, OutboxEvent
from fannu.infrastructure.db.session import SessionLocal
from fannu.infrastructure.payments.provider import hash_payload, verify_webhook_signature
from fannu.infrastructure.repositories.outbox_repository import OutboxRepository


router = APIRouter()
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parents[2] / "templates"))
logger = logging.getLogger(__name__)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def require_admin(
    x_admin_token: str | None = Header(default=None),
) -> None:
    expected = os.getenv("ADMIN_API_TOKEN", "")
    # No configured token means the admin surface is closed.
    if not expected or not x_admin_token or not hmac.compare_digest(expected, x_admin_token):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "FORBIDDEN", "message": "Admin access required"},
        )


def _quote_response(quote: BookingQuote) -> QuoteResponse:
    response = QuoteResponse.model_validate(quote)
    response.usable = is_quote_usable(quote)
    return response


def _admin_booking_response(booking, deposit_status: PaymentStatus) -> AdminBookingResponse:
    return AdminBookingResponse(
        **BookingResponse.model_validate(booking).model_dump(),
        admin_notes=booking.admin_notes,
        deposit_status=deposit_status,
    )


def _outbox_response(item: OutboxEvent) -> OutboxEventResponse:
    return OutboxEventResponse(
        id=item.id,
        aggregate_type=item.aggregate_type,
        aggregate_id=item.aggregate_id,
        event_type=item.event_type,
        payload=item.payload,
        status=item.status,
        attempts=item.attempts,
        created_at=item.created_at.isoformat(),
    )


@router.get("/health")
def health():
    return {"message": "FanNu booking engine is running"}


# ---------------------
# Bookings
# ---------------------


@router.post(
    "/bookings",
    response_model=BookingCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_booking(
    request: BookingCreateRequest,
    db: Session = Depends(get_db),
):
    booking = BookingService(db).create_booking(
        creator_slug=request.creator_slug,
        booker_name=request.booker_name,
        booker_phone=request.booker_phone,
        booker_email=request.booker_email,
        type=request.type,
        start_at=request.start_at,
        end_at=request.end_at,
        location_city=request.location_city,
        location_venue=request.location_venue,
        budget_min=request.budget_min,
        budget_max=request.budget_max,
        notes=request.notes,
        attachments=request.attachments,
    )
    return BookingCreatedResponse(
        id=booking.id,
        reference_code=booking.reference_code,
        status=booking.status,
    )


@router.get("/bookings/track/{reference_code}", response_model=TrackingResponse)
def track_booking(
    reference_code: str,
    db: Session = Depends(get_db),
):
    service = BookingService(db)
    booking = service.get_by_reference_code(reference_code)
    creator = service.creator_repository.get_by_id(booking.creator_id)
    quote = service.quote_repository.get_active_for_booking(booking.id)

    return TrackingResponse(
        reference_code=booking.reference_code,
        status=booking.status,
        status_label=BOOKING_STATUS_LABELS[booking.status],
        type=booking.type,
        type_label=BOOKING_TYPE_LABELS[booking.type],
        creator_name=creator.display_name,
        start_at=booking.start_at,
        end_at=booking.end_at,
        location_city=booking.location_city,
        deposit_status=service.deposit_status(booking.id),
        active_quote=_quote_response(quote) if quote else None,
    )


@router.get("/bookings/{booking_id}", response_model=BookingDetailResponse)
def get_booking(
    booking_id: str,
    db: Session = Depends(get_db),
):
    service = BookingService(db)
    booking = service.get_booking(booking_id)
    payments = service.payment_repository.list_for_booking(booking.id)

    return BookingDetailResponse(
        **BookingResponse.model_validate(booking).model_dump(),
        deposit_status=service.deposit_status(booking.id),
        quotes=[
            _quote_response(quote)
            for quote in service.quote_repository.list_for_booking(booking.id)
        ],
        payments=[PaymentResponse.model_validate(payment) for payment in payments],
    )


@router.get("/bookings/{booking_id}/events", response_model=list[EventLogEntryResponse])
def list_booking_events(
    booking_id: str,
    db: Session = Depends(get_db),
):
    return [
        EventLogEntryResponse(
            id=entry.id,
            event_type=entry.event_type,
            actor_type=entry.actor_type.value,
            actor_id=entry.actor_id,
            metadata=entry.event_metadata or {},
            created_at=entry.created_at,
        )
        for entry in BookingService(db).list_events(booking_id)
    ]


@router.post("/bookings/{booking_id}/decline", response_model=BookingResponse)
def decline_booking(
    booking_id: str,
    request: ReasonRequest,
    x_actor_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    return BookingService(db).decline(booking_id, request.reason, actor_id=x_actor_id)


@router.post("/bookings/{booking_id}/confirm", response_model=BookingResponse)
def confirm_booking(
    booking_id: str,
    x_actor_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    return BookingService(db).confirm(booking_id, ActorType.CREATOR, x_actor_id)


@router.post("/bookings/{booking_id}/complete", response_model=BookingResponse)
def complete_booking(
    booking_id: str,
    x_actor_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    return BookingService(db).complete(booking_id, ActorType.CREATOR, x_actor_id)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    request: CancelRequest,
    x_actor_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    return BookingService(db).cancel(
        booking_id,
        request.reason,
        ActorType(request.actor_type),
        x_actor_id,
    )


@router.post("/bookings/{booking_id}/dispute", response_model=BookingResponse)
def open_dispute(
    booking_id: str,
    request: DisputeRequest,
    x_actor_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    return BookingService(db).open_dispute(
        booking_id,
        request.reason,
        ActorType.BOOKER,
        x_actor_id,
    )


# ---------------------
# Quotes
# ---------------------


@router.post(
    "/bookings/{booking_id}/quotes",
    response_model=QuoteResponse,
    status_code=status.HTTP_201_CREATED,
)
def issue_quote(
    booking_id: str,
    request: QuoteCreateRequest,
    x_actor_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    quote = QuoteService(db).issue_quote(
        booking_id=booking_id,
        total_amount=request.total_amount,
        deposit_percent=request.deposit_percent,
        deposit_refundable=request.deposit_refundable,
        expiry_hours=request.expiry_hours,
        additional_terms=request.additional_terms,
        actor_id=x_actor_id,
    )
    return _quote_response(quote)


@router.get("/bookings/{booking_id}/quote", response_model=QuoteResponse)
def get_active_quote(
    booking_id: str,
    db: Session = Depends(get_db),
):
    quote = QuoteService(db).get_active_quote(booking_id)
    if quote is None:
        raise NotFoundError("No active quote for this booking")
    return _quote_response(quote)


@router.post(
    "/bookings/{booking_id}/quotes/{quote_id}/decline",
    response_model=QuoteResponse,
)
def decline_quote(
    booking_id: str,
    quote_id: str,
    x_actor_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    return _quote_response(QuoteService(db).decline_quote(booking_id, quote_id, x_actor_id))


# ---------------------
# Payments
# ---------------------


@router.post("/bookings/{booking_id}/checkout", response_model=CheckoutResponse)
def checkout(
    booking_id: str,
    request: CheckoutRequest,
    db: Session = Depends(get_db),
):
    service = PaymentService(db)
    result = service.initiate_deposit_payment(booking_id, request.quote_id)
    booking = service.bookings.get_booking(booking_id)

    if result.status == PaymentStatus.FAILED:
        # The failure is recorded; answer without raising so it commits.
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content=error_body(
                "PAYMENT_FAILED",
                "Payment failed, you can retry against the same quote",
                {"payment_id": result.payment_id, "receipt_id": result.receipt_id},
            ),
        )

    return CheckoutResponse(
        payment_id=result.payment_id,
        receipt_id=result.receipt_id,
        status=result.status,
        created=result.created,
        booking_status=booking.status,
        checkout_url=result.checkout_url,
    )


async def _raw_body(request: Request) -> bytes:
    return await request.body()


@router.post("/payments/webhook", response_model=WebhookResponse)
def payment_webhook(
    body: bytes = Depends(_raw_body),
    x_signature: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    verify_webhook_signature(body, x_signature)
    try:
        payload = WebhookRequest.model_validate_json(body)
    except PydanticValidationError as exc:
        raise ValidationError(
            "Malformed webhook payload",
            details={
                ".".join(str(part) for part in error["loc"]) or "body": error["msg"]
                for error in exc.errors()
            },
        ) from exc

    payment, duplicate = PaymentService(db).process_webhook_delivery(
        provider=payload.provider,
        psp_ref=payload.psp_ref,
        outcome=payload.outcome,
        payload_hash=hash_payload(body),
        amount=payload.amount,
        currency=payload.currency,
    )
    return WebhookResponse(
        payment_id=payment.id,
        status=payment.status,
        duplicate=duplicate,
    )


@router.get("/receipts/{receipt_id}", response_model=ReceiptResponse)
def get_receipt(
    receipt_id: str,
    db: Session = Depends(get_db),
):
    service = PaymentService(db)
    payment = service.get_by_receipt_id(receipt_id)
    booking = service.bookings.get_booking(payment.booking_id)
    creator = service.bookings.creator_repository.get_by_id(booking.creator_id)

    return ReceiptResponse(
        receipt_id=payment.receipt_id,
        reference_code=booking.reference_code,
        creator_name=creator.display_name,
        amount=payment.amount,
        currency=payment.currency,
        type=payment.type.value,
        status=payment.status,
        created_at=payment.created_at,
        paid_at=payment.paid_at,
        refunded_at=payment.refunded_at,
    )


# ---------------------
# Creators
# ---------------------


@router.get("/creators/{creator_id}/bookings", response_model=list[BookingResponse])
def list_creator_bookings(
    creator_id: str,
    status_filter: BookingStatus | None = None,
    db: Session = Depends(get_db),
):
    return BookingService(db).list_for_creator(creator_id, status_filter)


@router.get("/creators/{creator_id}/bookings/stats", response_model=dict[str, int])
def creator_booking_stats(
    creator_id: str,
    db: Session = Depends(get_db),
):
    return BookingService(db).stats_for_creator(creator_id)


# ---------------------
# VIP
# ---------------------


@router.post("/vip", response_model=VipResponse, status_code=status.HTTP_201_CREATED)
def subscribe_vip(
    request: VipSubscribeRequest,
    db: Session = Depends(get_db),
):
    subscription, reactivated = VipService(db).subscribe(
        creator_id=request.creator_id,
        fan_phone=request.fan_phone,
        fan_name=request.fan_name,
        channel=request.channel,
        source=request.source,
        source_ref=request.source_ref,
    )
    response = VipResponse(
        id=subscription.id,
        status=subscription.status.value,
        reactivated=reactivated,
    )
    if reactivated:
        return JSONResponse(status_code=status.HTTP_200_OK, content=response.model_dump(mode="json"))
    return response


@router.post("/vip/unsubscribe", response_model=VipResponse)
def unsubscribe_vip(
    request: VipUnsubscribeRequest,
    db: Session = Depends(get_db),
):
    subscription = VipService(db).unsubscribe(request.creator_id, request.fan_phone)
    return VipResponse(id=subscription.id, status=subscription.status.value)


# ---------------------
# Admin
# ---------------------


@router.get(
    "/admin/bookings",
    response_model=list[AdminBookingResponse],
    dependencies=[Depends(require_admin)],
)
def admin_list_bookings(
    status_filter: BookingStatus | None = None,
    db: Session = Depends(get_db),
):
    return [
        _admin_booking_response(booking, deposit_status)
        for booking, deposit_status in AdminService(db).list_bookings(status_filter)
    ]


@router.get(
    "/admin/stats",
    response_model=AdminStatsResponse,
    dependencies=[Depends(require_admin)],
)
def admin_stats(db: Session = Depends(get_db)):
    return AdminService(db).dashboard_stats()


@router.post(
    "/admin/bookings/{booking_id}/dispute",
    response_model=AdminBookingResponse,
    dependencies=[Depends(require_admin)],
)
def admin_open_dispute(
    booking_id: str,
    request: DisputeRequest,
    x_admin_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    service = AdminService(db)
    booking = service.open_dispute(booking_id, request.reason, x_admin_id)
    return _admin_booking_response(booking, service.bookings.deposit_status(booking.id))


@router.post(
    "/admin/bookings/{booking_id}/resolve",
    response_model=AdminBookingResponse,
    dependencies=[Depends(require_admin)],
)
def admin_resolve_dispute(
    booking_id: str,
    request: ResolveDisputeRequest,
    x_admin_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    service = AdminService(db)
    booking = service.resolve_dispute(
        booking_id,
        admin_id=x_admin_id,
        resolution=request.resolution,
        note=request.note,
    )
    return _admin_booking_response(booking, service.bookings.deposit_status(booking.id))


@router.post(
    "/admin/bookings/{booking_id}/refund",
    response_model=AdminBookingResponse,
    dependencies=[Depends(require_admin)],
)
def admin_issue_refund(
    booking_id: str,
    request: ReasonRequest,
    x_admin_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    service = AdminService(db)
    booking = service.issue_refund(booking_id, x_admin_id, request.reason)
    return _admin_booking_response(booking, service.bookings.deposit_status(booking.id))


@router.post(
    "/admin/bookings/{booking_id}/process-refund",
    response_model=AdminBookingResponse,
    dependencies=[Depends(require_admin)],
)
def admin_process_refund(
    booking_id: str,
    x_admin_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    service = AdminService(db)
    booking = service.process_refund(booking_id, x_admin_id)
    return _admin_booking_response(booking, service.bookings.deposit_status(booking.id))


@router.post(
    "/admin/bookings/{booking_id}/override",
    response_model=AdminBookingResponse,
    dependencies=[Depends(require_admin)],
)
def admin_override_status(
    booking_id: str,
    request: OverrideStatusRequest,
    x_admin_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    service = AdminService(db)
    booking = service.override_status(booking_id, request.new_status, x_admin_id, request.reason)
    return _admin_booking_response(booking, service.bookings.deposit_status(booking.id))


@router.post(
    "/admin/bookings/{booking_id}/notes",
    response_model=AdminBookingResponse,
    dependencies=[Depends(require_admin)],
)
def admin_save_notes(
    booking_id: str,
    request: AdminNotesRequest,
    x_admin_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    service = AdminService(db)
    booking = service.save_admin_notes(booking_id, request.notes, x_admin_id)
    return _admin_booking_response(booking, service.bookings.deposit_status(booking.id))


@router.post(
    "/admin/quotes/expire",
    response_model=ExpireQuotesResponse,
    dependencies=[Depends(require_admin)],
)
def admin_expire_quotes(db: Session = Depends(get_db)):
    return ExpireQuotesResponse(expired=QuoteService(db).expire_stale_quotes())


# ---------------------
# Outbox
# ---------------------


@router.get(
    "/outbox/events",
    response_model=list[OutboxEventResponse],
    dependencies=[Depends(require_admin)],
)
def list_outbox_events(
    status_filter: str = "PENDING",
    limit: int = 50,
    db: Session = Depends(get_db),
):
    safe_limit = max(1, min(limit, 200))
    events = OutboxRepository(db).list_events(status_filter, safe_limit)
    return [_outbox_response(item) for item in events]


@router.post(
    "/outbox/events/{event_id}/mark-published",
    response_model=OutboxEventResponse,
    dependencies=[Depends(require_admin)],
)
def mark_outbox_event_published(
    event_id: str,
    db: Session = Depends(get_db),
):
    repository = OutboxRepository(db)
    item = repository.get_by_id(event_id)
    if not item:
        raise NotFoundError("Outbox event not found")

    repository.mark_published(item)
    return _outbox_response(item)


# ---------------------
# Public pages
# ---------------------


@router.get("/track/{reference_code}", response_class=HTMLResponse)
def tracking_page(
    reference_code: str,
    request: Request,
    db: Session = Depends(get_db),
):
    service = BookingService(db)
    try:
        booking = service.get_by_reference_code(reference_code)
    except BookingNotFoundError:
        return templates.TemplateResponse(
            request,
            "not_found.html",
            {"what": "booking", "ref": reference_code},
            status_code=status.HTTP_404_NOT_FOUND,
        )

    creator = service.creator_repository.get_by_id(booking.creator_id)
    quote = service.quote_repository.get_active_for_booking(booking.id)
    return templates.TemplateResponse(
        request,
        "tracking.html",
        {
            "booking": booking,
            "creator": creator,
            "quote": quote if quote and is_quote_usable(quote) else None,
            "status_label": BOOKING_STATUS_LABELS[booking.status],
            "type_label": BOOKING_TYPE_LABELS[booking.type],
            "deposit_status": service.deposit_status(booking.id).value,
        },
    )


@router.get("/r/{receipt_id}", response_class=HTMLResponse)
def receipt_page(
    receipt_id: str,
    request: Request,
    db: Session = Depends(get_db),
):
    service = PaymentService(db)
    try:
        payment = service.get_by_receipt_id(receipt_id)
    except PaymentNotFoundError:
        return templates.TemplateResponse(
            request,
            "not_found.html",
            {"what": "receipt", "ref": receipt_id},
            status_code=status.HTTP_404_NOT_FOUND,
        )

    booking = service.bookings.get_booking(payment.booking_id)
    creator = service.bookings.creator_repository.get_by_id(booking.creator_id)
    return templates.TemplateResponse(
        request,
        "receipt.html",
        {
            "payment": payment,
            "booking": booking,
            "creator": creator,
        },
    )
