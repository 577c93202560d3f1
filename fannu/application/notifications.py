# fannu/application/notifications.py

import logging

from sqlalchemy.orm import Session

from fannu.domain.creators import VipChannel
from fannu.infrastructure.db.models import Booking
from fannu.infrastructure.repositories.outbox_repository import OutboxRepository

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Queues outbound booker/creator messages in the outbox.

    Rows are written in the caller's transaction, so a message exists iff
    the state change that caused it committed. Delivery happens elsewhere
    and its failures never touch booking state.
    """

    def __init__(self, db: Session):
        self.outbox = OutboxRepository(db)

    def notify_booker(
        self,
        booking: Booking,
        event_type: str,
        payload: dict | None = None,
        dedupe_suffix: str = "",
        channel: VipChannel = VipChannel.SMS,
    ) -> None:
        self._enqueue(
            booking=booking,
            recipient="booker",
            phone=booking.booker_phone,
            event_type=event_type,
            payload=payload,
            dedupe_suffix=dedupe_suffix,
            channel=channel,
        )

    def notify_creator(
        self,
        booking: Booking,
        creator_phone: str,
        event_type: str,
        payload: dict | None = None,
        dedupe_suffix: str = "",
        channel: VipChannel = VipChannel.WHATSAPP,
    ) -> None:
        self._enqueue(
            booking=booking,
            recipient="creator",
            phone=creator_phone,
            event_type=event_type,
            payload=payload,
            dedupe_suffix=dedupe_suffix,
            channel=channel,
        )

    def _enqueue(
        self,
        booking: Booking,
        recipient: str,
        phone: str,
        event_type: str,
        payload: dict | None,
        dedupe_suffix: str,
        channel: VipChannel,
    ) -> None:
        message = {
            "booking_id": booking.id,
            "reference_code": booking.reference_code,
            "recipient": recipient,
            "phone": phone,
            "channel": channel.value,
            **(payload or {}),
        }
        dedupe_key = f"booking:{booking.id}:{event_type}:{recipient}"
        if dedupe_suffix:
            dedupe_key = f"{dedupe_key}:{dedupe_suffix}"

        event = self.outbox.add(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type=event_type,
            payload=message,
            dedupe_key=dedupe_key,
        )
        if event is None:
            logger.info("Notification %s already queued, skipping", dedupe_key)
