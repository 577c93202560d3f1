# fannu/infrastructure/repositories/webhook_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from fannu.infrastructure.db.models import PaymentWebhookEvent


class WebhookRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_delivery(
        self,
        provider: str,
        psp_ref: str,
        payload_hash: str,
    ) -> PaymentWebhookEvent | None:

        stmt = (
            select(PaymentWebhookEvent)
            .where(PaymentWebhookEvent.provider == provider)
            .where(PaymentWebhookEvent.psp_ref == psp_ref)
            .where(PaymentWebhookEvent.payload_hash == payload_hash)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def record_delivery(self, **fields) -> PaymentWebhookEvent:
        delivery = PaymentWebhookEvent(**fields)
        self.db.add(delivery)
        self.db.flush()
        return delivery
