# fannu/infrastructure/repositories/outbox_repository.py

import json

from sqlalchemy.orm import Session
from sqlalchemy import select

from fannu.domain.clock import utc_now
from fannu.infrastructure.db.models import OutboxEvent


class OutboxRepository:

    def __init__(self, db: Session):
        self.db = db

    def add(
        self,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: dict,
        dedupe_key: str,
    ) -> OutboxEvent | None:
        """Insert unless an event with the same dedupe key already exists."""

        existing = self.db.execute(
            select(OutboxEvent).where(OutboxEvent.dedupe_key == dedupe_key)
        ).scalar_one_or_none()
        if existing:
            return None

        event = OutboxEvent(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=json.dumps(payload, sort_keys=True, default=str),
            dedupe_key=dedupe_key,
            status="PENDING",
            attempts=0,
        )
        self.db.add(event)
        self.db.flush()
        return event

    def get_by_id(self, event_id: str) -> OutboxEvent | None:
        stmt = select(OutboxEvent).where(OutboxEvent.id == event_id).with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def list_events(self, status: str | None = None, limit: int = 100) -> list[OutboxEvent]:
        stmt = select(OutboxEvent).order_by(OutboxEvent.created_at).limit(limit)
        if status:
            stmt = stmt.where(OutboxEvent.status == status)
        return list(self.db.execute(stmt).scalars().all())

    def mark_published(self, event: OutboxEvent) -> None:
        event.status = "PUBLISHED"
        event.attempts += 1
        event.published_at = utc_now()
