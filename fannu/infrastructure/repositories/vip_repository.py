# fannu/infrastructure/repositories/vip_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from fannu.domain.creators import SubscriptionStatus
from fannu.infrastructure.db.models import VipSubscription


class VipRepository:

    def __init__(self, db: Session):
        self.db = db

    def get(self, creator_id: str, fan_phone: str) -> VipSubscription | None:
        stmt = (
            select(VipSubscription)
            .where(VipSubscription.creator_id == creator_id)
            .where(VipSubscription.fan_phone == fan_phone)
            .with_for_update()
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def create(self, **fields) -> VipSubscription:
        subscription = VipSubscription(status=SubscriptionStatus.ACTIVE, **fields)
        self.db.add(subscription)
        self.db.flush()
        return subscription
