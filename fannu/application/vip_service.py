import logging
from typing import Optional

from sqlalchemy.orm import Session

from fannu.domain.clock import utc_now
from fannu.domain.creators import (
    CreatorStatus,
    SubscriptionStatus,
    VipChannel,
    VipSource,
)
from fannu.domain.exceptions import ConflictError, CreatorNotFoundError, NotFoundError
from fannu.infrastructure.db.models import VipSubscription
from fannu.infrastructure.repositories.creator_repository import CreatorRepository
from fannu.infrastructure.repositories.vip_repository import VipRepository

logger = logging.getLogger(__name__)


class VipService:
    """Fan opt-ins to a creator's VIP list. Broadcasting is handled elsewhere."""

    def __init__(self, db: Session):
        self.db = db
        self.creator_repository = CreatorRepository(db)
        self.vip_repository = VipRepository(db)

    def subscribe(
        self,
        creator_id: str,
        fan_phone: str,
        channel: VipChannel,
        source: VipSource,
        fan_name: Optional[str] = None,
        source_ref: Optional[str] = None,
    ) -> tuple[VipSubscription, bool]:
        """
        Returns (subscription, reactivated). Raises ConflictError if the
        fan is already an active subscriber.
        """
        creator = self.creator_repository.get_by_id(creator_id)
        if not creator or creator.status != CreatorStatus.ACTIVE:
            raise CreatorNotFoundError(creator_id)

        existing = self.vip_repository.get(creator_id, fan_phone)
        if existing and existing.status == SubscriptionStatus.ACTIVE:
            raise ConflictError(
                "Already subscribed",
                details={"subscription_id": existing.id},
            )

        if existing:
            existing.status = SubscriptionStatus.ACTIVE
            existing.channel = channel
            existing.source = source
            existing.source_ref = source_ref
            existing.fan_name = fan_name or existing.fan_name
            existing.joined_at = utc_now()
            logger.info("Reactivated VIP subscription %s for creator %s", existing.id, creator_id)
            return existing, True

        subscription = self.vip_repository.create(
            creator_id=creator_id,
            fan_phone=fan_phone,
            fan_name=fan_name or None,
            channel=channel,
            source=source,
            source_ref=source_ref or None,
        )
        logger.info("New VIP subscription %s for creator %s", subscription.id, creator_id)
        return subscription, False

    def unsubscribe(self, creator_id: str, fan_phone: str) -> VipSubscription:
        subscription = self.vip_repository.get(creator_id, fan_phone)
        if not subscription:
            raise NotFoundError("Subscription not found")

        subscription.status = SubscriptionStatus.UNSUBSCRIBED
        return subscription
