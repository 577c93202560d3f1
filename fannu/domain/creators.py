from enum import Enum


class CreatorStatus(str, Enum):
    PENDING_APPROVAL = "PENDING_APPROVAL"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class VipChannel(str, Enum):
    TELEGRAM = "TELEGRAM"
    WHATSAPP = "WHATSAPP"
    SMS = "SMS"


class VipSource(str, Enum):
    DROP_PAGE = "DROP_PAGE"
    CREATOR_PROFILE = "CREATOR_PROFILE"
    DIRECT_LINK = "DIRECT_LINK"


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    UNSUBSCRIBED = "UNSUBSCRIBED"
