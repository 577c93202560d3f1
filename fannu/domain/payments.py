# fannu/domain/payments.py

from enum import Enum
from typing import Dict, Iterable, Set

from fannu.domain.exceptions import InvalidStateTransitionError


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentType(str, Enum):
    DEPOSIT = "DEPOSIT"
    REMAINDER = "REMAINDER"


class PaymentOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class PaymentStateMachine:
    """Legal payment status changes. Everything else is rejected."""

    _ALLOWED_TRANSITIONS: Dict[PaymentStatus, Set[PaymentStatus]] = {
        PaymentStatus.PENDING: {
            PaymentStatus.PAID,
            PaymentStatus.FAILED,
        },
        PaymentStatus.PAID: {
            PaymentStatus.REFUNDED,
        },
        PaymentStatus.FAILED: set(),
        PaymentStatus.REFUNDED: set(),
    }

    @classmethod
    def can_transition(cls, from_status: PaymentStatus, to_status: PaymentStatus) -> bool:
        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(cls, from_status: PaymentStatus, to_status: PaymentStatus) -> None:
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )


def derive_deposit_status(payments: Iterable) -> PaymentStatus:
    """
    Collapse a booking's payments into a single deposit status.

    REFUNDED wins over PAID, PAID wins over anything else; a booking with
    no settled deposit reads PENDING.
    """
    statuses = {
        payment.status
        for payment in payments
        if payment.type == PaymentType.DEPOSIT
    }
    if PaymentStatus.REFUNDED in statuses:
        return PaymentStatus.REFUNDED
    if PaymentStatus.PAID in statuses:
        return PaymentStatus.PAID
    return PaymentStatus.PENDING
