# fannu/domain/state_machine.py

from enum import Enum
from typing import Dict, FrozenSet, Optional, Set, Tuple

from fannu.domain.exceptions import InvalidStateTransitionError


class BookingStatus(str, Enum):
    REQUESTED = "REQUESTED"
    QUOTED = "QUOTED"
    DEPOSIT_PAID = "DEPOSIT_PAID"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DECLINED = "DECLINED"
    DISPUTED = "DISPUTED"
    REFUND_PENDING = "REFUND_PENDING"


class BookingType(str, Enum):
    LIVE_PERFORMANCE = "LIVE_PERFORMANCE"
    MC_HOSTING = "MC_HOSTING"
    BRAND_CONTENT = "BRAND_CONTENT"
    CUSTOM = "CUSTOM"


class BookingEvent(str, Enum):
    SEND_QUOTE = "send_quote"
    REQUOTE = "requote"
    DECLINE = "decline"
    PAY_DEPOSIT = "pay_deposit"
    CONFIRM = "confirm"
    COMPLETE = "complete"
    CANCEL = "cancel"
    OPEN_DISPUTE = "open_dispute"
    RESOLVE = "resolve"
    ISSUE_REFUND = "issue_refund"
    PROCESS_REFUND = "process_refund"


BOOKING_STATUS_LABELS: Dict[BookingStatus, str] = {
    BookingStatus.REQUESTED: "Requested",
    BookingStatus.QUOTED: "Quoted",
    BookingStatus.DEPOSIT_PAID: "Deposit Paid",
    BookingStatus.CONFIRMED: "Confirmed",
    BookingStatus.COMPLETED: "Completed",
    BookingStatus.CANCELLED: "Cancelled",
    BookingStatus.DECLINED: "Declined",
    BookingStatus.DISPUTED: "Disputed",
    BookingStatus.REFUND_PENDING: "Refund Pending",
}

BOOKING_TYPE_LABELS: Dict[BookingType, str] = {
    BookingType.LIVE_PERFORMANCE: "Live Performance",
    BookingType.MC_HOSTING: "MC / Hosting",
    BookingType.BRAND_CONTENT: "Brand Content",
    BookingType.CUSTOM: "Custom",
}


class BookingStateMachine:
    """
    Central lifecycle controller for booking transitions.

    Each event has a fixed set of source states and a single target state.
    RESOLVE is the exception: its target is chosen explicitly from
    RESOLUTION_TARGETS by the caller (defaults to CONFIRMED).

    Admin status overrides do not go through this class.
    """

    _TRANSITIONS: Dict[BookingEvent, Tuple[FrozenSet[BookingStatus], BookingStatus]] = {
        BookingEvent.SEND_QUOTE: (
            frozenset({BookingStatus.REQUESTED}),
            BookingStatus.QUOTED,
        ),
        BookingEvent.REQUOTE: (
            frozenset({BookingStatus.QUOTED}),
            BookingStatus.QUOTED,
        ),
        BookingEvent.DECLINE: (
            frozenset({BookingStatus.REQUESTED, BookingStatus.QUOTED}),
            BookingStatus.DECLINED,
        ),
        BookingEvent.PAY_DEPOSIT: (
            frozenset({BookingStatus.QUOTED}),
            BookingStatus.DEPOSIT_PAID,
        ),
        BookingEvent.CONFIRM: (
            frozenset({BookingStatus.DEPOSIT_PAID}),
            BookingStatus.CONFIRMED,
        ),
        BookingEvent.COMPLETE: (
            frozenset({BookingStatus.CONFIRMED}),
            BookingStatus.COMPLETED,
        ),
        BookingEvent.CANCEL: (
            frozenset({
                BookingStatus.REQUESTED,
                BookingStatus.QUOTED,
                BookingStatus.DEPOSIT_PAID,
                BookingStatus.CONFIRMED,
            }),
            BookingStatus.CANCELLED,
        ),
        BookingEvent.OPEN_DISPUTE: (
            frozenset({BookingStatus.CONFIRMED, BookingStatus.COMPLETED}),
            BookingStatus.DISPUTED,
        ),
        BookingEvent.RESOLVE: (
            frozenset({BookingStatus.DISPUTED}),
            BookingStatus.CONFIRMED,
        ),
        BookingEvent.ISSUE_REFUND: (
            frozenset({BookingStatus.DISPUTED}),
            BookingStatus.REFUND_PENDING,
        ),
        # CANCELLED is only a valid source when a deposit was paid;
        # that guard lives with the payment data in the admin service.
        BookingEvent.PROCESS_REFUND: (
            frozenset({BookingStatus.REFUND_PENDING, BookingStatus.CANCELLED}),
            BookingStatus.CANCELLED,
        ),
    }

    RESOLUTION_TARGETS: FrozenSet[BookingStatus] = frozenset({
        BookingStatus.CONFIRMED,
        BookingStatus.COMPLETED,
    })

    TERMINAL_STATUSES: FrozenSet[BookingStatus] = frozenset({
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.DECLINED,
    })

    @classmethod
    def can_transition(
        cls,
        from_status: BookingStatus,
        event: BookingEvent,
    ) -> bool:
        """
        Returns True if the event is accepted in from_status.
        """
        cls._ensure_valid_status(from_status)
        sources, _ = cls._TRANSITIONS[event]
        return from_status in sources

    @classmethod
    def target_for(
        cls,
        from_status: BookingStatus,
        event: BookingEvent,
        resolution: Optional[BookingStatus] = None,
    ) -> BookingStatus:
        """
        Returns the status the booking moves to, or raises
        InvalidStateTransitionError if the event is illegal from from_status.
        """
        cls._ensure_valid_status(from_status)
        sources, target = cls._TRANSITIONS[event]

        if event is BookingEvent.RESOLVE and resolution is not None:
            cls._ensure_valid_status(resolution)
            if resolution not in cls.RESOLUTION_TARGETS:
                raise InvalidStateTransitionError(
                    from_state=from_status.value,
                    to_state=resolution.value,
                )
            target = resolution

        if from_status not in sources:
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=target.value,
            )
        return target

    @classmethod
    def is_legal_edge(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> bool:
        """
        Returns True if some event moves from_status to to_status.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        for event, (sources, target) in cls._TRANSITIONS.items():
            if from_status not in sources:
                continue
            if target == to_status:
                return True
            if event is BookingEvent.RESOLVE and to_status in cls.RESOLUTION_TARGETS:
                return True
        return False

    @classmethod
    def is_terminal(cls, status: BookingStatus) -> bool:
        """
        Returns True if the state is terminal under the normal flow.
        """
        cls._ensure_valid_status(status)
        return status in cls.TERMINAL_STATUSES

    @classmethod
    def get_allowed_events(cls, status: BookingStatus) -> Set[BookingEvent]:
        """
        Returns the events accepted from the current state.
        """
        cls._ensure_valid_status(status)
        return {
            event
            for event, (sources, _) in cls._TRANSITIONS.items()
            if status in sources
        }

    @staticmethod
    def _ensure_valid_status(status: BookingStatus) -> None:
        if not isinstance(status, BookingStatus):
            raise TypeError(
                f"Expected BookingStatus, got {type(status)}"
            )
