# fannu/domain/events.py

from enum import Enum
from typing import Iterable, List

from fannu.domain.exceptions import InvalidStateTransitionError
from fannu.domain.state_machine import BookingStateMachine, BookingStatus


class ActorType(str, Enum):
    BOOKER = "BOOKER"
    CREATOR = "CREATOR"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class EventType(str, Enum):
    REQUESTED = "requested"
    QUOTE_SENT = "quote_sent"
    QUOTE_ACCEPTED = "quote_accepted"
    QUOTE_DECLINED = "quote_declined"
    DEPOSIT_PAID = "deposit_paid"
    PAYMENT_FAILED = "payment_failed"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_COMPLETED = "booking_completed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_DECLINED = "booking_declined"
    ADMIN_OVERRIDE = "admin_override"
    NOTES_UPDATED = "notes_updated"
    DISPUTE_OPENED = "dispute_opened"
    DISPUTE_RESOLVED = "dispute_resolved"
    REFUND_INITIATED = "refund_initiated"
    REFUND_PROCESSED = "refund_processed"


OVERRIDE_EVENT_PREFIX = "status_overridden_to_"


def override_event_type(status: BookingStatus) -> str:
    return f"{OVERRIDE_EVENT_PREFIX}{status.value}"


def is_override_entry(entry) -> bool:
    return (
        entry.actor_type == ActorType.ADMIN
        and str(entry.event_type).startswith(OVERRIDE_EVENT_PREFIX)
    )


def transition_metadata(
    from_status: BookingStatus | None,
    to_status: BookingStatus,
    **extra,
) -> dict:
    metadata = dict(extra)
    if from_status is not None:
        metadata["from_status"] = from_status.value
    metadata["to_status"] = to_status.value
    return metadata


def has_event(entries: Iterable, event_type: EventType | str) -> bool:
    wanted = event_type.value if isinstance(event_type, EventType) else event_type
    return any(entry.event_type == wanted for entry in entries)


def replay_statuses(entries: Iterable) -> List[BookingStatus]:
    """
    Rebuild the status sequence recorded in a booking's event log.

    Entries without a to_status (notes, failed payments, declined quotes)
    do not move the booking. Every other step must be an edge of
    BookingStateMachine, except admin status overrides. Raises
    InvalidStateTransitionError on the first step that is not.
    """
    statuses: List[BookingStatus] = []

    for entry in entries:
        metadata = entry.event_metadata or {}
        to_value = metadata.get("to_status")
        if to_value is None:
            continue
        to_status = BookingStatus(to_value)

        if not statuses:
            if to_status != BookingStatus.REQUESTED:
                raise InvalidStateTransitionError(
                    from_state="<none>",
                    to_state=to_status.value,
                )
            statuses.append(to_status)
            continue

        current = statuses[-1]
        from_value = metadata.get("from_status")
        if from_value is not None and BookingStatus(from_value) != current:
            raise InvalidStateTransitionError(
                from_state=current.value,
                to_state=to_status.value,
                message=(
                    f"Event log out of order: entry {entry.event_type} starts "
                    f"from {from_value} but history is at {current.value}"
                ),
            )
        if not is_override_entry(entry) and not BookingStateMachine.is_legal_edge(current, to_status):
            raise InvalidStateTransitionError(
                from_state=current.value,
                to_state=to_status.value,
            )
        statuses.append(to_status)

    return statuses
