# tests/unit/test_state_machine.py

import pytest

from fannu.domain.state_machine import BookingEvent, BookingStateMachine, BookingStatus
from fannu.domain.exceptions import InvalidStateTransitionError


# ---------------------
# VALID TRANSITIONS
# ---------------------

def test_valid_happy_path():
    path = [
        (BookingStatus.REQUESTED, BookingEvent.SEND_QUOTE, BookingStatus.QUOTED),
        (BookingStatus.QUOTED, BookingEvent.PAY_DEPOSIT, BookingStatus.DEPOSIT_PAID),
        (BookingStatus.DEPOSIT_PAID, BookingEvent.CONFIRM, BookingStatus.CONFIRMED),
        (BookingStatus.CONFIRMED, BookingEvent.COMPLETE, BookingStatus.COMPLETED),
    ]

    for from_status, event, expected in path:
        assert BookingStateMachine.can_transition(from_status, event)
        assert BookingStateMachine.target_for(from_status, event) == expected


def test_requote_keeps_booking_quoted():
    assert BookingStateMachine.target_for(
        BookingStatus.QUOTED,
        BookingEvent.REQUOTE,
    ) == BookingStatus.QUOTED


def test_decline_from_requested_and_quoted():
    for status in (BookingStatus.REQUESTED, BookingStatus.QUOTED):
        assert BookingStateMachine.target_for(status, BookingEvent.DECLINE) == BookingStatus.DECLINED


def test_dispute_branch():
    for status in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED):
        assert BookingStateMachine.target_for(
            status,
            BookingEvent.OPEN_DISPUTE,
        ) == BookingStatus.DISPUTED

    assert BookingStateMachine.target_for(
        BookingStatus.DISPUTED,
        BookingEvent.ISSUE_REFUND,
    ) == BookingStatus.REFUND_PENDING

    assert BookingStateMachine.target_for(
        BookingStatus.REFUND_PENDING,
        BookingEvent.PROCESS_REFUND,
    ) == BookingStatus.CANCELLED


def test_resolve_defaults_to_confirmed():
    assert BookingStateMachine.target_for(
        BookingStatus.DISPUTED,
        BookingEvent.RESOLVE,
    ) == BookingStatus.CONFIRMED


def test_resolve_to_completed_when_explicit():
    assert BookingStateMachine.target_for(
        BookingStatus.DISPUTED,
        BookingEvent.RESOLVE,
        resolution=BookingStatus.COMPLETED,
    ) == BookingStatus.COMPLETED


def test_cancel_before_completion():
    for status in (
        BookingStatus.REQUESTED,
        BookingStatus.QUOTED,
        BookingStatus.DEPOSIT_PAID,
        BookingStatus.CONFIRMED,
    ):
        assert BookingStateMachine.target_for(status, BookingEvent.CANCEL) == BookingStatus.CANCELLED


# ---------------------
# INVALID TRANSITIONS
# ---------------------

def test_cannot_skip_payment():
    with pytest.raises(InvalidStateTransitionError) as exc_info:
        BookingStateMachine.target_for(
            BookingStatus.QUOTED,
            BookingEvent.CONFIRM,
        )

    assert exc_info.value.from_state == "QUOTED"
    assert exc_info.value.to_state == "CONFIRMED"


def test_cannot_pay_without_quote():
    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.target_for(
            BookingStatus.REQUESTED,
            BookingEvent.PAY_DEPOSIT,
        )


def test_cannot_quote_after_payment():
    for status in (BookingStatus.DEPOSIT_PAID, BookingStatus.CONFIRMED):
        with pytest.raises(InvalidStateTransitionError):
            BookingStateMachine.target_for(status, BookingEvent.SEND_QUOTE)
        with pytest.raises(InvalidStateTransitionError):
            BookingStateMachine.target_for(status, BookingEvent.REQUOTE)


def test_resolve_rejects_other_targets():
    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.target_for(
            BookingStatus.DISPUTED,
            BookingEvent.RESOLVE,
            resolution=BookingStatus.QUOTED,
        )


def test_dispute_not_allowed_before_confirmation():
    assert not BookingStateMachine.can_transition(
        BookingStatus.DEPOSIT_PAID,
        BookingEvent.OPEN_DISPUTE,
    )


# ---------------------
# TERMINAL STATES
# ---------------------

@pytest.mark.parametrize(
    "status",
    [BookingStatus.COMPLETED, BookingStatus.DECLINED],
)
def test_terminal_states_accept_only_dispute_or_nothing(status):
    assert BookingStateMachine.is_terminal(status)

    allowed = BookingStateMachine.get_allowed_events(status)
    if status == BookingStatus.COMPLETED:
        assert allowed == {BookingEvent.OPEN_DISPUTE}
    else:
        assert allowed == set()


def test_cancelled_only_accepts_refund_processing():
    assert BookingStateMachine.is_terminal(BookingStatus.CANCELLED)
    assert BookingStateMachine.get_allowed_events(BookingStatus.CANCELLED) == {
        BookingEvent.PROCESS_REFUND,
    }


def test_side_states_are_not_terminal():
    assert not BookingStateMachine.is_terminal(BookingStatus.DISPUTED)
    assert not BookingStateMachine.is_terminal(BookingStatus.REFUND_PENDING)


# ---------------------
# EDGES
# ---------------------

def test_is_legal_edge():
    assert BookingStateMachine.is_legal_edge(BookingStatus.REQUESTED, BookingStatus.QUOTED)
    assert BookingStateMachine.is_legal_edge(BookingStatus.QUOTED, BookingStatus.QUOTED)
    assert BookingStateMachine.is_legal_edge(BookingStatus.DISPUTED, BookingStatus.COMPLETED)
    assert not BookingStateMachine.is_legal_edge(BookingStatus.REQUESTED, BookingStatus.CONFIRMED)
    assert not BookingStateMachine.is_legal_edge(BookingStatus.DECLINED, BookingStatus.QUOTED)


def test_rejects_non_enum_status():
    with pytest.raises(TypeError):
        BookingStateMachine.can_transition("REQUESTED", BookingEvent.SEND_QUOTE)
