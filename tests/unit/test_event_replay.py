# tests/unit/test_event_replay.py

from types import SimpleNamespace

import pytest

from fannu.domain.events import (
    ActorType,
    EventType,
    has_event,
    override_event_type,
    replay_statuses,
    transition_metadata,
)
from fannu.domain.exceptions import InvalidStateTransitionError
from fannu.domain.state_machine import BookingStatus as S


def _entry(event_type, from_status, to_status, actor=ActorType.SYSTEM):
    return SimpleNamespace(
        event_type=event_type,
        actor_type=actor,
        event_metadata=transition_metadata(from_status, to_status),
    )


def test_replays_happy_path():
    entries = [
        _entry("requested", None, S.REQUESTED, ActorType.BOOKER),
        _entry("quote_sent", S.REQUESTED, S.QUOTED, ActorType.CREATOR),
        SimpleNamespace(
            event_type="payment_failed",
            actor_type=ActorType.SYSTEM,
            event_metadata={"payment_id": "p1"},
        ),
        _entry("deposit_paid", S.QUOTED, S.DEPOSIT_PAID),
        _entry("booking_confirmed", S.DEPOSIT_PAID, S.CONFIRMED, ActorType.CREATOR),
    ]

    assert replay_statuses(entries) == [S.REQUESTED, S.QUOTED, S.DEPOSIT_PAID, S.CONFIRMED]


def test_illegal_jump_is_rejected():
    entries = [
        _entry("requested", None, S.REQUESTED, ActorType.BOOKER),
        _entry("booking_confirmed", S.REQUESTED, S.CONFIRMED, ActorType.CREATOR),
    ]

    with pytest.raises(InvalidStateTransitionError):
        replay_statuses(entries)


def test_admin_override_is_exempt():
    entries = [
        _entry("requested", None, S.REQUESTED, ActorType.BOOKER),
        _entry(override_event_type(S.CONFIRMED), S.REQUESTED, S.CONFIRMED, ActorType.ADMIN),
        _entry("booking_completed", S.CONFIRMED, S.COMPLETED, ActorType.CREATOR),
    ]

    assert replay_statuses(entries)[-1] == S.COMPLETED


def test_override_prefix_by_non_admin_is_not_exempt():
    entries = [
        _entry("requested", None, S.REQUESTED, ActorType.BOOKER),
        _entry(override_event_type(S.CONFIRMED), S.REQUESTED, S.CONFIRMED, ActorType.CREATOR),
    ]

    with pytest.raises(InvalidStateTransitionError):
        replay_statuses(entries)


def test_history_must_start_requested():
    with pytest.raises(InvalidStateTransitionError):
        replay_statuses([_entry("quote_sent", None, S.QUOTED)])


def test_out_of_order_entry_is_rejected():
    entries = [
        _entry("requested", None, S.REQUESTED, ActorType.BOOKER),
        _entry("deposit_paid", S.QUOTED, S.DEPOSIT_PAID),
    ]

    with pytest.raises(InvalidStateTransitionError):
        replay_statuses(entries)


def test_has_event():
    entries = [_entry("requested", None, S.REQUESTED, ActorType.BOOKER)]

    assert has_event(entries, EventType.REQUESTED)
    assert has_event(entries, "requested")
    assert not has_event(entries, EventType.DEPOSIT_PAID)
