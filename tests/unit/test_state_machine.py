# tests/unit/test_state_machine.py

import pytest

from eventbook.domain.state_machine import BookingStateMachine, BookingStatus
from eventbook.domain.exceptions import InvalidStateTransitionError


# ---------------------
# VALID TRANSITIONS
# ---------------------

def test_valid_happy_path():
    assert BookingStateMachine.can_transition(
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
    )

    assert BookingStateMachine.can_transition(
        BookingStatus.CONFIRMED,
        BookingStatus.COMPLETED,
    )


def test_cancellation_allowed_before_and_after_confirmation():
    for status in (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.COMPLETED):
        assert BookingStateMachine.can_transition(status, BookingStatus.CANCELLED)


def test_dispute_only_from_counted_states():
    assert BookingStateMachine.can_transition(BookingStatus.CONFIRMED, BookingStatus.DISPUTED)
    assert BookingStateMachine.can_transition(BookingStatus.COMPLETED, BookingStatus.DISPUTED)
    assert not BookingStateMachine.can_transition(BookingStatus.PENDING, BookingStatus.DISPUTED)


# ---------------------
# INVALID TRANSITIONS
# ---------------------

def test_cannot_complete_pending_booking():
    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.validate_transition(
            BookingStatus.PENDING,
            BookingStatus.COMPLETED,
        )


@pytest.mark.parametrize(
    "status",
    [BookingStatus.CANCELLED, BookingStatus.REFUNDED, BookingStatus.DISPUTED],
)
def test_terminal_states(status):
    assert BookingStateMachine.is_terminal(status)

    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.validate_transition(
            status,
            BookingStatus.CONFIRMED,
        )


def test_transition_error_carries_states():
    with pytest.raises(InvalidStateTransitionError) as exc_info:
        BookingStateMachine.validate_transition(
            BookingStatus.CANCELLED,
            BookingStatus.PENDING,
        )

    assert exc_info.value.from_state == "cancelled"
    assert exc_info.value.to_state == "pending"
    assert exc_info.value.code == "INVALID_STATE"


def test_counted_states():
    assert BookingStateMachine.is_counted(BookingStatus.CONFIRMED)
    assert BookingStateMachine.is_counted(BookingStatus.COMPLETED)
    assert not BookingStateMachine.is_counted(BookingStatus.PENDING)
    assert not BookingStateMachine.is_counted(BookingStatus.DISPUTED)


def test_invalid_type_guard():
    with pytest.raises(TypeError):
        BookingStateMachine.validate_transition(
            "pending",  # invalid type
            BookingStatus.CONFIRMED,
        )
