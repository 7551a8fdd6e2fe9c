# eventbook/domain/state_machine.py

from enum import Enum
from typing import Dict, Set

from eventbook.domain.exceptions import InvalidStateTransitionError


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    DISPUTED = "disputed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class EventStatus(str, Enum):
    DRAFT = "draft"
    OPEN = "open"
    FULL = "full"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Bookings in these states hold spots at their event.
COUNTED_STATUSES = frozenset({BookingStatus.CONFIRMED, BookingStatus.COMPLETED})

# Bookings in these states no longer block a new booking for the same user.
RELEASED_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.REFUNDED})


class BookingStateMachine:
    """
    Central lifecycle controller for booking transitions.
    Defines the legal state transitions.

    ``disputed`` is terminal until an out-of-band investigation resolves it.
    """

    _ALLOWED_TRANSITIONS: Dict[BookingStatus, Set[BookingStatus]] = {
        BookingStatus.PENDING: {
            BookingStatus.CONFIRMED,
            BookingStatus.CANCELLED,
        },
        BookingStatus.CONFIRMED: {
            BookingStatus.CANCELLED,
            BookingStatus.COMPLETED,
            BookingStatus.DISPUTED,
            BookingStatus.REFUNDED,
        },
        BookingStatus.COMPLETED: {
            BookingStatus.CANCELLED,
            BookingStatus.DISPUTED,
            BookingStatus.REFUNDED,
        },
        BookingStatus.CANCELLED: set(),
        BookingStatus.REFUNDED: set(),
        BookingStatus.DISPUTED: set(),
    }

    @classmethod
    def can_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: BookingStatus) -> bool:
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def is_counted(cls, status: BookingStatus) -> bool:
        """
        Returns True if a booking in this state occupies event capacity.
        """
        cls._ensure_valid_status(status)
        return status in COUNTED_STATUSES

    @staticmethod
    def _ensure_valid_status(status: BookingStatus) -> None:
        if not isinstance(status, BookingStatus):
            raise TypeError(
                f"Expected BookingStatus, got {type(status)}"
            )
