import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from eventbook.domain.capabilities import Capability, require_capability
from eventbook.domain.exceptions import (
    CapacityExceededError,
    DuplicateRequestError,
    InvalidStateError,
    NotFoundError,
    PaymentRequiredError,
)
from eventbook.domain.money import to_amount
from eventbook.domain.state_machine import (
    BookingStateMachine,
    BookingStatus,
    EventStatus,
    PaymentStatus,
)
from eventbook.infrastructure.db.models import Booking, Event, User
from eventbook.infrastructure.repositories.booking_repository import BookingRepository
from eventbook.infrastructure.repositories.event_repository import EventRepository

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "INR"


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class BookingService:
    """
    Application service coordinating the booking lifecycle.

    Every path that moves a booking in or out of a counted state locks the
    event row first and finishes with EventRepository.recount_participants,
    so the participant counter has exactly one writer.
    """

    def __init__(self, db: Session, currency: str = DEFAULT_CURRENCY):
        self.db = db
        self.currency = currency
        self.booking_repository = BookingRepository(db)
        self.event_repository = EventRepository(db)

    # -----------------------------
    # Queries
    # -----------------------------
    def get_booking(self, booking_id: str, actor: User) -> Booking:
        booking = self._get_or_raise(booking_id)
        require_capability(
            actor,
            booking,
            {Capability.OWNER, Capability.HOST, Capability.ADMIN},
        )
        return booking

    def list_bookings(
        self,
        actor: User,
        view: str = "user",
        status: BookingStatus | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Booking], int]:
        page = max(page, 1)
        limit = max(1, min(limit, 100))
        filters = {"host_id": actor.id} if view == "host" else {"user_id": actor.id}
        return self.booking_repository.list_bookings(
            status=status,
            offset=(page - 1) * limit,
            limit=limit,
            **filters,
        )

    # -----------------------------
    # Commands
    # -----------------------------
    def create_booking(
        self,
        event_id: str,
        user_id: str,
        quantity: int = 1,
        special_requests: str | None = None,
    ) -> Booking:
        event = self.event_repository.lock(event_id)
        if not event:
            raise NotFoundError("Event not found", code="EVENT_NOT_FOUND")

        self.ensure_bookable(event, quantity, capacity_code="EVENT_FULL")
        self.ensure_no_active_booking(user_id, event_id)

        free = event.price == 0
        booking = Booking(
            user_id=user_id,
            event_id=event.id,
            host_id=event.host_id,
            quantity=quantity,
            amount=to_amount(event.price * quantity),
            currency=self.currency,
            special_requests=special_requests,
            status=BookingStatus.CONFIRMED if free else BookingStatus.PENDING,
            payment_status=PaymentStatus.PAID if free else PaymentStatus.PENDING,
        )
        self.booking_repository.add(booking)

        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateRequestError(
                "You already have a booking for this event"
            ) from exc

        if free:
            self.event_repository.add_participant(event.id, user_id)
            self.event_repository.recount_participants(event)

        logger.info(
            "Booking created. booking_id=%s event_id=%s user_id=%s quantity=%s status=%s",
            booking.id,
            event.id,
            user_id,
            quantity,
            booking.status.value,
        )
        return booking

    def confirm_booking(self, booking_id: str, actor: User) -> Booking:
        booking = self._get_or_raise(booking_id)
        require_capability(
            actor,
            booking,
            {Capability.HOST, Capability.ADMIN},
            "Access denied. Only hosts can confirm bookings",
        )
        if booking.status != BookingStatus.PENDING:
            raise InvalidStateError("Booking cannot be confirmed")
        if booking.payment_status != PaymentStatus.PAID:
            raise PaymentRequiredError(
                "Payment must be completed before confirming booking"
            )

        event = self.event_repository.lock(booking.event_id)
        booking = self.booking_repository.lock(booking_id)
        if booking.status != BookingStatus.PENDING:
            raise InvalidStateError("Booking cannot be confirmed")
        if event.current_participants + booking.quantity > event.max_participants:
            raise CapacityExceededError("Not enough spots available")

        self.transition(booking, BookingStatus.CONFIRMED)
        self.event_repository.add_participant(event.id, booking.user_id)
        self.event_repository.recount_participants(event)
        return booking

    def complete_booking(self, booking_id: str, actor: User) -> Booking:
        booking = self._get_or_raise(booking_id)
        require_capability(
            actor,
            booking,
            {Capability.HOST, Capability.ADMIN},
            "Access denied. Only hosts can complete bookings",
        )
        self.transition(booking, BookingStatus.COMPLETED)
        return booking

    def cancel_booking(
        self,
        booking_id: str,
        actor: User,
        reason: str | None = None,
    ) -> Booking:
        booking = self._get_or_raise(booking_id)
        require_capability(
            actor,
            booking,
            {Capability.OWNER, Capability.HOST, Capability.ADMIN},
        )
        if booking.status == BookingStatus.CANCELLED:
            raise InvalidStateError("Booking already cancelled", code="ALREADY_CANCELLED")
        BookingStateMachine.validate_transition(booking.status, BookingStatus.CANCELLED)

        event = self.event_repository.lock(booking.event_id)
        booking = self.booking_repository.lock(booking_id)
        if booking.status == BookingStatus.CANCELLED:
            raise InvalidStateError("Booking already cancelled", code="ALREADY_CANCELLED")

        was_counted = BookingStateMachine.is_counted(booking.status)
        self.transition(booking, BookingStatus.CANCELLED)
        booking.cancellation_reason = reason
        if was_counted:
            self.release_spot(booking, event)
        return booking

    # -----------------------------
    # Shared bookkeeping
    # -----------------------------
    def ensure_bookable(
        self,
        event: Event,
        quantity: int,
        capacity_code: str,
    ) -> None:
        if event.status == EventStatus.FULL:
            raise CapacityExceededError("Event is full", code="EVENT_FULL")
        if event.status != EventStatus.OPEN:
            raise InvalidStateError(
                "Event is not open for booking",
                code="EVENT_NOT_OPEN",
            )
        if event.current_participants + quantity > event.max_participants:
            raise CapacityExceededError(
                "Not enough spots available",
                code=capacity_code,
            )

    def ensure_no_active_booking(self, user_id: str, event_id: str) -> None:
        if self.booking_repository.get_active_for_user_event(user_id, event_id):
            raise DuplicateRequestError("You already have a booking for this event")

    def release_spot(self, booking: Booking, event: Event | None) -> None:
        """Undo the participant bookkeeping of a booking that stopped counting."""
        if event is None:
            logger.warning(
                "Event missing while releasing booking. booking_id=%s event_id=%s",
                booking.id,
                booking.event_id,
            )
            return
        self.event_repository.remove_participant(event.id, booking.user_id)
        self.event_repository.recount_participants(event)

    def _get_or_raise(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise NotFoundError("Booking not found", code="BOOKING_NOT_FOUND")
        return booking

    def transition(self, booking: Booking, to_status: BookingStatus) -> None:
        BookingStateMachine.validate_transition(booking.status, to_status)
        self.booking_repository.update_status(booking, to_status)
        logger.info(
            "Booking status changed. booking_id=%s event_id=%s status=%s",
            booking.id,
            booking.event_id,
            to_status.value,
        )
