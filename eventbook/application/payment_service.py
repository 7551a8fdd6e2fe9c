import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from eventbook.application.booking_service import BookingService, as_utc
from eventbook.domain.capabilities import Capability, UserRole, require_capability
from eventbook.domain.exceptions import (
    DuplicateRequestError,
    GatewayError,
    InvalidRefundError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
    PaymentRequiredError,
    PermissionDeniedError,
)
from eventbook.domain.money import from_minor_units, to_amount, to_minor_units
from eventbook.domain.state_machine import (
    BookingStateMachine,
    BookingStatus,
    EventStatus,
    PaymentStatus,
)
from eventbook.infrastructure.db.models import Booking, Payment, User
from eventbook.infrastructure.gateways.payment_gateway import (
    GatewayIntent,
    IntentStatus,
    PaymentGateway,
)
from eventbook.infrastructure.repositories.payment_repository import PaymentRepository

logger = logging.getLogger(__name__)


@dataclass
class PaymentIntentResult:
    client_secret: str
    payment_intent_id: str
    amount: int
    currency: str
    key_id: str | None = None


@dataclass
class IntentMetadata:
    event_id: str
    user_id: str
    quantity: int
    booking_id: str | None = None

    @classmethod
    def parse(cls, metadata: dict[str, str]) -> "IntentMetadata":
        event_id = metadata.get("eventId")
        user_id = metadata.get("userId")
        raw_quantity = metadata.get("quantity")
        if not event_id or not user_id or not raw_quantity:
            raise InvalidRequestError("Invalid payment metadata", code="INVALID_METADATA")
        try:
            quantity = int(raw_quantity)
        except ValueError as exc:
            raise InvalidRequestError("Invalid payment metadata", code="INVALID_METADATA") from exc
        if quantity < 1:
            raise InvalidRequestError("Invalid payment metadata", code="INVALID_METADATA")
        return cls(
            event_id=event_id,
            user_id=user_id,
            quantity=quantity,
            booking_id=metadata.get("bookingId") or None,
        )

    def to_gateway(self) -> dict[str, str]:
        values = {
            "eventId": self.event_id,
            "userId": self.user_id,
            "quantity": str(self.quantity),
        }
        if self.booking_id:
            values["bookingId"] = self.booking_id
        return values


class PaymentService:
    """
    Payment-intent issuance, confirmation and refunds.

    Gateway round-trips always happen before any row lock is taken; the
    locked section only touches local state. Confirmation is keyed on the
    payment intent id, which is unique on bookings.
    """

    def __init__(self, db: Session, gateway: PaymentGateway, currency: str = "INR"):
        self.db = db
        self.gateway = gateway
        self.currency = currency
        self.bookings = BookingService(db, currency=currency)
        self.booking_repository = self.bookings.booking_repository
        self.event_repository = self.bookings.event_repository
        self.payment_repository = PaymentRepository(db)

    def create_payment_intent(
        self,
        event_id: str,
        user_id: str,
        quantity: int = 1,
        booking_id: str | None = None,
    ) -> PaymentIntentResult:
        event = self.event_repository.get_by_id(event_id)
        if not event:
            raise NotFoundError("Event not found", code="EVENT_NOT_FOUND")
        if as_utc(event.starts_at) < datetime.now(timezone.utc):
            raise InvalidStateError("Cannot book past events", code="EVENT_PAST")

        if booking_id:
            booking = self.booking_repository.get_by_id(booking_id)
            if not booking or booking.event_id != event.id:
                raise NotFoundError("Booking not found", code="BOOKING_NOT_FOUND")
            if booking.user_id != user_id:
                raise PermissionDeniedError("Access denied")
            if booking.status != BookingStatus.PENDING or booking.payment_status == PaymentStatus.PAID:
                raise InvalidStateError("Booking is not awaiting payment")
            quantity = booking.quantity
        else:
            self.bookings.ensure_no_active_booking(user_id, event.id)

        self.bookings.ensure_bookable(event, quantity, capacity_code="INSUFFICIENT_CAPACITY")
        if event.price == 0:
            raise InvalidStateError(
                "Free events do not require payment",
                code="PAYMENT_NOT_REQUIRED",
            )

        amount_minor = to_minor_units(event.price * quantity)
        metadata = IntentMetadata(
            event_id=event.id,
            user_id=user_id,
            quantity=quantity,
            booking_id=booking_id,
        )
        intent = self.gateway.create_intent(
            amount_minor,
            self.currency,
            metadata.to_gateway(),
        )
        return PaymentIntentResult(
            client_secret=intent.client_secret or intent.id,
            payment_intent_id=intent.id,
            amount=amount_minor,
            currency=self.currency,
            key_id=self.gateway.public_key(),
        )

    def confirm_payment(self, payment_intent_id: str) -> tuple[Booking, bool]:
        """
        Materialize the booking for a succeeded intent.

        Returns ``(booking, created)``; repeated calls for the same intent
        return the existing booking with ``created=False``.
        """
        existing = self.booking_repository.get_by_payment_intent_id(payment_intent_id)
        if existing:
            logger.info(
                "Payment already confirmed. payment_intent_id=%s booking_id=%s",
                payment_intent_id,
                existing.id,
            )
            return existing, False

        intent = self.gateway.retrieve_intent(payment_intent_id)
        if intent.status != IntentStatus.SUCCEEDED:
            raise PaymentRequiredError(
                "Payment not successful",
                code="PAYMENT_NOT_SUCCESSFUL",
            )
        metadata = IntentMetadata.parse(intent.metadata)

        event = self.event_repository.lock(metadata.event_id)
        if not event:
            raise NotFoundError("Event not found", code="EVENT_NOT_FOUND")

        existing = self.booking_repository.get_by_payment_intent_id(payment_intent_id)
        if existing:
            return existing, False

        booking = self._attach_to_pending_booking(metadata, intent)
        if booking is None:
            booking = self._materialize_booking(event, metadata, intent)

        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            existing = self.booking_repository.get_by_payment_intent_id(payment_intent_id)
            if existing:
                logger.info(
                    "Concurrent confirmation resolved to existing booking. payment_intent_id=%s booking_id=%s",
                    payment_intent_id,
                    existing.id,
                )
                return existing, False
            raise DuplicateRequestError(
                "User already holds a booking for this event",
            ) from exc

        self._record_payment(booking, intent)
        if BookingStateMachine.is_counted(booking.status):
            self.event_repository.add_participant(event.id, booking.user_id)
            self.event_repository.recount_participants(event)

        logger.info(
            "Payment confirmed. payment_intent_id=%s booking_id=%s event_id=%s status=%s",
            payment_intent_id,
            booking.id,
            event.id,
            booking.status.value,
        )
        return booking, True

    def process_refund(
        self,
        booking_id: str,
        amount: Decimal | None = None,
        reason: str | None = None,
        actor: User | None = None,
    ) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise NotFoundError("Booking not found", code="BOOKING_NOT_FOUND")
        if actor is not None:
            require_capability(
                actor,
                booking,
                {Capability.HOST, Capability.ADMIN},
                "Access denied. Only hosts can issue refunds",
            )
        if booking.status == BookingStatus.CANCELLED:
            raise InvalidStateError("Booking already cancelled", code="ALREADY_CANCELLED")
        if booking.payment_status != PaymentStatus.PAID or not booking.payment_intent_id:
            raise InvalidRefundError("No payment to refund")
        BookingStateMachine.validate_transition(booking.status, BookingStatus.CANCELLED)

        refund_amount = to_amount(amount) if amount is not None else booking.amount
        if refund_amount <= 0 or refund_amount > booking.amount:
            raise InvalidRefundError(
                "Refund amount must be positive and not exceed the captured amount",
                code="REFUND_EXCEEDS_AMOUNT",
            )

        try:
            refund = self.gateway.create_refund(
                booking.payment_intent_id,
                to_minor_units(refund_amount) if amount is not None else None,
                reason,
            )
        except GatewayError as exc:
            logger.error(
                "Refund failed at gateway. booking_id=%s payment_intent_id=%s error=%s",
                booking.id,
                booking.payment_intent_id,
                exc.message,
            )
            raise GatewayError(
                f"Failed to process refund: {exc.message}",
                code="GATEWAY_REFUND_FAILED",
            ) from exc

        event = self.event_repository.lock(booking.event_id)
        booking = self.booking_repository.lock(booking_id)
        if booking.payment_status != PaymentStatus.PAID:
            logger.error(
                "Booking refunded concurrently; gateway refund %s needs manual review. booking_id=%s",
                refund.id,
                booking.id,
            )
            raise InvalidRefundError("No payment to refund")

        was_counted = BookingStateMachine.is_counted(booking.status)
        if BookingStateMachine.can_transition(booking.status, BookingStatus.CANCELLED):
            self.bookings.transition(booking, BookingStatus.CANCELLED)
        else:
            logger.warning(
                "Booking moved to %s while refund was in flight; recording refund only. "
                "booking_id=%s refund_id=%s",
                booking.status.value,
                booking.id,
                refund.id,
            )
        booking.payment_status = PaymentStatus.REFUNDED
        booking.refund_id = refund.id
        booking.refund_amount = from_minor_units(refund.amount) if amount is None else refund_amount
        booking.refund_reason = reason

        payment = self.payment_repository.get_by_booking_id(booking.id)
        if payment:
            payment.status = "refunded"
            payment.refund_id = refund.id
            payment.refund_amount = booking.refund_amount
            payment.refund_reason = reason

        if was_counted:
            self.bookings.release_spot(booking, event)

        logger.info(
            "Refund processed. booking_id=%s refund_id=%s refund_amount=%s",
            booking.id,
            refund.id,
            booking.refund_amount,
        )
        return booking

    def mark_disputed(self, payment_intent_id: str | None, gateway_payment_id: str | None) -> Booking | None:
        booking = None
        if payment_intent_id:
            booking = self.booking_repository.get_by_payment_intent_id(payment_intent_id)
        if booking is None and gateway_payment_id:
            booking = self.booking_repository.get_by_gateway_payment_id(gateway_payment_id)
        if booking is None:
            logger.warning(
                "Dispute for unknown payment. payment_intent_id=%s payment_id=%s",
                payment_intent_id,
                gateway_payment_id,
            )
            return None

        if not BookingStateMachine.can_transition(booking.status, BookingStatus.DISPUTED):
            logger.warning(
                "Dispute received for booking in status %s; left unchanged. booking_id=%s",
                booking.status.value,
                booking.id,
            )
            return booking

        event = self.event_repository.lock(booking.event_id)
        booking = self.booking_repository.lock(booking.id)
        was_counted = BookingStateMachine.is_counted(booking.status)
        self.bookings.transition(booking, BookingStatus.DISPUTED)
        if was_counted:
            self.bookings.release_spot(booking, event)
        logger.warning("Dispute created for booking. booking_id=%s", booking.id)
        return booking

    def mark_payment_failed(self, payment_intent_id: str | None, metadata: dict[str, str]) -> None:
        booking_id = metadata.get("bookingId")
        logger.error(
            "Payment failed. payment_intent_id=%s metadata=%s",
            payment_intent_id,
            metadata,
        )
        if not booking_id:
            return
        booking = self.booking_repository.get_by_id(booking_id)
        if booking and booking.status == BookingStatus.PENDING and booking.payment_status == PaymentStatus.PENDING:
            booking.payment_status = PaymentStatus.FAILED

    def get_payment_details(self, payment_intent_id: str, actor: User | None = None) -> GatewayIntent:
        intent = self.gateway.retrieve_intent(payment_intent_id)
        if actor is not None:
            self._ensure_intent_owner(intent, actor)
        return intent

    def validate_payment(
        self,
        payment_intent_id: str,
        expected_amount: Decimal,
        actor: User | None = None,
    ) -> bool:
        try:
            intent = self.gateway.retrieve_intent(payment_intent_id)
        except GatewayError:
            return False
        if actor is not None:
            self._ensure_intent_owner(intent, actor)
        return (
            intent.status == IntentStatus.SUCCEEDED
            and intent.amount == to_minor_units(expected_amount)
        )

    def user_payments(self, user_id: str, page: int = 1, limit: int = 10) -> tuple[list[Booking], int]:
        page = max(page, 1)
        limit = max(1, min(limit, 100))
        return self.booking_repository.list_bookings(
            user_id=user_id,
            offset=(page - 1) * limit,
            limit=limit,
        )

    def host_payments(
        self,
        host_id: str,
        status: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Payment], int]:
        page = max(page, 1)
        limit = max(1, min(limit, 100))
        return self.payment_repository.list_for_host(
            host_id,
            status=status,
            date_from=date_from,
            date_to=date_to,
            offset=(page - 1) * limit,
            limit=limit,
        )

    # -----------------------------
    # Helpers
    # -----------------------------
    @staticmethod
    def _ensure_intent_owner(intent: GatewayIntent, actor: User) -> None:
        if intent.metadata.get("userId") != actor.id and actor.role != UserRole.ADMIN:
            raise PermissionDeniedError("Access denied")

    def _attach_to_pending_booking(
        self,
        metadata: IntentMetadata,
        intent: GatewayIntent,
    ) -> Booking | None:
        if metadata.booking_id:
            booking = self.booking_repository.lock(metadata.booking_id)
        else:
            # the user may have pre-booked after this intent was issued
            active = self.booking_repository.get_active_for_user_event(
                metadata.user_id,
                metadata.event_id,
            )
            if active is None:
                return None
            booking = self.booking_repository.lock(active.id)

        if (
            booking is None
            or booking.user_id != metadata.user_id
            or booking.event_id != metadata.event_id
            or booking.status != BookingStatus.PENDING
            or booking.payment_status == PaymentStatus.PAID
        ):
            logger.warning(
                "Pre-booking no longer payable; materializing a new booking. booking_id=%s payment_intent_id=%s",
                booking.id if booking else metadata.booking_id,
                intent.id,
            )
            return None

        if booking.quantity != metadata.quantity:
            logger.warning(
                "Paid quantity differs from pre-booking; booking follows the payment. "
                "booking_id=%s booked=%s paid=%s",
                booking.id,
                booking.quantity,
                metadata.quantity,
            )
            booking.quantity = metadata.quantity
            booking.amount = from_minor_units(intent.amount)
        booking.payment_status = PaymentStatus.PAID
        booking.payment_intent_id = intent.id
        booking.gateway_payment_id = intent.payment_id
        booking.currency = intent.currency or booking.currency
        return booking

    def _materialize_booking(self, event, metadata: IntentMetadata, intent: GatewayIntent) -> Booking:
        has_room = (
            event.status == EventStatus.OPEN
            and event.current_participants + metadata.quantity <= event.max_participants
        )
        if not has_room:
            logger.warning(
                "Paid intent exceeds remaining capacity; booking kept pending for host review. "
                "payment_intent_id=%s event_id=%s",
                intent.id,
                event.id,
            )

        booking = Booking(
            user_id=metadata.user_id,
            event_id=event.id,
            host_id=event.host_id,
            quantity=metadata.quantity,
            amount=from_minor_units(intent.amount),
            currency=intent.currency or self.currency,
            status=BookingStatus.CONFIRMED if has_room else BookingStatus.PENDING,
            payment_status=PaymentStatus.PAID,
            payment_intent_id=intent.id,
            gateway_payment_id=intent.payment_id,
        )
        self.booking_repository.add(booking)
        return booking

    def _record_payment(self, booking: Booking, intent: GatewayIntent) -> None:
        if self.payment_repository.get_by_booking_id(booking.id):
            return
        self.payment_repository.add(
            Payment(
                booking_id=booking.id,
                user_id=booking.user_id,
                host_id=booking.host_id,
                event_id=booking.event_id,
                amount=booking.amount,
                currency=booking.currency,
                status="succeeded",
                provider=getattr(self.gateway, "provider", "UNKNOWN"),
                payment_intent_id=intent.id,
                transaction_id=intent.payment_id,
                processed_at=datetime.now(timezone.utc),
            )
        )
