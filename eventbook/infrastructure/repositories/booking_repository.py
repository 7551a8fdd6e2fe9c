# eventbook/infrastructure/repositories/booking_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import select, func

from eventbook.infrastructure.db.models import Booking
from eventbook.domain.state_machine import BookingStatus, PaymentStatus, RELEASED_STATUSES


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def lock(self, booking_id: str) -> Booking | None:
        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_payment_intent_id(
        self,
        payment_intent_id: str,
    ) -> Booking | None:

        stmt = select(Booking).where(
            Booking.payment_intent_id == payment_intent_id
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_gateway_payment_id(self, gateway_payment_id: str) -> Booking | None:
        stmt = select(Booking).where(Booking.gateway_payment_id == gateway_payment_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_active_for_user_event(
        self,
        user_id: str,
        event_id: str,
    ) -> Booking | None:
        stmt = (
            select(Booking)
            .where(Booking.user_id == user_id)
            .where(Booking.event_id == event_id)
            .where(Booking.status.not_in(RELEASED_STATUSES))
        )
        return self.db.execute(stmt).scalars().first()

    def add(self, booking: Booking) -> Booking:
        self.db.add(booking)
        return booking

    def update_status(
        self,
        booking: Booking,
        new_status: BookingStatus,
    ) -> None:

        booking.status = new_status

    def list_bookings(
        self,
        user_id: str | None = None,
        host_id: str | None = None,
        status: BookingStatus | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[Booking], int]:
        stmt = select(Booking)
        if user_id:
            stmt = stmt.where(Booking.user_id == user_id)
        if host_id:
            stmt = stmt.where(Booking.host_id == host_id)
        if status:
            stmt = stmt.where(Booking.status == status)

        total = self.db.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()
        items = list(
            self.db.execute(
                stmt.order_by(Booking.created_at.desc(), Booking.id)
                .offset(offset)
                .limit(limit)
            ).scalars().all()
        )
        return items, total

    def list_captured_for_host(
        self,
        host_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        event_id: str | None = None,
    ) -> list[Booking]:
        """Paid bookings that have not been cancelled."""
        stmt = (
            select(Booking)
            .where(Booking.host_id == host_id)
            .where(Booking.payment_status == PaymentStatus.PAID)
            .where(Booking.status != BookingStatus.CANCELLED)
        )
        if start:
            stmt = stmt.where(Booking.created_at >= start)
        if end:
            stmt = stmt.where(Booking.created_at <= end)
        if event_id:
            stmt = stmt.where(Booking.event_id == event_id)
        return list(self.db.execute(stmt).scalars().all())
