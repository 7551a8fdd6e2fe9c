# eventbook/infrastructure/repositories/event_repository.py

import logging

from sqlalchemy.orm import Session
from sqlalchemy import select, func, delete

from eventbook.domain.state_machine import COUNTED_STATUSES, EventStatus
from eventbook.infrastructure.db.models import (
    Booking,
    Event,
    EventParticipant,
    EventWaitlistEntry,
)

logger = logging.getLogger(__name__)


class EventRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, event_id: str) -> Event | None:
        stmt = select(Event).where(Event.id == event_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def add(self, event: Event) -> Event:
        self.db.add(event)
        return event

    def lock(self, event_id: str) -> Event | None:
        """
        SELECT ... FOR UPDATE
        Serializes capacity-affecting mutations per event.
        """

        stmt = (
            select(Event)
            .where(Event.id == event_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_events(
        self,
        status: EventStatus | None = None,
        host_id: str | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[Event], int]:
        stmt = select(Event)
        if status:
            stmt = stmt.where(Event.status == status)
        if host_id:
            stmt = stmt.where(Event.host_id == host_id)

        total = self.db.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()
        items = list(
            self.db.execute(
                stmt.order_by(Event.starts_at).offset(offset).limit(limit)
            ).scalars().all()
        )
        return items, total

    def recount_participants(self, event: Event) -> int:
        """
        Recompute the participant counter from counted bookings and
        flip open/full accordingly. Must run with the event row locked.
        """
        stmt = (
            select(func.coalesce(func.sum(Booking.quantity), 0))
            .where(Booking.event_id == event.id)
            .where(Booking.status.in_(COUNTED_STATUSES))
        )
        self.db.flush()
        counted = int(self.db.execute(stmt).scalar_one())

        previous = event.current_participants
        event.current_participants = counted

        if event.status == EventStatus.OPEN and counted >= event.max_participants:
            event.status = EventStatus.FULL
        elif event.status == EventStatus.FULL and counted < event.max_participants:
            event.status = EventStatus.OPEN

        if previous != counted:
            logger.info(
                "Event participants recounted. event_id=%s previous=%s current=%s status=%s",
                event.id,
                previous,
                counted,
                event.status.value,
            )
        return counted

    # -----------------------------
    # Participants / joined events
    # -----------------------------
    def is_participant(self, event_id: str, user_id: str) -> bool:
        stmt = (
            select(EventParticipant)
            .where(EventParticipant.event_id == event_id)
            .where(EventParticipant.user_id == user_id)
        )
        return self.db.execute(stmt).scalar_one_or_none() is not None

    def add_participant(self, event_id: str, user_id: str) -> None:
        if self.is_participant(event_id, user_id):
            return
        self.db.add(EventParticipant(event_id=event_id, user_id=user_id))
        self.remove_from_waitlist(event_id, user_id)

    def remove_participant(self, event_id: str, user_id: str) -> None:
        self.db.execute(
            delete(EventParticipant)
            .where(EventParticipant.event_id == event_id)
            .where(EventParticipant.user_id == user_id)
        )

    def participant_ids(self, event_id: str) -> list[str]:
        stmt = (
            select(EventParticipant.user_id)
            .where(EventParticipant.event_id == event_id)
            .order_by(EventParticipant.joined_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def joined_event_ids(self, user_id: str) -> list[str]:
        stmt = (
            select(EventParticipant.event_id)
            .where(EventParticipant.user_id == user_id)
            .order_by(EventParticipant.joined_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    # -----------------------------
    # Waiting list
    # -----------------------------
    def add_to_waitlist(self, event_id: str, user_id: str) -> EventWaitlistEntry:
        stmt = (
            select(EventWaitlistEntry)
            .where(EventWaitlistEntry.event_id == event_id)
            .where(EventWaitlistEntry.user_id == user_id)
        )
        existing = self.db.execute(stmt).scalar_one_or_none()
        if existing:
            return existing

        entry = EventWaitlistEntry(event_id=event_id, user_id=user_id)
        self.db.add(entry)
        self.db.flush()
        return entry

    def remove_from_waitlist(self, event_id: str, user_id: str) -> None:
        self.db.execute(
            delete(EventWaitlistEntry)
            .where(EventWaitlistEntry.event_id == event_id)
            .where(EventWaitlistEntry.user_id == user_id)
        )

    def waitlist_user_ids(self, event_id: str) -> list[str]:
        stmt = (
            select(EventWaitlistEntry.user_id)
            .where(EventWaitlistEntry.event_id == event_id)
            .order_by(EventWaitlistEntry.created_at, EventWaitlistEntry.id)
        )
        return list(self.db.execute(stmt).scalars().all())
