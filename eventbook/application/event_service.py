import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from eventbook.domain.capabilities import UserRole
from eventbook.domain.exceptions import (
    DuplicateRequestError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
)
from eventbook.domain.money import to_amount
from eventbook.domain.state_machine import EventStatus
from eventbook.infrastructure.db.models import Event, EventWaitlistEntry, User
from eventbook.infrastructure.repositories.event_repository import EventRepository
from eventbook.infrastructure.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


class EventService:

    def __init__(self, db: Session):
        self.db = db
        self.event_repository = EventRepository(db)
        self.user_repository = UserRepository(db)

    def create_event(
        self,
        actor: User,
        title: str,
        starts_at: datetime,
        price: Decimal,
        max_participants: int,
        location: str = "",
        status: EventStatus = EventStatus.OPEN,
    ) -> Event:
        if actor.role not in (UserRole.HOST, UserRole.ADMIN):
            raise PermissionDeniedError("Access denied. Host role required.")
        if status not in (EventStatus.DRAFT, EventStatus.OPEN):
            raise InvalidStateError("New events must be draft or open")

        event = Event(
            host_id=actor.id,
            title=title,
            starts_at=starts_at,
            price=to_amount(price),
            max_participants=max_participants,
            current_participants=0,
            location=location,
            status=status,
        )
        self.event_repository.add(event)
        self.db.flush()
        logger.info("Event created. event_id=%s host_id=%s", event.id, actor.id)
        return event

    def get_event(self, event_id: str) -> Event:
        event = self.event_repository.get_by_id(event_id)
        if not event:
            raise NotFoundError("Event not found", code="EVENT_NOT_FOUND")
        return event

    def list_events(
        self,
        status: EventStatus | None = None,
        host_id: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Event], int]:
        page = max(page, 1)
        limit = max(1, min(limit, 100))
        return self.event_repository.list_events(
            status=status,
            host_id=host_id,
            offset=(page - 1) * limit,
            limit=limit,
        )

    def join_waitlist(self, event_id: str, actor: User) -> EventWaitlistEntry:
        event = self.get_event(event_id)
        if event.status != EventStatus.FULL:
            raise InvalidStateError(
                "Spots are available. Please book directly.",
                code="EVENT_NOT_FULL",
            )
        if self.event_repository.is_participant(event_id, actor.id):
            raise DuplicateRequestError("You are already attending this event")
        return self.event_repository.add_to_waitlist(event_id, actor.id)


class UserService:

    def __init__(self, db: Session):
        self.db = db
        self.user_repository = UserRepository(db)
        self.event_repository = EventRepository(db)

    def register(self, name: str, email: str, role: UserRole = UserRole.USER) -> User:
        if self.user_repository.get_by_email(email):
            raise DuplicateRequestError("Email already registered", code="EMAIL_TAKEN")
        user = User(name=name, email=email, role=role)
        self.user_repository.add(user)
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateRequestError("Email already registered", code="EMAIL_TAKEN") from exc
        return user

    def get_user(self, user_id: str) -> User:
        user = self.user_repository.get_by_id(user_id)
        if not user:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")
        return user

    def joined_events(self, user_id: str) -> list[str]:
        return self.event_repository.joined_event_ids(user_id)
