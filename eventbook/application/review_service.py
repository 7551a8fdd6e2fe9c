import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from eventbook.domain.exceptions import (
    DuplicateRequestError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
)
from eventbook.domain.money import to_amount
from eventbook.infrastructure.db.models import Review, User
from eventbook.infrastructure.repositories.event_repository import EventRepository
from eventbook.infrastructure.repositories.review_repository import ReviewRepository
from eventbook.infrastructure.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


class ReviewService:

    def __init__(self, db: Session):
        self.db = db
        self.review_repository = ReviewRepository(db)
        self.event_repository = EventRepository(db)
        self.user_repository = UserRepository(db)

    def create_review(
        self,
        actor: User,
        event_id: str,
        rating: int,
        comment: str = "",
    ) -> Review:
        if rating < 1 or rating > 5:
            raise InvalidRequestError("Rating must be between 1 and 5", code="INVALID_RATING")

        event = self.event_repository.get_by_id(event_id)
        if not event:
            raise NotFoundError("Event not found", code="EVENT_NOT_FOUND")
        if not self.event_repository.is_participant(event_id, actor.id):
            raise InvalidStateError(
                "You can only review events you have attended",
                code="NOT_ATTENDED",
            )
        if self.review_repository.get_for_user_event(actor.id, event_id):
            raise DuplicateRequestError(
                "You have already reviewed this event",
                code="ALREADY_REVIEWED",
            )

        review = Review(
            user_id=actor.id,
            host_id=event.host_id,
            event_id=event_id,
            rating=rating,
            comment=comment or "",
        )
        self.review_repository.add(review)
        self.db.flush()

        self.recompute_host_rating(event.host_id)
        return review

    def recompute_host_rating(self, host_id: str) -> Decimal:
        host = self.user_repository.get_by_id(host_id)
        if not host:
            logger.warning("Rating recompute for unknown host. host_id=%s", host_id)
            return Decimal("0")

        ratings = self.review_repository.ratings_for_host(host_id)
        average = Decimal(sum(ratings)) / len(ratings) if ratings else Decimal("0")
        host.rating = to_amount(average)
        host.total_reviews = len(ratings)
        return host.rating

    def list_reviews(
        self,
        event_id: str | None = None,
        host_id: str | None = None,
        rating: int | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Review], int]:
        page = max(page, 1)
        limit = max(1, min(limit, 100))
        return self.review_repository.list_reviews(
            event_id=event_id,
            host_id=host_id,
            rating=rating,
            offset=(page - 1) * limit,
            limit=limit,
        )
