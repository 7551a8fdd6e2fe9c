# eventbook/infrastructure/repositories/review_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select, func

from eventbook.infrastructure.db.models import Review


class ReviewRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_for_user_event(self, user_id: str, event_id: str) -> Review | None:
        stmt = (
            select(Review)
            .where(Review.user_id == user_id)
            .where(Review.event_id == event_id)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def add(self, review: Review) -> Review:
        self.db.add(review)
        return review

    def ratings_for_host(self, host_id: str) -> list[int]:
        stmt = select(Review.rating).where(Review.host_id == host_id)
        return list(self.db.execute(stmt).scalars().all())

    def list_reviews(
        self,
        event_id: str | None = None,
        host_id: str | None = None,
        rating: int | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[Review], int]:
        stmt = select(Review)
        if event_id:
            stmt = stmt.where(Review.event_id == event_id)
        if host_id:
            stmt = stmt.where(Review.host_id == host_id)
        if rating:
            stmt = stmt.where(Review.rating == rating)

        total = self.db.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()
        items = list(
            self.db.execute(
                stmt.order_by(Review.created_at.desc(), Review.id)
                .offset(offset)
                .limit(limit)
            ).scalars().all()
        )
        return items, total
