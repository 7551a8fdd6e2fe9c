from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from eventbook.api.dependencies import get_current_user, get_db
from eventbook.api.schemas.schemas import (
    EventCreate,
    EventResponse,
    Page,
    ReviewCreate,
    ReviewResponse,
    UserCreate,
    UserResponse,
    WaitlistResponse,
)
from eventbook.application.event_service import EventService, UserService
from eventbook.application.review_service import ReviewService
from eventbook.domain.state_machine import EventStatus
from eventbook.infrastructure.db.models import Event, User
from eventbook.infrastructure.repositories.event_repository import EventRepository


router = APIRouter()


def _event_response(db: Session, event: Event) -> EventResponse:
    repository = EventRepository(db)
    return EventResponse(
        id=event.id,
        host_id=event.host_id,
        title=event.title,
        starts_at=event.starts_at,
        location=event.location,
        price=event.price,
        max_participants=event.max_participants,
        current_participants=event.current_participants,
        status=event.status,
        participants=repository.participant_ids(event.id),
        waiting_list=repository.waitlist_user_ids(event.id),
    )


def _user_response(service: UserService, user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        rating=user.rating,
        total_reviews=user.total_reviews,
        joined_events=service.joined_events(user.id),
    )


# -----------------------------
# Users
# -----------------------------
@router.post("/users", response_model=UserResponse, status_code=201)
def register_user(request: UserCreate, db: Session = Depends(get_db)):
    service = UserService(db)
    user = service.register(name=request.name, email=request.email, role=request.role)
    return _user_response(service, user)


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(user_id: str, db: Session = Depends(get_db)):
    service = UserService(db)
    return _user_response(service, service.get_user(user_id))


# -----------------------------
# Events
# -----------------------------
@router.post("/events", response_model=EventResponse, status_code=201)
def create_event(
    request: EventCreate,
    actor: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    event = EventService(db).create_event(
        actor,
        title=request.title,
        starts_at=request.starts_at,
        price=request.price,
        max_participants=request.max_participants,
        location=request.location,
        status=EventStatus(request.status),
    )
    return _event_response(db, event)


@router.get("/events", response_model=Page[EventResponse])
def list_events(
    status_filter: EventStatus | None = Query(default=None, alias="status"),
    host_id: str | None = None,
    page: int = 1,
    limit: int = 10,
    db: Session = Depends(get_db),
):
    items, total = EventService(db).list_events(
        status=status_filter,
        host_id=host_id,
        page=page,
        limit=limit,
    )
    return Page[EventResponse](
        items=[_event_response(db, item) for item in items],
        page=max(page, 1),
        limit=max(1, min(limit, 100)),
        total=total,
    )


@router.get("/events/{event_id}", response_model=EventResponse)
def get_event(event_id: str, db: Session = Depends(get_db)):
    return _event_response(db, EventService(db).get_event(event_id))


@router.post("/events/{event_id}/waitlist", response_model=WaitlistResponse, status_code=201)
def join_waitlist(
    event_id: str,
    actor: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    EventService(db).join_waitlist(event_id, actor)
    queue = EventRepository(db).waitlist_user_ids(event_id)
    return WaitlistResponse(
        event_id=event_id,
        user_id=actor.id,
        position=queue.index(actor.id) + 1,
    )


# -----------------------------
# Reviews
# -----------------------------
@router.post("/reviews", response_model=ReviewResponse, status_code=201)
def create_review(
    request: ReviewCreate,
    actor: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    review = ReviewService(db).create_review(
        actor,
        event_id=request.event_id,
        rating=request.rating,
        comment=request.comment,
    )
    return ReviewResponse.model_validate(review)


@router.get("/reviews", response_model=Page[ReviewResponse])
def list_reviews(
    event_id: str | None = None,
    host_id: str | None = None,
    rating: int | None = None,
    page: int = 1,
    limit: int = 10,
    db: Session = Depends(get_db),
):
    items, total = ReviewService(db).list_reviews(
        event_id=event_id,
        host_id=host_id,
        rating=rating,
        page=page,
        limit=limit,
    )
    return Page[ReviewResponse](
        items=[ReviewResponse.model_validate(item) for item in items],
        page=max(page, 1),
        limit=max(1, min(limit, 100)),
        total=total,
    )
