from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from eventbook.domain.capabilities import UserRole
from eventbook.domain.state_machine import EventStatus
from eventbook.infrastructure.db.models import Event, User
from eventbook.infrastructure.db.session import get_db_session


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    ist = timezone(timedelta(hours=5, minutes=30))
    now_ist = datetime.now(ist)
    target = now_ist + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


def seed_users(db) -> dict[str, User]:
    user_defs = [
        {"name": "Asha Host", "email": "asha.host@example.com", "role": UserRole.HOST},
        {"name": "Ravi Guest", "email": "ravi.guest@example.com", "role": UserRole.USER},
        {"name": "Ops Admin", "email": "ops@example.com", "role": UserRole.ADMIN},
    ]

    users = {}
    for item in user_defs:
        user = db.execute(
            select(User).where(User.email == item["email"])
        ).scalar_one_or_none()
        if user is None:
            user = User(**item)
            db.add(user)
            db.flush()
        users[item["role"].value] = user
    return users


def seed_events(db, host: User) -> None:
    event_defs = [
        {
            "title": "Rooftop Supper Club",
            "starts_at": _dt(days_from_now=7, hour=20, minute=0),
            "location": "Indiranagar, Bengaluru",
            "price": Decimal("1500.00"),
            "max_participants": 12,
        },
        {
            "title": "Sunday Heritage Walk",
            "starts_at": _dt(days_from_now=10, hour=7, minute=30),
            "location": "Fort Kochi",
            "price": Decimal("0"),
            "max_participants": 25,
        },
    ]

    for item in event_defs:
        existing = db.execute(
            select(Event)
            .where(Event.title == item["title"])
            .where(Event.host_id == host.id)
        ).scalar_one_or_none()
        if existing:
            existing.starts_at = item["starts_at"]
            existing.location = item["location"]
            continue

        db.add(
            Event(
                host_id=host.id,
                status=EventStatus.OPEN,
                current_participants=0,
                **item,
            )
        )


def main() -> None:
    with get_db_session() as db:
        users = seed_users(db)
        seed_events(db, users[UserRole.HOST.value])
        user_ids = {role: user.id for role, user in users.items()}

    for role, user_id in user_ids.items():
        print(f"{role}: X-User-Id {user_id}")
    print("Seed complete: supper club and heritage walk added.")


if __name__ == "__main__":
    main()
