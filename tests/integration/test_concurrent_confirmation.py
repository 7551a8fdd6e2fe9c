"""
Two payments racing for the last spot of an event.

Row locks only contend on a real server, so these tests run against the
Postgres database named by TEST_DATABASE_URL and are skipped otherwise.
"""

import os
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from eventbook.application.payment_service import PaymentService
from eventbook.domain.capabilities import UserRole
from eventbook.domain.state_machine import BookingStatus, EventStatus
from eventbook.infrastructure.db.models import Booking, Event, User
from eventbook.infrastructure.db.session import Base, build_engine

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "")

pytestmark = pytest.mark.skipif(
    not TEST_DATABASE_URL.startswith("postgresql"),
    reason="TEST_DATABASE_URL must point at Postgres",
)


@pytest.fixture
def session_factory():
    engine = build_engine(TEST_DATABASE_URL)
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def _setup_last_spot(session_factory, gateway, guests=2):
    with session_factory() as db:
        host = User(name="host", email="host@example.com", role=UserRole.HOST)
        db.add(host)
        db.flush()
        event = Event(
            host_id=host.id,
            title="Chef's table",
            location="Pune",
            starts_at=datetime.now(timezone.utc) + timedelta(days=3),
            price=Decimal("10.00"),
            max_participants=1,
            current_participants=0,
            status=EventStatus.OPEN,
        )
        db.add(event)
        users = [
            User(name=f"guest{n}", email=f"guest{n}@example.com", role=UserRole.USER)
            for n in range(guests)
        ]
        db.add_all(users)
        db.commit()

        service = PaymentService(db, gateway)
        intent_ids = []
        for user in users:
            intent = service.create_payment_intent(event.id, user.id)
            gateway.succeed_intent(intent.payment_intent_id)
            intent_ids.append(intent.payment_intent_id)
        return event.id, intent_ids


def _confirm_together(session_factory, gateway, intent_ids):
    barrier = threading.Barrier(len(intent_ids))

    def confirm(intent_id):
        with session_factory() as db:
            barrier.wait()
            booking, _ = PaymentService(db, gateway).confirm_payment(intent_id)
            status = booking.status
            db.commit()
            return status

    with ThreadPoolExecutor(max_workers=len(intent_ids)) as pool:
        return list(pool.map(confirm, intent_ids))


def test_two_payments_for_last_spot_count_once(session_factory, gateway):
    event_id, intent_ids = _setup_last_spot(session_factory, gateway)

    statuses = _confirm_together(session_factory, gateway, intent_ids)

    assert sorted(status.value for status in statuses) == ["confirmed", "pending"]
    with session_factory() as db:
        event = db.get(Event, event_id)
        counted = db.execute(
            select(Booking)
            .where(Booking.event_id == event_id)
            .where(Booking.status == BookingStatus.CONFIRMED)
        ).scalars().all()

        assert len(counted) == 1
        assert event.current_participants == 1
        assert event.status == EventStatus.FULL


def test_client_and_webhook_confirmation_race(session_factory, gateway):
    event_id, intent_ids = _setup_last_spot(session_factory, gateway, guests=1)

    statuses = _confirm_together(session_factory, gateway, intent_ids * 2)

    assert statuses == [BookingStatus.CONFIRMED, BookingStatus.CONFIRMED]
    with session_factory() as db:
        bookings = db.execute(
            select(Booking).where(Booking.event_id == event_id)
        ).scalars().all()

        assert len(bookings) == 1
        assert db.get(Event, event_id).current_participants == 1
