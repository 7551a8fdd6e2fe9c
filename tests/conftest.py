"""
Shared fixtures: in-memory SQLite database and an in-process payment gateway.
"""

import json
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from eventbook.api.dependencies import get_db, get_payment_gateway
from eventbook.domain.capabilities import UserRole
from eventbook.domain.exceptions import GatewayError
from eventbook.domain.state_machine import EventStatus
from eventbook.infrastructure.db.models import Event, User
from eventbook.infrastructure.db.session import Base, build_engine
from eventbook.infrastructure.gateways.payment_gateway import (
    GatewayIntent,
    GatewayRefund,
    GatewayWebhookEvent,
    IntentStatus,
    WebhookEventType,
)
from eventbook.main import app

engine = build_engine("sqlite://")
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


class FakeGateway:
    """
    Keeps intents in memory. Tests drive payment outcomes with
    ``succeed_intent`` / ``fail_intent``. The only valid webhook signature
    is the string ``"valid"``.
    """

    provider = "FAKE"

    def __init__(self):
        self.intents: dict[str, GatewayIntent] = {}
        self.refunds: list[GatewayRefund] = []
        self.refund_error: GatewayError | None = None
        self.retrieve_error: GatewayError | None = None
        self._sequence = 0

    def public_key(self):
        return "key_test"

    def create_intent(self, amount_minor, currency, metadata):
        self._sequence += 1
        intent_id = f"order_{self._sequence}"
        intent = GatewayIntent(
            id=intent_id,
            status=IntentStatus.REQUIRES_PAYMENT,
            amount=amount_minor,
            currency=currency,
            metadata=dict(metadata),
            client_secret=intent_id,
        )
        self.intents[intent_id] = intent
        return replace(intent)

    def succeed_intent(self, intent_id):
        intent = self.intents[intent_id]
        intent.status = IntentStatus.SUCCEEDED
        intent.payment_id = f"pay_{intent_id}"

    def fail_intent(self, intent_id):
        self.intents[intent_id].status = IntentStatus.FAILED

    def retrieve_intent(self, intent_id):
        if self.retrieve_error:
            raise self.retrieve_error
        if intent_id not in self.intents:
            raise GatewayError(f"No such order: {intent_id}")
        intent = self.intents[intent_id]
        return replace(intent, metadata=dict(intent.metadata))

    def create_refund(self, intent_id, amount_minor=None, reason=None):
        if self.refund_error:
            raise self.refund_error
        intent = self.intents[intent_id]
        refund = GatewayRefund(
            id=f"rfnd_{len(self.refunds) + 1}",
            status="processed",
            amount=amount_minor if amount_minor is not None else intent.amount,
        )
        self.refunds.append(refund)
        return refund

    def verify_webhook_signature(self, payload, signature):
        return signature == "valid"

    def decode_webhook_event(self, payload, event_id=None):
        body = json.loads(payload)
        return GatewayWebhookEvent(
            id=event_id or body["id"],
            type=WebhookEventType(body["type"]),
            raw_type=body["type"],
            intent_id=body.get("intent_id"),
            payment_id=body.get("payment_id"),
            metadata=body.get("metadata", {}),
        )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(gateway):
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    yield TestClient(app)

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


# -----------------------------
# Service-level factories
# -----------------------------
@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    def _make(role=UserRole.USER, name=None):
        counter["n"] += 1
        user = User(
            name=name or f"user{counter['n']}",
            email=f"user{counter['n']}@example.com",
            role=role,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def make_event(db_session):
    def _make(host, price="500.00", max_participants=10, status=EventStatus.OPEN, starts_in_days=7):
        event = Event(
            host_id=host.id,
            title="Rooftop dinner",
            location="Bengaluru",
            starts_at=datetime.now(timezone.utc) + timedelta(days=starts_in_days),
            price=Decimal(price),
            max_participants=max_participants,
            current_participants=0,
            status=status,
        )
        db_session.add(event)
        db_session.commit()
        return event

    return _make


# -----------------------------
# HTTP helpers
# -----------------------------
@pytest.fixture
def register(client):
    counter = {"n": 0}

    def _register(role="user"):
        counter["n"] += 1
        response = client.post(
            "/users",
            json={
                "name": f"{role}{counter['n']}",
                "email": f"{role}{counter['n']}@example.com",
                "role": role,
            },
        )
        assert response.status_code == 201, response.text
        return response.json()["id"]

    return _register


@pytest.fixture
def create_event(client):
    def _create(host_id, price="500.00", max_participants=10, starts_in_days=7):
        response = client.post(
            "/events",
            json={
                "title": "Supper club",
                "location": "Mumbai",
                "starts_at": (datetime.now(timezone.utc) + timedelta(days=starts_in_days)).isoformat(),
                "price": price,
                "max_participants": max_participants,
            },
            headers={"X-User-Id": host_id},
        )
        assert response.status_code == 201, response.text
        return response.json()["id"]

    return _create
