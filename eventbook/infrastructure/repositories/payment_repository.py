# eventbook/infrastructure/repositories/payment_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import select, func

from eventbook.infrastructure.db.models import Payment, PaymentWebhookEvent


class PaymentRepository:
    """Payment ledger and webhook delivery log."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_booking_id(self, booking_id: str) -> Payment | None:
        stmt = select(Payment).where(Payment.booking_id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def add(self, payment: Payment) -> Payment:
        self.db.add(payment)
        return payment

    def list_for_host(
        self,
        host_id: str,
        status: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[Payment], int]:
        stmt = select(Payment).where(Payment.host_id == host_id)
        if status:
            stmt = stmt.where(Payment.status == status)
        if date_from:
            stmt = stmt.where(Payment.created_at >= date_from)
        if date_to:
            stmt = stmt.where(Payment.created_at <= date_to)

        total = self.db.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()
        items = list(
            self.db.execute(
                stmt.order_by(Payment.created_at.desc(), Payment.id)
                .offset(offset)
                .limit(limit)
            ).scalars().all()
        )
        return items, total

    def get_webhook_event(
        self,
        provider: str,
        gateway_event_id: str,
    ) -> PaymentWebhookEvent | None:
        stmt = (
            select(PaymentWebhookEvent)
            .where(PaymentWebhookEvent.provider == provider)
            .where(PaymentWebhookEvent.gateway_event_id == gateway_event_id)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def record_webhook_event(self, event: PaymentWebhookEvent) -> PaymentWebhookEvent:
        self.db.add(event)
        return event
