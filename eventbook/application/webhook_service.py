import hashlib
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from eventbook.application.payment_service import PaymentService
from eventbook.domain.exceptions import BookingEngineError, GatewayError, InvalidRequestError
from eventbook.infrastructure.db.models import PaymentWebhookEvent
from eventbook.infrastructure.gateways.payment_gateway import (
    GatewayWebhookEvent,
    PaymentGateway,
    WebhookEventType,
)

logger = logging.getLogger(__name__)


class WebhookSignatureError(InvalidRequestError):
    code = "INVALID_SIGNATURE"


class WebhookService:
    """
    Verifies and dispatches gateway webhook deliveries.

    Deliveries are at-least-once. Business failures are logged and
    acknowledged so the gateway stops retrying; only a bad signature is
    rejected. Transient gateway failures propagate so the delivery is retried.
    """

    def __init__(self, db: Session, gateway: PaymentGateway, currency: str = "INR"):
        self.db = db
        self.gateway = gateway
        self.payments = PaymentService(db, gateway, currency=currency)
        self.payment_repository = self.payments.payment_repository

    def handle(
        self,
        payload: bytes,
        signature: str | None,
        event_id: str | None = None,
    ) -> dict:
        if not self.gateway.verify_webhook_signature(payload, signature or ""):
            raise WebhookSignatureError("Invalid webhook signature")

        try:
            event = self.gateway.decode_webhook_event(payload, event_id)
        except ValueError:
            logger.error("Undecodable webhook payload acknowledged and dropped.")
            return {"received": True, "status": "ignored"}

        provider = getattr(self.gateway, "provider", "UNKNOWN")
        if self.payment_repository.get_webhook_event(provider, event.id):
            logger.info("Duplicate webhook delivery ignored. event_id=%s type=%s", event.id, event.raw_type)
            return {"received": True, "status": "duplicate"}

        status = "processed"
        try:
            self._dispatch(event)
        except GatewayError as exc:
            if exc.retryable:
                raise
            status = self._drop(event, exc)
        except BookingEngineError as exc:
            status = self._drop(event, exc)

        try:
            self.payment_repository.record_webhook_event(
                PaymentWebhookEvent(
                    provider=provider,
                    gateway_event_id=event.id,
                    event_type=event.raw_type or event.type.value,
                    payment_intent_id=event.intent_id,
                    payload_hash=hashlib.sha256(payload).hexdigest(),
                    status=status.upper(),
                )
            )
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.info("Concurrent webhook delivery already recorded. event_id=%s", event.id)
            return {"received": True, "status": "duplicate"}

        return {"received": True, "status": status}

    def _dispatch(self, event: GatewayWebhookEvent) -> None:
        if event.type == WebhookEventType.PAYMENT_SUCCEEDED:
            if not event.intent_id:
                raise InvalidRequestError("Webhook carries no payment intent id", code="INVALID_METADATA")
            self.payments.confirm_payment(event.intent_id)
        elif event.type == WebhookEventType.PAYMENT_FAILED:
            self.payments.mark_payment_failed(event.intent_id, event.metadata)
        elif event.type == WebhookEventType.DISPUTE_CREATED:
            self.payments.mark_disputed(event.intent_id, event.payment_id)
        else:
            logger.info("Unhandled webhook event type: %s", event.raw_type)

    def _drop(self, event: GatewayWebhookEvent, exc: BookingEngineError) -> str:
        self.db.rollback()
        logger.error(
            "Webhook processing failed; acknowledged without retry. event_id=%s type=%s code=%s error=%s",
            event.id,
            event.raw_type,
            exc.code,
            exc.message,
        )
        return "failed"
