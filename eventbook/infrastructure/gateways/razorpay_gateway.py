# eventbook/infrastructure/gateways/razorpay_gateway.py

import hashlib
import json
import logging
import os
import time
from uuid import uuid4

import razorpay
import requests

from eventbook.domain.exceptions import GatewayError, GatewayTimeoutError
from eventbook.infrastructure.gateways.payment_gateway import (
    GatewayIntent,
    GatewayRefund,
    GatewayWebhookEvent,
    IntentStatus,
    WebhookEventType,
)

logger = logging.getLogger(__name__)

_CAPTURED_PAYMENT_STATES = {"captured", "refunded"}

_WEBHOOK_TYPES = {
    "payment.captured": WebhookEventType.PAYMENT_SUCCEEDED,
    "order.paid": WebhookEventType.PAYMENT_SUCCEEDED,
    "payment.failed": WebhookEventType.PAYMENT_FAILED,
    "payment.dispute.created": WebhookEventType.DISPUTE_CREATED,
}


def razorpay_client_from_env() -> razorpay.Client:
    key_id = os.getenv("RAZORPAY_KEY_ID")
    key_secret = os.getenv("RAZORPAY_KEY_SECRET")
    if not key_id or not key_secret:
        raise GatewayError(
            "Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET.",
            code="GATEWAY_NOT_CONFIGURED",
        )
    return razorpay.Client(auth=(key_id, key_secret))


class RazorpayGateway:
    """
    Payment gateway backed by Razorpay orders.

    A Razorpay order stands in for a payment intent: its id is handed to the
    checkout widget (the "client secret") and its notes carry the booking
    metadata. An order counts as succeeded once it is ``paid`` or one of its
    payments is captured.
    """

    provider = "RAZORPAY"

    def __init__(
        self,
        client: razorpay.Client,
        key_id: str | None = None,
        webhook_secret: str | None = None,
        timeout_seconds: float | None = None,
        max_retries: int | None = None,
        retry_backoff_seconds: float | None = None,
    ):
        self.client = client
        self.key_id = key_id or os.getenv("RAZORPAY_KEY_ID")
        self.webhook_secret = webhook_secret or os.getenv("RAZORPAY_WEBHOOK_SECRET")
        self.timeout_seconds = timeout_seconds or float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))
        self.max_retries = max_retries or int(os.getenv("GATEWAY_MAX_RETRIES", "3"))
        self.retry_backoff_seconds = (
            retry_backoff_seconds
            if retry_backoff_seconds is not None
            else float(os.getenv("GATEWAY_RETRY_BACKOFF", "0.5"))
        )

    @classmethod
    def from_env(cls) -> "RazorpayGateway":
        return cls(client=razorpay_client_from_env())

    def public_key(self) -> str | None:
        return self.key_id

    # -----------------------------
    # Intents
    # -----------------------------
    def create_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str],
    ) -> GatewayIntent:
        order = self._call(
            self.client.order.create,
            {
                "amount": amount_minor,
                "currency": currency,
                "receipt": uuid4().hex,
                "notes": metadata,
            },
        )
        intent = self._map_order(order, payments=[])
        intent.client_secret = intent.id
        logger.info(
            "Created Razorpay order. order_id=%s amount=%s currency=%s",
            intent.id,
            amount_minor,
            currency,
        )
        return intent

    def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        order = self._call_with_retry(self.client.order.fetch, intent_id)
        payments = self._call_with_retry(self.client.order.payments, intent_id)
        return self._map_order(order, payments=payments.get("items", []))

    def create_refund(
        self,
        intent_id: str,
        amount_minor: int | None = None,
        reason: str | None = None,
    ) -> GatewayRefund:
        intent = self.retrieve_intent(intent_id)
        if not intent.payment_id:
            raise GatewayError(
                f"No captured payment found for order {intent_id}",
                code="GATEWAY_REFUND_FAILED",
            )

        data: dict = {"notes": {"order_id": intent_id}}
        if amount_minor is not None:
            data["amount"] = amount_minor
        if reason:
            data["notes"]["reason"] = reason[:256]

        refund = self._call(self.client.payment.refund, intent.payment_id, data)
        return GatewayRefund(
            id=refund["id"],
            status=refund.get("status", "processed"),
            amount=int(refund.get("amount", amount_minor or intent.amount)),
        )

    # -----------------------------
    # Webhooks
    # -----------------------------
    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        if not self.webhook_secret:
            logger.warning("Razorpay webhook secret not configured; rejecting webhook.")
            return False
        if not signature:
            return False
        try:
            self.client.utility.verify_webhook_signature(
                payload.decode("utf-8"),
                signature,
                self.webhook_secret,
            )
        except razorpay.errors.SignatureVerificationError:
            logger.warning("Razorpay webhook signature verification failed.")
            return False
        return True

    def decode_webhook_event(
        self,
        payload: bytes,
        event_id: str | None = None,
    ) -> GatewayWebhookEvent:
        body = json.loads(payload)
        raw_type = body.get("event", "")
        entities = body.get("payload", {})

        payment = entities.get("payment", {}).get("entity", {})
        order = entities.get("order", {}).get("entity", {})
        dispute = entities.get("dispute", {}).get("entity", {})

        intent_id = payment.get("order_id") or order.get("id")
        payment_id = payment.get("id") or dispute.get("payment_id")
        metadata = order.get("notes") or payment.get("notes") or {}

        return GatewayWebhookEvent(
            id=event_id or hashlib.sha256(payload).hexdigest(),
            type=_WEBHOOK_TYPES.get(raw_type, WebhookEventType.UNHANDLED),
            raw_type=raw_type,
            intent_id=intent_id,
            payment_id=payment_id,
            metadata=_as_str_dict(metadata),
        )

    # -----------------------------
    # Helpers
    # -----------------------------
    def _map_order(self, order: dict, payments: list[dict]) -> GatewayIntent:
        captured = next(
            (item for item in payments if item.get("status") in _CAPTURED_PAYMENT_STATES),
            None,
        )

        if order.get("status") == "paid" or captured:
            status = IntentStatus.SUCCEEDED
        elif any(item.get("status") == "authorized" for item in payments):
            status = IntentStatus.PROCESSING
        elif payments and all(item.get("status") == "failed" for item in payments):
            status = IntentStatus.FAILED
        else:
            status = IntentStatus.REQUIRES_PAYMENT

        return GatewayIntent(
            id=order["id"],
            status=status,
            amount=int(order.get("amount", 0)),
            currency=str(order.get("currency", "")).upper(),
            metadata=_as_str_dict(order.get("notes") or {}),
            payment_id=captured["id"] if captured else None,
        )

    def _call(self, func, *args):
        try:
            return func(*args, timeout=self.timeout_seconds)
        except requests.exceptions.Timeout as exc:
            raise GatewayTimeoutError(f"Razorpay call timed out after {self.timeout_seconds}s") from exc
        except requests.exceptions.ConnectionError as exc:
            raise GatewayTimeoutError("Razorpay is unreachable") from exc
        except razorpay.errors.ServerError as exc:
            error = GatewayError(f"Razorpay server error: {exc}")
            error.retryable = True
            raise error from exc
        except (razorpay.errors.BadRequestError, razorpay.errors.GatewayError) as exc:
            raise GatewayError(f"Razorpay rejected the request: {exc}") from exc

    def _call_with_retry(self, func, *args):
        """
        Read-only lookups only. Transient failures are retried with
        exponential backoff; everything else is raised immediately.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                return self._call(func, *args)
            except GatewayError as exc:
                if not exc.retryable or attempt == self.max_retries:
                    raise
                delay = self.retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Razorpay lookup failed (attempt %s/%s): %s. Retrying in %.1f seconds...",
                    attempt,
                    self.max_retries,
                    exc.message,
                    delay,
                )
                time.sleep(delay)


def _as_str_dict(values: dict) -> dict[str, str]:
    return {str(key): str(value) for key, value in values.items() if value is not None}
