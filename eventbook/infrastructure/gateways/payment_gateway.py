# eventbook/infrastructure/gateways/payment_gateway.py

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol


class IntentStatus(str, Enum):
    REQUIRES_PAYMENT = "requires_payment"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class WebhookEventType(str, Enum):
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    DISPUTE_CREATED = "dispute_created"
    UNHANDLED = "unhandled"


@dataclass
class GatewayIntent:
    id: str
    status: IntentStatus
    amount: int
    currency: str
    metadata: dict[str, str] = field(default_factory=dict)
    client_secret: str | None = None
    payment_id: str | None = None


@dataclass
class GatewayRefund:
    id: str
    status: str
    amount: int


@dataclass
class GatewayWebhookEvent:
    id: str
    type: WebhookEventType
    raw_type: str
    intent_id: str | None = None
    payment_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


class PaymentGateway(Protocol):
    """
    Request/response contract the booking engine relies on.

    Amounts are integers in minor currency units. Implementations map their
    provider's objects into the dataclasses above and raise
    ``eventbook.domain.exceptions.GatewayError`` (or its timeout subclass)
    on provider failures.
    """

    provider: str

    def public_key(self) -> str | None: ...

    def create_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str],
    ) -> GatewayIntent: ...

    def retrieve_intent(self, intent_id: str) -> GatewayIntent: ...

    def create_refund(
        self,
        intent_id: str,
        amount_minor: int | None = None,
        reason: str | None = None,
    ) -> GatewayRefund: ...

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool: ...

    def decode_webhook_event(
        self,
        payload: bytes,
        event_id: str | None = None,
    ) -> GatewayWebhookEvent: ...
