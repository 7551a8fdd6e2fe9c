import json
from unittest.mock import MagicMock

import pytest
import razorpay
import requests

from eventbook.domain.exceptions import GatewayError, GatewayTimeoutError
from eventbook.infrastructure.gateways.payment_gateway import IntentStatus, WebhookEventType
from eventbook.infrastructure.gateways.razorpay_gateway import RazorpayGateway

ORDER = {
    "id": "order_abc",
    "amount": 100000,
    "currency": "INR",
    "status": "created",
    "notes": {"eventId": "evt-1", "userId": "usr-1", "quantity": "2"},
}


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def gateway(client):
    return RazorpayGateway(
        client,
        key_id="rzp_test_key",
        webhook_secret="whsec",
        timeout_seconds=5,
        max_retries=3,
        retry_backoff_seconds=0,
    )


def test_create_intent_sends_amount_and_metadata(gateway, client):
    client.order.create.return_value = ORDER

    intent = gateway.create_intent(100000, "INR", ORDER["notes"])

    data = client.order.create.call_args.args[0]
    assert data["amount"] == 100000
    assert data["currency"] == "INR"
    assert data["notes"] == ORDER["notes"]
    assert client.order.create.call_args.kwargs["timeout"] == 5
    assert intent.id == "order_abc"
    assert intent.client_secret == "order_abc"
    assert intent.status == IntentStatus.REQUIRES_PAYMENT


def test_create_intent_is_not_retried(gateway, client):
    client.order.create.side_effect = razorpay.errors.ServerError("upstream down")

    with pytest.raises(GatewayError) as exc_info:
        gateway.create_intent(100000, "INR", {})

    assert exc_info.value.retryable
    assert client.order.create.call_count == 1


def test_retrieve_intent_maps_captured_payment(gateway, client):
    client.order.fetch.return_value = {**ORDER, "status": "attempted"}
    client.order.payments.return_value = {
        "items": [
            {"id": "pay_failed", "status": "failed"},
            {"id": "pay_ok", "status": "captured"},
        ]
    }

    intent = gateway.retrieve_intent("order_abc")

    assert intent.status == IntentStatus.SUCCEEDED
    assert intent.payment_id == "pay_ok"
    assert intent.metadata["quantity"] == "2"


def test_retrieve_intent_without_payments_requires_payment(gateway, client):
    client.order.fetch.return_value = ORDER
    client.order.payments.return_value = {"items": []}

    assert gateway.retrieve_intent("order_abc").status == IntentStatus.REQUIRES_PAYMENT


def test_retrieve_intent_retries_transient_failures(gateway, client):
    client.order.fetch.side_effect = [
        requests.exceptions.Timeout(),
        razorpay.errors.ServerError("502"),
        {**ORDER, "status": "paid"},
    ]
    client.order.payments.return_value = {"items": []}

    intent = gateway.retrieve_intent("order_abc")

    assert intent.status == IntentStatus.SUCCEEDED
    assert client.order.fetch.call_count == 3


def test_retrieve_intent_gives_up_after_max_retries(gateway, client):
    client.order.fetch.side_effect = requests.exceptions.Timeout()

    with pytest.raises(GatewayTimeoutError):
        gateway.retrieve_intent("order_abc")

    assert client.order.fetch.call_count == 3


def test_retrieve_intent_does_not_retry_rejections(gateway, client):
    client.order.fetch.side_effect = razorpay.errors.BadRequestError("The id provided does not exist")

    with pytest.raises(GatewayError) as exc_info:
        gateway.retrieve_intent("order_missing")

    assert not exc_info.value.retryable
    assert client.order.fetch.call_count == 1


def test_create_refund_targets_captured_payment(gateway, client):
    client.order.fetch.return_value = {**ORDER, "status": "paid"}
    client.order.payments.return_value = {"items": [{"id": "pay_ok", "status": "captured"}]}
    client.payment.refund.return_value = {"id": "rfnd_1", "status": "processed", "amount": 25000}

    refund = gateway.create_refund("order_abc", 25000, "host cancelled")

    payment_id, data = client.payment.refund.call_args.args
    assert payment_id == "pay_ok"
    assert data["amount"] == 25000
    assert data["notes"]["reason"] == "host cancelled"
    assert refund.id == "rfnd_1"
    assert refund.amount == 25000


def test_create_refund_full_amount_omits_amount(gateway, client):
    client.order.fetch.return_value = {**ORDER, "status": "paid"}
    client.order.payments.return_value = {"items": [{"id": "pay_ok", "status": "captured"}]}
    client.payment.refund.return_value = {"id": "rfnd_2", "status": "processed", "amount": 100000}

    refund = gateway.create_refund("order_abc")

    _, data = client.payment.refund.call_args.args
    assert "amount" not in data
    assert refund.amount == 100000


def test_create_refund_without_captured_payment(gateway, client):
    client.order.fetch.return_value = ORDER
    client.order.payments.return_value = {"items": []}

    with pytest.raises(GatewayError) as exc_info:
        gateway.create_refund("order_abc")

    assert exc_info.value.code == "GATEWAY_REFUND_FAILED"
    client.payment.refund.assert_not_called()


def test_verify_webhook_signature(gateway, client):
    assert gateway.verify_webhook_signature(b"{}", "sig")
    client.utility.verify_webhook_signature.assert_called_once_with("{}", "sig", "whsec")

    client.utility.verify_webhook_signature.side_effect = razorpay.errors.SignatureVerificationError("bad")
    assert not gateway.verify_webhook_signature(b"{}", "sig")
    assert not gateway.verify_webhook_signature(b"{}", "")


def test_verify_webhook_signature_requires_secret(client, monkeypatch):
    monkeypatch.delenv("RAZORPAY_WEBHOOK_SECRET", raising=False)
    gateway = RazorpayGateway(client, key_id="rzp_test_key")

    assert not gateway.verify_webhook_signature(b"{}", "sig")
    client.utility.verify_webhook_signature.assert_not_called()


def test_decode_payment_captured(gateway):
    payload = json.dumps(
        {
            "event": "payment.captured",
            "payload": {
                "payment": {
                    "entity": {
                        "id": "pay_ok",
                        "order_id": "order_abc",
                        "notes": {"eventId": "evt-1", "userId": "usr-1", "quantity": 2},
                    }
                }
            },
        }
    ).encode()

    event = gateway.decode_webhook_event(payload, "evt_delivery_1")

    assert event.id == "evt_delivery_1"
    assert event.type == WebhookEventType.PAYMENT_SUCCEEDED
    assert event.intent_id == "order_abc"
    assert event.payment_id == "pay_ok"
    assert event.metadata["quantity"] == "2"


def test_decode_unknown_event_without_delivery_id(gateway):
    payload = json.dumps({"event": "settlement.processed", "payload": {}}).encode()

    first = gateway.decode_webhook_event(payload)
    second = gateway.decode_webhook_event(payload)

    assert first.type == WebhookEventType.UNHANDLED
    assert first.id == second.id


def test_decode_rejects_malformed_payload(gateway):
    with pytest.raises(ValueError):
        gateway.decode_webhook_event(b"not json")
