import json

import pytest
from fastapi.testclient import TestClient

from app.payment_gateway import main as mock_gateway
from app.services.payment_gateway import StripePaymentGateway
from app.utils.settings import PAYMENT_WEBHOOK_SECRET

AUTH = {"Authorization": "Bearer sk_test"}


@pytest.fixture
def wired(monkeypatch):
    """Dev mock called with the form-encoded requests the stripe SDK sends; emitted webhooks are captured."""
    webhooks = []

    def fake_post(url, data=None, headers=None, timeout=None):
        webhooks.append((data, headers))

    monkeypatch.setattr(mock_gateway.requests, "post", fake_post)
    return TestClient(mock_gateway.app), webhooks


def create_intent(client, amount=1250, key=None):
    headers = {**AUTH, "Idempotency-Key": key} if key else AUTH
    return client.post(
        "/v1/payment_intents",
        data={"amount": str(amount), "currency": "usd", "metadata[order_id]": "1"},
        headers=headers,
    )


def test_intent_is_idempotent(wired):
    client, _ = wired

    first = create_intent(client, key="order_1_tx_1").json()
    second = create_intent(client, key="order_1_tx_1").json()

    assert first["id"] == second["id"]
    assert first["client_secret"].startswith(first["id"])
    assert first["metadata"] == {"order_id": "1"}


def test_confirm_emits_signed_succeeded_webhook(wired):
    client, webhooks = wired
    intent = create_intent(client).json()

    res = client.post(f"/v1/payment_intents/{intent['id']}/confirm", data={}, headers=AUTH)

    assert res.json()["status"] == "succeeded"
    body, headers = webhooks[-1]
    assert json.loads(body)["type"] == "payment_intent.succeeded"
    gw = StripePaymentGateway(secret_key="sk_test", webhook_secret=PAYMENT_WEBHOOK_SECRET, api_base="")
    assert gw.verify_webhook_signature(body, headers["Stripe-Signature"])


def test_declined_card_answers_402_card_error(wired):
    client, webhooks = wired
    intent = create_intent(client).json()

    res = client.post(
        f"/v1/payment_intents/{intent['id']}/confirm",
        data={"payment_method": "pm_card_declined"},
        headers=AUTH,
    )

    assert res.status_code == 402
    assert res.json()["error"]["type"] == "card_error"
    assert json.loads(webhooks[-1][0])["type"] == "payment_intent.payment_failed"


def test_refund_after_success(wired):
    client, webhooks = wired
    intent = create_intent(client).json()
    client.post(f"/v1/payment_intents/{intent['id']}/confirm", data={}, headers=AUTH)

    refund = client.post("/v1/refunds", data={"payment_intent": intent["id"], "amount": "500"}, headers=AUTH).json()

    assert refund["amount"] == 500
    assert json.loads(webhooks[-1][0])["data"]["object"]["amount_refunded"] == 500


def test_tiny_amount_and_missing_key_rejected(wired):
    client, _ = wired

    assert create_intent(client, amount=10).status_code == 400
    assert client.post("/v1/payment_intents", data={"amount": "1250"}).status_code == 401
