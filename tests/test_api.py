import json

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_lock_service, get_notification_service, get_payment_gateway
from app.main import create_app
from app.services.payment_gateway import sign_payload

WEBHOOK_SECRET = "whsec_test"


@pytest.fixture
def client(lock_service, notifier, gateway):
    app = create_app()
    app.dependency_overrides[get_lock_service] = lambda: lock_service
    app.dependency_overrides[get_notification_service] = lambda: notifier
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    with TestClient(app) as c:
        yield c


ADDRESS = {"street_address": "1 Main St", "city": "Springfield", "state": "IL", "zip_code": "62701"}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_create_and_get_user(client):
    assert client.post("/users/", json={"id": 5, "name": "Ola"}).status_code == 201

    res = client.get("/users/5")

    assert res.status_code == 200
    assert res.json()["name"] == "Ola"
    assert client.get("/users/6").status_code == 404


def test_cart_requires_identity(client):
    res = client.get("/cart")

    assert res.status_code == 422
    assert res.json()["code"] == "validation_error"


def test_guest_cart_via_session_header(client, catalog):
    milk = catalog["products"]["milk"]
    headers = {"X-Session-Id": "sess-api"}

    res = client.post("/cart/items", json={"product_id": milk.id, "quantity": 2}, headers=headers)

    assert res.status_code == 201
    body = res.json()
    assert body["total_items"] == 2
    assert body["items"][0]["line_id"].startswith("anonymous_")

    totals = client.get("/cart/totals", headers=headers).json()
    assert totals["subtotal"] == "7.98"


def test_insufficient_stock_answer(client, catalog):
    bread = catalog["products"]["bread"]

    res = client.post("/cart/items", json={"product_id": bread.id, "quantity": 5}, headers={"X-Session-Id": "s"})

    assert res.status_code == 409
    assert res.json()["code"] == "insufficient_stock"
    assert res.json()["available"] == 3


def test_merge_after_login(client, catalog, user):
    milk = catalog["products"]["milk"]
    client.post("/cart/items", json={"product_id": milk.id, "quantity": 1}, headers={"X-Session-Id": "sess-m"})

    res = client.post(f"/cart/merge?user_id={user.id}", headers={"X-Session-Id": "sess-m"})

    assert res.status_code == 200
    assert res.json()["total_items"] == 1
    assert res.json()["user_id"] == user.id


def test_checkout_payment_and_webhook_flow(client, catalog, user, notifier):
    milk = catalog["products"]["milk"]
    client.post(f"/cart/items?user_id={user.id}", json={"product_id": milk.id, "quantity": 2})

    res = client.post(f"/checkout?user_id={user.id}", json={"address": ADDRESS, "shipping_method": "shipping"})

    assert res.status_code == 201
    placed = res.json()
    assert placed["order_number"].startswith("ORD-")
    assert placed["client_secret"]
    assert placed["status"] == "pending"
    assert client.get(f"/cart?user_id={user.id}").json()["items"] == []

    order = client.get(f"/orders/{placed['order_id']}?user_id={user.id}").json()
    intent_id = order["transactions"][0]["transaction_id"]

    body = json.dumps({
        "id": "evt_api_1",
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": intent_id}},
    }).encode()
    res = client.post("/payments/webhook", content=body, headers={"Stripe-Signature": sign_payload(body, WEBHOOK_SECRET)})
    assert res.status_code == 200
    assert res.json()["received"] is True

    order = client.get(f"/orders/{placed['order_id']}?user_id={user.id}").json()
    assert order["status"] == "confirmed"
    assert order["transactions"][0]["status"] == "completed"
    assert "order_placed" in notifier.kinds()


def test_webhook_with_bad_signature_rejected(client):
    res = client.post("/payments/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=bad"})

    assert res.status_code == 400
    assert res.json()["code"] == "invalid_signature"


def test_guest_checkout_forbidden(client, catalog):
    res = client.post("/checkout", json={"address": ADDRESS}, headers={"X-Session-Id": "guest"})

    assert res.status_code == 403


def test_foreign_order_forbidden(client, catalog, user):
    client.post(f"/cart/items?user_id={user.id}", json={"product_id": catalog["products"]["milk"].id, "quantity": 1})
    placed = client.post(f"/checkout?user_id={user.id}", json={"address": ADDRESS}).json()

    res = client.get(f"/orders/{placed['order_id']}?user_id=999")

    assert res.status_code == 403


def test_cancel_pending_order(client, catalog, user):
    client.post(f"/cart/items?user_id={user.id}", json={"product_id": catalog["products"]["milk"].id, "quantity": 1})
    placed = client.post(f"/checkout?user_id={user.id}", json={"address": ADDRESS}).json()

    res = client.post(f"/orders/{placed['order_id']}/cancel?user_id={user.id}", json={"reason": "oops"})

    assert res.status_code == 200
    assert res.json()["status"] == "cancelled"
    listed = client.get(f"/orders?user_id={user.id}").json()
    assert [o["status"] for o in listed] == ["cancelled"]
