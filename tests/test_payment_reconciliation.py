import json
from datetime import datetime, timedelta, timezone

import pytest

from app.data.models import PaymentTransactionModel, ProductModel, WebhookEventModel
from app.domain.errors import (
    InvalidSignature,
    InvalidStateTransition,
    PaymentError,
    UnknownPaymentTransaction,
    ValidationError,
)
from app.services.cart_service import CartService
from app.services.checkout_service import CheckoutService
from app.services.order_service import OrderService
from app.services.payment_gateway import sign_payload
from app.services.payment_service import PaymentService

WEBHOOK_SECRET = "whsec_test"


@pytest.fixture
def payments(db, gateway, notifier):
    dispatched = []
    svc = PaymentService(db, gateway, notifier, webhook_secret=WEBHOOK_SECRET, dispatcher=dispatched.append)
    svc.dispatched = dispatched
    return svc


@pytest.fixture
def order(db, lock_service, notifier, catalog, user_identity, address):
    CartService(db, lock_service).add_item(user_identity, catalog["products"]["milk"].id, 2)
    placed = CheckoutService(db, lock_service, notifier).place_order(user_identity, address, "shipping")
    notifier.sent.clear()
    return placed


def event(event_id, event_type, obj):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def test_intent_created_with_idempotency_key(payments, gateway, order, user):
    first = payments.create_intent_for_order(order.id, user.id)
    second = payments.create_intent_for_order(order.id, user.id)

    assert first["transaction_id"] == second["transaction_id"]
    assert first["client_secret"]
    assert len(gateway.intents) == 1
    assert first["amount"] == order.total_amount


def test_succeeded_webhook_confirms_order_once(payments, db, order, user, notifier):
    intent = payments.create_intent_for_order(order.id, user.id)
    evt = event("evt_1", "payment_intent.succeeded", {"id": intent["transaction_id"]})

    assert payments.process_event(evt) == "completed"
    assert payments.process_event(evt) == "duplicate"

    tx = db.query(PaymentTransactionModel).filter_by(order_id=order.id).one()
    assert tx.status == "completed"
    assert order.status == "confirmed"
    assert notifier.kinds() == ["order_confirmed"]
    assert db.query(WebhookEventModel).count() == 1


def test_failed_then_retry_creates_new_transaction(payments, db, order, user, notifier):
    intent = payments.create_intent_for_order(order.id, user.id)
    payments.process_event(event("evt_f", "payment_intent.payment_failed", {
        "id": intent["transaction_id"],
        "last_payment_error": {"message": "Your card was declined."},
    }))

    assert order.payment_failed is True
    assert order.status == "pending"
    assert notifier.kinds() == ["payment_failed"]

    retry = payments.create_intent_for_order(order.id, user.id)
    assert retry["transaction_id"] != intent["transaction_id"]
    statuses = [tx.status for tx in db.query(PaymentTransactionModel).order_by(PaymentTransactionModel.id)]
    assert statuses == ["failed", "pending"]


def test_late_failure_after_success_is_ignored(payments, db, order, user):
    intent = payments.create_intent_for_order(order.id, user.id)
    payments.process_event(event("evt_s", "payment_intent.succeeded", {"id": intent["transaction_id"]}))

    outcome = payments.process_event(event("evt_f", "payment_intent.payment_failed", {"id": intent["transaction_id"]}))

    assert outcome == "no_change"
    assert db.query(PaymentTransactionModel).one().status == "completed"


def test_unknown_intent_is_left_unrecorded_for_retry(payments, db, order):
    with pytest.raises(UnknownPaymentTransaction):
        payments.process_event(event("evt_x", "payment_intent.succeeded", {"id": "pi_unknown"}))

    assert order.status == "pending"
    assert db.query(WebhookEventModel).count() == 0


def test_event_retried_after_transaction_linked(payments, db, order, user):
    early = event("evt_early", "payment_intent.succeeded", {"id": "pi_test_1"})
    with pytest.raises(UnknownPaymentTransaction):
        payments.process_event(early)

    assert payments.create_intent_for_order(order.id, user.id)["transaction_id"] == "pi_test_1"
    assert payments.process_event(early) == "completed"
    assert order.status == "confirmed"


def test_intent_lost_in_timeout_is_linked_from_metadata(payments, db, order):
    tx = db.query(PaymentTransactionModel).filter_by(order_id=order.id).one()
    assert tx.transaction_id is None
    evt = event("evt_late", "payment_intent.succeeded", {
        "id": "pi_late",
        "metadata": {"order_id": str(order.id), "payment_transaction_id": str(tx.id)},
    })

    assert payments.process_event(evt) == "completed"
    assert tx.transaction_id == "pi_late"
    assert tx.status == "completed"
    assert order.status == "confirmed"


def test_metadata_of_another_order_is_not_trusted(payments, db, order):
    tx = db.query(PaymentTransactionModel).filter_by(order_id=order.id).one()
    evt = event("evt_x", "payment_intent.succeeded", {
        "id": "pi_other",
        "metadata": {"order_id": str(order.id + 100), "payment_transaction_id": str(tx.id)},
    })

    with pytest.raises(UnknownPaymentTransaction):
        payments.process_event(evt)
    assert tx.transaction_id is None


def test_card_error_on_intent_marks_payment_failed(payments, gateway, db, order, user, notifier):
    gateway.fail_with = (PaymentError.CARD_ERROR, "Card was declined: insufficient_funds")

    with pytest.raises(PaymentError):
        payments.create_intent_for_order(order.id, user.id)

    assert db.query(PaymentTransactionModel).one().status == "failed"
    assert order.payment_failed is True
    assert notifier.kinds() == ["payment_failed"]


def test_network_error_keeps_transaction_pending(payments, gateway, db, order, user):
    gateway.fail_with = (PaymentError.NETWORK_ERROR, "timeout")

    with pytest.raises(PaymentError) as exc:
        payments.create_intent_for_order(order.id, user.id)

    assert exc.value.retryable is True
    assert db.query(PaymentTransactionModel).one().status == "pending"


def test_webhook_signature_checked_before_dispatch(payments):
    body = json.dumps(event("evt_1", "payment_intent.succeeded", {"id": "pi_1"})).encode()

    with pytest.raises(InvalidSignature):
        payments.handle_webhook(body, "t=1,v1=deadbeef")
    assert payments.dispatched == []

    ack = payments.handle_webhook(body, sign_payload(body, WEBHOOK_SECRET))
    assert ack["received"] is True
    assert payments.dispatched[0]["id"] == "evt_1"


def test_malformed_webhook_rejected(payments):
    body = b"not json"

    with pytest.raises(ValidationError):
        payments.handle_webhook(body, sign_payload(body, WEBHOOK_SECRET))


def test_refund_flow(payments, gateway, db, order, user, notifier):
    intent = payments.create_intent_for_order(order.id, user.id)
    payments.process_event(event("evt_s", "payment_intent.succeeded", {"id": intent["transaction_id"]}))
    notifier.sent.clear()

    refunded = payments.refund_order(order.id)

    assert refunded.status == "refunded"
    assert gateway.refunds == [(intent["transaction_id"], None)]
    tx = db.query(PaymentTransactionModel).one()
    assert tx.status == "refunded"
    assert tx.refunded_amount == order.total_amount
    assert notifier.kinds() == ["order_refunded"]


def test_refund_without_completed_payment_rejected(payments, order):
    with pytest.raises(InvalidStateTransition):
        payments.refund_order(order.id)


def test_payment_timeout_notifies_once(payments, db, order, user, notifier):
    payments.create_intent_for_order(order.id, user.id)
    later = datetime.now(timezone.utc) + timedelta(minutes=16)

    assert payments.check_payment_timeouts(now=later) == 1
    assert payments.check_payment_timeouts(now=later) == 0
    assert notifier.kinds() == ["payment_timeout"]
    assert db.query(PaymentTransactionModel).one().status == "pending"


def test_transaction_without_intent_never_times_out(payments, order, notifier):
    later = datetime.now(timezone.utc) + timedelta(minutes=60)

    assert payments.check_payment_timeouts(now=later) == 0
    assert notifier.kinds() == []


def test_timeout_measured_from_intent_creation(payments, db, order, user):
    tx = db.query(PaymentTransactionModel).filter_by(order_id=order.id).one()
    tx.created_at = datetime.now(timezone.utc) - timedelta(hours=2)
    db.commit()
    payments.create_intent_for_order(order.id, user.id)

    assert payments.check_payment_timeouts(now=datetime.now(timezone.utc) + timedelta(minutes=5)) == 0


def test_cancel_paid_order_restores_stock_and_refunds(payments, gateway, db, order, user, catalog, notifier):
    intent = payments.create_intent_for_order(order.id, user.id)
    payments.process_event(event("evt_s", "payment_intent.succeeded", {"id": intent["transaction_id"]}))
    notifier.sent.clear()

    cancelled = OrderService(db, payments, notifier).cancel_order(order.id, user.id, reason="changed my mind")

    assert cancelled.status == "cancelled"
    assert db.get(ProductModel, catalog["products"]["milk"].id).stock_quantity == 10
    assert gateway.refunds == [(intent["transaction_id"], None)]
    assert notifier.kinds() == ["order_cancelled"]


def test_shipped_order_cannot_be_cancelled(payments, db, order, user, notifier):
    intent = payments.create_intent_for_order(order.id, user.id)
    payments.process_event(event("evt_s", "payment_intent.succeeded", {"id": intent["transaction_id"]}))
    orders = OrderService(db, payments, notifier)
    orders.update_status(order.id, "shipped", tracking_code="TRK1")

    with pytest.raises(InvalidStateTransition):
        orders.cancel_order(order.id, user.id)


def test_pending_order_status_driven_by_payment_only(payments, db, order, notifier):
    with pytest.raises(InvalidStateTransition):
        OrderService(db, payments, notifier).update_status(order.id, "confirmed")


def test_item_status_moves_forward_only(payments, db, order, notifier):
    orders = OrderService(db, payments, notifier)
    item = order.items[0]

    orders.update_item_status(order.id, item.id, "packaged")
    with pytest.raises(InvalidStateTransition):
        orders.update_item_status(order.id, item.id, "ready")

    assert item.status == "packaged"


def test_payment_captured_after_cancel_can_be_refunded(payments, gateway, db, order, user, notifier):
    intent = payments.create_intent_for_order(order.id, user.id)
    OrderService(db, payments, notifier).cancel_order(order.id, user.id)
    payments.process_event(event("evt_s", "payment_intent.succeeded", {"id": intent["transaction_id"]}))
    assert db.query(PaymentTransactionModel).one().status == "completed"
    notifier.sent.clear()

    refunded = payments.refund_order(order.id)

    assert refunded.status == "cancelled"
    assert gateway.refunds == [(intent["transaction_id"], None)]
    assert db.query(PaymentTransactionModel).one().status == "refunded"
    assert notifier.kinds() == ["order_refunded"]


def test_order_service_needs_payment_service(db):
    with pytest.raises(TypeError):
        OrderService(db)
