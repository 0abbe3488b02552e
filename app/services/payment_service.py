# app/services/payment_service.py
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.data.models.order import OrderModel
from app.data.models.payment_transaction import PaymentTransactionModel
from app.domain.errors import (
    NotFound,
    Unauthorized,
    ValidationError,
    PaymentError,
    InvalidSignature,
    InvalidStateTransition,
    UnknownPaymentTransaction,
)
from app.domain.pricing import money
from app.domain.status import TRANSACTION_TRANSITIONS, ORDER_TRANSITIONS, can_transition, ensure_order_transition
from app.repos.order_repo import OrderRepo
from app.repos.payment_repo import PaymentRepo
from app.services.notification_service import (
    NotificationService,
    ORDER_CONFIRMED,
    PAYMENT_FAILED,
    PAYMENT_TIMEOUT,
    ORDER_REFUNDED,
)
from app.services.payment_gateway import PaymentGateway
from app.utils.settings import PAYMENT_CURRENCY, PAYMENT_WEBHOOK_SECRET, PAYMENT_TIMEOUT_MINUTES
from app.utils.logging import get_logger

logger = get_logger(__name__)

SUCCEEDED = "payment_intent.succeeded"
FAILED = "payment_intent.payment_failed"
CANCELED = "payment_intent.canceled"
REFUNDED = "charge.refunded"


def _enqueue_event(event: dict) -> None:
    from app.tasks.payments import process_webhook_event_task

    process_webhook_event_task.delay(event)


class PaymentService:
    """
    Platnosci: tworzenie payment intentow, uzgadnianie stanu z webhookow bramki,
    zwroty i pilnowanie przeterminowanych platnosci.

    Webhook moze przyjsc kilka razy, w dowolnej kolejnosci i rownolegle - kazde
    zdarzenie jest zapisywane (webhook_events), a zmiany statusow ida tylko po
    dozwolonych przejsciach.
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        notification_service: NotificationService | None = None,
        webhook_secret: str | None = None,
        dispatcher=None,
    ):
        self.db = db
        self.gateway = gateway
        self.orders = OrderRepo(db)
        self.payments = PaymentRepo(db)
        self.notification_service = notification_service or NotificationService()
        self.webhook_secret = PAYMENT_WEBHOOK_SECRET if webhook_secret is None else webhook_secret
        self.dispatcher = dispatcher or _enqueue_event

    # --- payment intent -------------------------------------------------

    def create_intent_for_order(self, order_id: int, user_id: int) -> dict:
        order = self._owned_order(order_id, user_id)
        if order.status != "pending":
            raise ValidationError(f"Order {order.order_number} is not awaiting payment", field="order_id")

        tx = self.payments.latest_for_order(order.id)
        if tx is None or tx.status == "failed":
            # ponowna proba po nieudanej platnosci = nowa transakcja
            tx = self.payments.add_transaction(
                PaymentTransactionModel(
                    order_id=order.id,
                    amount=order.total_amount,
                    currency=tx.currency if tx else PAYMENT_CURRENCY,
                    payment_method="card",
                    status="pending",
                )
            )
            self.db.commit()
        elif tx.status != "pending":
            raise ValidationError(f"Order {order.order_number} is already paid", field="order_id")

        try:
            intent = self.gateway.create_payment_intent(
                order.total_amount,
                tx.currency,
                {"order_id": order.id, "order_number": order.order_number, "payment_transaction_id": tx.id},
                idempotency_key=f"order_{order.id}_tx_{tx.id}",
            )
        except PaymentError as e:
            self._intent_failed(order, tx, e)
            raise

        tx.transaction_id = intent.intent_id
        if tx.intent_created_at is None:
            tx.intent_created_at = datetime.now(timezone.utc)
        self.db.commit()
        logger.info(f"Payment intent {intent.intent_id} for order {order.order_number} (tx {tx.id})")

        return {
            "order_id": order.id,
            "transaction_id": intent.intent_id,
            "client_secret": intent.client_secret,
            "amount": order.total_amount,
            "currency": tx.currency,
        }

    def _intent_failed(self, order: OrderModel, tx: PaymentTransactionModel, error: PaymentError) -> None:
        if error.kind == PaymentError.CARD_ERROR:
            tx.status = "failed"
            tx.failure_reason = error.message
            order.payment_failed = True
            self.db.commit()
            logger.info(f"Card declined for order {order.order_number}: {error.message}")
            self._notify(order.user_id, PAYMENT_FAILED, order, reason=error.message)
        elif error.kind == PaymentError.CONFIGURATION_ERROR:
            logger.critical(f"Payment gateway misconfigured, order {order.order_number}: {error.message}")
        else:
            #transakcja zostaje pending, klient moze ponowic
            logger.warning(f"Payment gateway unavailable for order {order.order_number}: {error.message}")

    # --- webhook ----------------------------------------------------------

    def handle_webhook(self, payload: bytes, signature: str | None) -> dict:
        """
        Synchroniczna czesc webhooka: podpis + parsowanie, potem zdarzenie idzie
        do kolejki. Bramka dostaje 2xx bez czekania na baze.
        """
        if self.webhook_secret:
            if not self.gateway.verify_webhook_signature(payload, signature):
                raise InvalidSignature("Invalid webhook signature")
        else:
            logger.warning("Webhook secret not configured, signature not verified")

        try:
            event = json.loads(payload)
        except (ValueError, UnicodeDecodeError) as e:
            raise ValidationError("Malformed webhook payload") from e
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise ValidationError("Webhook event must carry id and type")

        self.dispatcher(event)
        logger.info(f"Webhook {event['id']} ({event['type']}) queued")
        return {"received": True, "event_id": event["id"]}

    def process_event(self, event: dict) -> str:
        event_id = event["id"]
        event_type = event["type"]
        obj = (event.get("data") or {}).get("object") or {}

        if self.payments.event_seen(event_id):
            logger.info(f"Webhook {event_id} already processed, skipping")
            return "duplicate"

        pending_notifications = []
        if event_type == SUCCEEDED:
            outcome = self._on_succeeded(obj, pending_notifications)
        elif event_type in (FAILED, CANCELED):
            outcome = self._on_failed(obj, event_type, pending_notifications)
        elif event_type == REFUNDED:
            outcome = self._on_refunded(obj, pending_notifications)
        else:
            logger.info(f"Unhandled webhook type {event_type} ({event_id})")
            outcome = "ignored"

        intent_ref = obj.get("payment_intent") or obj.get("id")
        if outcome == "unknown_transaction" and intent_ref:
            # nie zapisujemy zdarzenia - ponowienie ma szanse je dopasowac
            self.db.rollback()
            raise UnknownPaymentTransaction(event_id, intent_ref)

        try:
            self.payments.record_event(event_id, event_type)
            self.db.commit()
        except IntegrityError:
            #rownolegly worker zapisal to samo zdarzenie
            self.db.rollback()
            logger.info(f"Webhook {event_id} recorded concurrently, changes discarded")
            return "duplicate"

        for user_id, kind, payload in pending_notifications:
            self.notification_service.send(user_id, kind, payload)
        return outcome

    def _tx_for(self, intent_id: str | None, metadata: dict | None = None) -> PaymentTransactionModel | None:
        if not intent_id:
            return None
        tx = self.payments.get_by_gateway_id(intent_id, for_update=True)
        if tx is None:
            tx = self._link_from_metadata(intent_id, metadata or {})
        if tx is None:
            logger.warning(f"No payment transaction for intent {intent_id}")
        return tx

    def _link_from_metadata(self, intent_id: str, metadata: dict) -> PaymentTransactionModel | None:
        """
        Intent powstal w bramce, ale odpowiedz do nas nie dotarla (timeout) -
        transakcje wskazuje metadata.payment_transaction_id z create_intent_for_order.
        """
        tx_id = str(metadata.get("payment_transaction_id") or "")
        if not tx_id.isdigit():
            return None
        tx = self.payments.get(int(tx_id), for_update=True)
        if tx is None or tx.transaction_id is not None:
            return None
        if str(metadata.get("order_id", tx.order_id)) != str(tx.order_id):
            logger.warning(f"Intent {intent_id} metadata points at tx {tx.id} of another order")
            return None

        tx.transaction_id = intent_id
        tx.intent_created_at = tx.intent_created_at or datetime.now(timezone.utc)
        logger.info(f"Intent {intent_id} linked to transaction {tx.id} from webhook metadata")
        return tx

    def _on_succeeded(self, obj: dict, notifications: list) -> str:
        tx = self._tx_for(obj.get("id"), obj.get("metadata"))
        if tx is None:
            return "unknown_transaction"
        if not can_transition(TRANSACTION_TRANSITIONS, tx.status, "completed"):
            logger.info(f"Transaction {tx.id} is {tx.status}, succeeded event ignored")
            return "no_change"

        order = self.orders.get_order(tx.order_id, for_update=True)
        already_paid = self.payments.completed_sum(order.id)
        if already_paid + Decimal(str(tx.amount)) > Decimal(str(order.total_amount)):
            logger.critical(
                f"Payment {tx.transaction_id} would overpay order {order.order_number} "
                f"(paid {already_paid}, total {order.total_amount}), manual review needed"
            )
            return "overpayment"

        tx.status = "completed"
        tx.failure_reason = None
        order.payment_failed = False

        if can_transition(ORDER_TRANSITIONS, order.status, "confirmed"):
            order.status = "confirmed"
            notifications.append((order.user_id, ORDER_CONFIRMED, self._payload(order)))
            logger.info(f"Order {order.order_number} confirmed by payment {tx.transaction_id}")
        elif order.status == "cancelled":
            logger.critical(
                f"Payment {tx.transaction_id} captured for cancelled order {order.order_number}, refund required"
            )
        return "completed"

    def _on_failed(self, obj: dict, event_type: str, notifications: list) -> str:
        tx = self._tx_for(obj.get("id"), obj.get("metadata"))
        if tx is None:
            return "unknown_transaction"
        if not can_transition(TRANSACTION_TRANSITIONS, tx.status, "failed"):
            logger.info(f"Transaction {tx.id} is {tx.status}, {event_type} ignored")
            return "no_change"

        error = obj.get("last_payment_error") or {}
        reason = error.get("message") or ("canceled" if event_type == CANCELED else "payment failed")
        tx.status = "failed"
        tx.failure_reason = reason

        order = self.orders.get_order(tx.order_id, for_update=True)
        #zamowienie zostaje pending, mozna zaplacic jeszcze raz
        order.payment_failed = True
        notifications.append((order.user_id, PAYMENT_FAILED, self._payload(order, reason=reason)))
        logger.info(f"Payment {tx.transaction_id} failed for order {order.order_number}: {reason}")
        return "failed"

    def _on_refunded(self, obj: dict, notifications: list) -> str:
        tx = self._tx_for(obj.get("payment_intent"), obj.get("metadata"))
        if tx is None:
            return "unknown_transaction"
        if not can_transition(TRANSACTION_TRANSITIONS, tx.status, "refunded"):
            logger.info(f"Transaction {tx.id} is {tx.status}, refund event ignored")
            return "no_change"

        refunded = obj.get("amount_refunded")
        tx.status = "refunded"
        tx.refunded_amount = money(Decimal(refunded) / 100) if refunded is not None else tx.amount

        order = self.orders.get_order(tx.order_id, for_update=True)
        if can_transition(ORDER_TRANSITIONS, order.status, "refunded"):
            order.status = "refunded"
        notifications.append((order.user_id, ORDER_REFUNDED, self._payload(order, amount=str(tx.refunded_amount))))
        logger.info(f"Refund recorded for order {order.order_number}: {tx.refunded_amount}")
        return "refunded"

    # --- refunds ----------------------------------------------------------

    def refund_order(self, order_id: int, amount: Decimal | None = None) -> OrderModel:
        order = self.orders.get_order(order_id, for_update=True)
        if not order:
            raise NotFound("Order not found")

        tx = self.payments.completed_for_order(order.id)
        if tx is None:
            latest = self.payments.latest_for_order(order.id)
            raise InvalidStateTransition("payment", latest.status if latest else "none", "refunded")
        # platnosc przechwycona po anulowaniu: zwrot pieniedzy, zamowienie zostaje cancelled
        if order.status != "cancelled":
            ensure_order_transition(order.status, "refunded")

        if amount is not None and (amount <= 0 or amount > Decimal(str(tx.amount))):
            raise ValidationError("Refund amount must be positive and not exceed the captured amount", field="amount")

        result = self.refund_transaction(tx, amount)
        if order.status != "cancelled":
            order.status = "refunded"
        self.db.commit()

        logger.info(f"Order {order.order_number} refunded ({result.refund_id})")
        self._notify(order.user_id, ORDER_REFUNDED, order, amount=str(tx.refunded_amount))
        return order

    def refund_transaction(self, tx: PaymentTransactionModel, amount: Decimal | None = None):
        """Zwrot w bramce + zmiana statusu transakcji, bez commita."""
        try:
            result = self.gateway.refund(tx.transaction_id, amount)
        except PaymentError as e:
            if e.kind == PaymentError.CONFIGURATION_ERROR:
                logger.critical(f"Refund for {tx.transaction_id} failed, gateway misconfigured: {e.message}")
            else:
                logger.error(f"Refund for {tx.transaction_id} failed: {e.message}")
            raise

        tx.status = "refunded"
        tx.refunded_amount = money(result.amount if result.amount is not None else (amount or tx.amount))
        return result

    # --- timeouts -----------------------------------------------------------

    def check_payment_timeouts(self, now: datetime | None = None) -> int:
        """Jednorazowe powiadomienie o platnosci wiszacej dluzej niz timeout; bez auto-anulowania."""
        now = now or datetime.now(timezone.utc)
        stale = self.payments.stale_pending(now - timedelta(minutes=PAYMENT_TIMEOUT_MINUTES))
        if not stale:
            return 0

        notify = []
        for tx in stale:
            tx.timeout_notified_at = now
            notify.append((tx.order.user_id, self._payload(tx.order, transaction_id=tx.id)))
        self.db.commit()

        for user_id, payload in notify:
            self.notification_service.send(user_id, PAYMENT_TIMEOUT, payload)
        logger.info(f"Payment timeout notifications sent: {len(notify)}")
        return len(notify)

    # --- helpers ------------------------------------------------------------

    def _owned_order(self, order_id: int, user_id: int) -> OrderModel:
        order = self.orders.get_order(order_id)
        if not order:
            raise NotFound("Order not found")
        if order.user_id != user_id:
            raise Unauthorized("Access to this order is denied")
        return order

    def _notify(self, user_id: int, kind: str, order: OrderModel, **extra) -> None:
        self.notification_service.send(user_id, kind, self._payload(order, **extra))

    @staticmethod
    def _payload(order: OrderModel, **extra) -> dict:
        return {"order_id": order.id, "order_number": order.order_number, **extra}
