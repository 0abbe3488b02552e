# app/services/order_service.py
from sqlalchemy.orm import Session

from app.data.models.order import OrderModel
from app.domain.errors import NotFound, Unauthorized, InvalidStateTransition
from app.domain.status import CANCELLABLE, ensure_order_transition, ensure_item_transition
from app.repos.order_repo import OrderRepo
from app.repos.payment_repo import PaymentRepo
from app.repos.product_repo import ProductRepo
from app.services.notification_service import (
    NotificationService,
    ORDER_CANCELLED,
    ORDER_STATUS_UPDATED,
)
from app.services.payment_service import PaymentService
from app.utils.logging import get_logger

logger = get_logger(__name__)


class OrderService:
    """
    Serwis odpowiedzialny za domenę zamówień po ich złożeniu.
    Separacja od CheckoutService: tu tylko odczyt, statusy i anulowanie.
    """

    def __init__(
        self,
        db: Session,
        payment_service: PaymentService,
        notification_service: NotificationService | None = None,
    ):
        self.db = db
        self.repo = OrderRepo(db)
        self.payments = PaymentRepo(db)
        self.products = ProductRepo(db)
        self.payment_service = payment_service
        self.notification_service = notification_service or NotificationService()

    def get_order(self, order_id: int, user_id: int) -> OrderModel:
        """
        Use Case: Pobranie zamówienia (Query).
        """
        order = self.repo.get_order(order_id)

        if not order:
            raise NotFound("Order not found")

        if order.user_id != user_id:
            raise Unauthorized("Access to this order is denied")

        return order

    def list_orders(self, user_id: int) -> list[OrderModel]:
        return self.repo.list_orders_for_user(user_id)

    def update_status(self, order_id: int, new_status: str, tracking_code: str | None = None) -> OrderModel:
        order = self._get_for_update(order_id)

        # pending -> confirmed tylko przez potwierdzenie platnosci
        if order.status == "pending":
            raise InvalidStateTransition("order", order.status, new_status)
        ensure_order_transition(order.status, new_status)

        old = order.status
        order.status = new_status
        if tracking_code:
            order.tracking_code = tracking_code
        self.db.commit()

        logger.info(f"Order {order.order_number}: {old} -> {new_status}")
        self.notification_service.send(
            order.user_id,
            ORDER_STATUS_UPDATED,
            {"order_id": order.id, "order_number": order.order_number, "status": new_status,
             "tracking_code": order.tracking_code},
        )
        return order

    def update_item_status(self, order_id: int, item_id: int, new_status: str) -> OrderModel:
        order = self._get_for_update(order_id)
        if order.status in ("cancelled", "refunded"):
            raise InvalidStateTransition("order", order.status, f"item {new_status}")

        item = next((i for i in order.items if i.id == item_id), None)
        if item is None:
            raise NotFound("Order item not found")

        ensure_item_transition(item.status, new_status)
        item.status = new_status
        self.db.commit()
        logger.info(f"Order {order.order_number} item {item.id} -> {new_status}")
        return order

    def cancel_order(self, order_id: int, user_id: int, reason: str | None = None) -> OrderModel:
        """
        Use Case: Anulowanie zamówienia.

        1. Sprawdza status (tylko przed wysylka)
        2. Oddaje towar na magazyn
        3. Zwraca zaplacona kwote w bramce
        4. Wysyła powiadomienie (async)
        Blad zwrotu w bramce cofa cale anulowanie.
        """
        order = self._get_for_update(order_id)
        if order.user_id != user_id:
            raise Unauthorized("Access to this order is denied")
        if order.status not in CANCELLABLE:
            raise InvalidStateTransition("order", order.status, "cancelled")

        try:
            locked = self.products.lock_products(i.product_id for i in order.items)
            for item in order.items:
                product = locked.get(item.product_id)
                if product is not None:
                    product.stock_quantity += item.quantity

            tx = self.payments.completed_for_order(order.id)
            if tx is not None:
                self.payment_service.refund_transaction(tx)

            order.status = "cancelled"
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Order {order.order_number} cancelled by user {user_id}" + (f": {reason}" if reason else ""))
        self.notification_service.send(
            order.user_id,
            ORDER_CANCELLED,
            {"order_id": order.id, "order_number": order.order_number, "refunded": tx is not None},
        )
        return order

    def _get_for_update(self, order_id: int) -> OrderModel:
        order = self.repo.get_order(order_id, for_update=True)
        if not order:
            raise NotFound("Order not found")
        return order
