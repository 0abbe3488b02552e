# app/services/checkout_service.py
import secrets
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from tenacity import retry, stop_after_attempt, retry_if_exception_type

from app.data.models.order import OrderModel
from app.data.models.order_item import OrderItemModel
from app.data.models.payment_transaction import PaymentTransactionModel
from app.domain.errors import (
    ShopError,
    ValidationError,
    NotFound,
    Unauthorized,
    InsufficientStock,
    OrderCreationFailed,
)
from app.domain.identity import Identity, CartLineItem
from app.domain.pricing import money
from app.domain.schemas import AddressIn
from app.repos.order_repo import OrderRepo
from app.repos.product_repo import ProductRepo
from app.services.cart_service import CartService
from app.services.lock_service import LockService
from app.services.notification_service import NotificationService, ORDER_PLACED
from app.services.pricing_service import PricingService
from app.services.user_service import UserService
from app.utils.settings import PAYMENT_CURRENCY, SHIPPING_METHODS
from app.utils.logging import get_logger

logger = get_logger(__name__)


class OrderNumberCollision(Exception):
    pass


def generate_order_number(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"ORD-{now:%Y%m%d}-{secrets.token_hex(4).upper()}"


class CheckoutService:
    """
    Serwis skladajacy zamowienie z koszyka (order assembler).

    Wszystko w jednej transakcji bazy:
    1. ponowna walidacja stanow magazynowych pod blokada wierszy produktow
    2. przeliczenie cen po stronie serwera (kwoty od klienta sa ignorowane)
    3. adres dostawy (istniejacy albo nowy)
    4. zamowienie + pozycje z cena z tej chwili
    5. zdjecie stanow magazynowych
    6. transakcja platnosci w statusie pending
    7. wyczyszczenie koszyka
    Albo wszystko sie zapisze, albo nic.
    """

    def __init__(
        self,
        db: Session,
        lock_service: LockService,
        notification_service: NotificationService | None = None,
        pricing_service: PricingService | None = None,
    ):
        self.db = db
        self.orders = OrderRepo(db)
        self.products = ProductRepo(db)
        self.users = UserService(db)
        self.pricing = pricing_service or PricingService(db)
        self.cart = CartService(db, lock_service, self.pricing)
        self.lock_service = lock_service
        self.notification_service = notification_service or NotificationService()

    def place_order(
        self,
        identity: Identity,
        address: AddressIn,
        shipping_method: str,
        discount_code: str | None = None,
    ) -> OrderModel:
        if not identity.is_authenticated:
            raise Unauthorized("Please log in to place an order")
        if shipping_method not in SHIPPING_METHODS:
            raise ValidationError(f"Unknown shipping method: {shipping_method}", field="shipping_method")
        if not self.users.repo.get_user(identity.user_id):
            raise NotFound("User not found")

        with self.lock_service.cart_lock(identity.lock_key):
            try:
                order = self._place_order_atomic(identity, address, shipping_method, discount_code)
            except OrderNumberCollision as e:
                logger.error(f"Order number collisions exhausted retries for user {identity.user_id}")
                raise OrderCreationFailed() from e

        logger.info(
            f"Order {order.order_number} (id {order.id}) placed by user {order.user_id}, "
            f"{len(order.items)} items, total {order.total_amount}"
        )
        self.notification_service.send(
            order.user_id,
            ORDER_PLACED,
            {"order_id": order.id, "order_number": order.order_number, "total": str(order.total_amount)},
        )
        return order

    @retry(reraise=True, stop=stop_after_attempt(3), retry=retry_if_exception_type(OrderNumberCollision))
    def _place_order_atomic(self, identity, address, shipping_method, discount_code) -> OrderModel:
        lines = self.cart.get_line_items(identity)
        snapshot = [(line.product_id, line.quantity, str(line.unit_price)) for line in lines]

        try:
            order = self._assemble(identity, lines, address, shipping_method, discount_code)
            self.db.commit()
            return order
        except ShopError:
            #bledy walidacji/stanow ida prosto do klienta
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            if "order_number" in str(e.orig):
                logger.warning(f"Order number collision for user {identity.user_id}, retrying")
                raise OrderNumberCollision() from e
            logger.exception(f"Order creation failed for user {identity.user_id}, cart {snapshot}: {e}")
            raise OrderCreationFailed() from e
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Order creation failed for user {identity.user_id}, cart {snapshot}: {e}")
            raise OrderCreationFailed() from e

    def _assemble(
        self,
        identity: Identity,
        lines: list[CartLineItem],
        address: AddressIn,
        shipping_method: str,
        discount_code: str | None,
    ) -> OrderModel:
        if not lines:
            raise ValidationError("Your cart is empty", field="cart")

        # stan i cena czytane ponownie w transakcji, pod blokada
        locked = self.products.lock_products(line.product_id for line in lines)
        fresh_lines = []
        for line in lines:
            product = locked.get(line.product_id)
            if product is None or not product.is_active:
                raise ValidationError(f"{line.name} is no longer available", field="cart")
            if product.stock_quantity < line.quantity:
                raise InsufficientStock(product.id, product.stock_quantity, line.quantity)
            fresh_lines.append(
                replace(line, unit_price=Decimal(str(product.price)), stock_quantity=product.stock_quantity)
            )

        pricing = self.pricing.compute_totals(fresh_lines, user_id=identity.user_id, discount_code=discount_code)
        if discount_code and pricing.rejected_code_reason:
            raise ValidationError(
                f"Discount code cannot be applied: {pricing.rejected_code_reason}", field="discount_code"
            )

        address_row = self.users.resolve_address(identity.user_id, address)

        order = OrderModel(
            order_number=self._new_order_number(),
            user_id=identity.user_id,
            primary_store_id=self._primary_store(fresh_lines),
            user_address_id=address_row.id,
            status="pending",
            payment_failed=False,
            subtotal=pricing.subtotal,
            discount=pricing.discount,
            delivery_fee=pricing.delivery_fee,
            tax=pricing.tax,
            total_amount=pricing.total,
            discount_code=pricing.applied_code,
            delivery_address=address_row.one_line(),
            shipping_method=shipping_method,
        )
        self.orders.add_order(order)

        for line in fresh_lines:
            order.items.append(
                OrderItemModel(
                    product_id=line.product_id,
                    store_id=line.store_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    total_price=money(line.total_price),
                    status="pending",
                )
            )
            # stan schodzi przy skladaniu zamowienia, w tej samej transakcji
            locked[line.product_id].stock_quantity -= line.quantity

        order.transactions.append(
            PaymentTransactionModel(
                amount=pricing.total,
                currency=PAYMENT_CURRENCY,
                payment_method="card",
                status="pending",
            )
        )

        self.cart.clear_storage(identity)
        self.db.flush()
        return order

    def _new_order_number(self) -> str:
        #unikalnosc gwarantuje constraint, petla tylko zmniejsza szanse kolizji
        for _ in range(5):
            number = generate_order_number()
            if not self.orders.order_number_exists(number):
                return number
        return generate_order_number()

    @staticmethod
    def _primary_store(lines: list[CartLineItem]) -> int:
        per_store = defaultdict(Decimal)
        for line in lines:
            per_store[line.store_id] += line.total_price
        return max(per_store.items(), key=lambda kv: (kv[1], -kv[0]))[0]
