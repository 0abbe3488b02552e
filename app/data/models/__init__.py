#import wszystkich modeli zeby SQLAlchemy je zarejestrowal w base metadata

from app.data.models.user import UserModel
from app.data.models.store import StoreModel
from app.data.models.category import CategoryModel
from app.data.models.product import ProductModel
from app.data.models.cart_item import CartItemModel
from app.data.models.anonymous_cart import AnonymousCartModel
from app.data.models.user_address import UserAddressModel
from app.data.models.order import OrderModel
from app.data.models.order_item import OrderItemModel
from app.data.models.payment_transaction import PaymentTransactionModel
from app.data.models.discount_code import DiscountCodeModel
from app.data.models.system_setting import SystemSettingModel
from app.data.models.webhook_event import WebhookEventModel

__all__ = [
    "UserModel",
    "StoreModel",
    "CategoryModel",
    "ProductModel",
    "CartItemModel",
    "AnonymousCartModel",
    "UserAddressModel",
    "OrderModel",
    "OrderItemModel",
    "PaymentTransactionModel",
    "DiscountCodeModel",
    "SystemSettingModel",
    "WebhookEventModel",
]
