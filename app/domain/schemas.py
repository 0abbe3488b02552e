# app/domain/schemas.py
from pydantic import BaseModel, Field, ConfigDict
from typing import List, Literal
from decimal import Decimal
from datetime import datetime

from app.utils.settings import CART_MAX_QUANTITY


class ItemIn(BaseModel):
    """Schema dla dodawania produktu do koszyka."""

    product_id: int = Field(..., gt=0, description="ID produktu (musi być > 0)")
    quantity: int = Field(..., ge=1, le=CART_MAX_QUANTITY, description="Ilość produktu (1-99)")


class ItemUpdateIn(BaseModel):
    quantity: int = Field(..., ge=1, le=CART_MAX_QUANTITY)


class CartLineOut(BaseModel):
    line_id: str
    product_id: int
    name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    store_id: int
    category_id: int | None = None
    stock_quantity: int
    added_at: str | None = None

    model_config = ConfigDict(from_attributes=True)


class StoreGroupOut(BaseModel):
    store_id: int
    item_count: int
    total_quantity: int
    total_price: Decimal
    items: List[CartLineOut]


class AppliedDiscountOut(BaseModel):
    type: str
    description: str
    amount: Decimal
    code: str | None = None

    model_config = ConfigDict(from_attributes=True)


class PricingOut(BaseModel):
    """Schema dla podsumowania cen koszyka (response)."""

    subtotal: Decimal
    discount: Decimal
    delivery_fee: Decimal
    tax: Decimal
    total: Decimal
    applied_discounts: List[AppliedDiscountOut] = []
    discount_breakdown: List[dict] = []
    available_discounts: List[dict] = []
    rejected_code_reason: str | None = None
    applied_code: str | None = None
    store_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class CartOut(BaseModel):
    """Schema dla koszyka (response)."""

    user_id: int | None = None
    session_id: str | None = None
    items: List[CartLineOut]
    groups: List[StoreGroupOut]
    total_items: int
    is_multi_store: bool
    totals: PricingOut


class AddressIn(BaseModel):
    label: str | None = Field(None, max_length=100)
    street_address: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=2, max_length=50)
    zip_code: str = Field(..., min_length=3, max_length=10)
    delivery_instructions: str | None = Field(None, max_length=500)


class CheckoutIn(BaseModel):
    """Schema dla zlozenia zamowienia. Kwoty nigdy nie przychodza od klienta."""

    address: AddressIn
    shipping_method: Literal["shipping", "fast_delivery"] = "fast_delivery"
    discount_code: str | None = Field(None, max_length=50)


class CheckoutOut(BaseModel):
    order_id: int
    order_number: str
    total_amount: Decimal
    status: str
    client_secret: str | None = None
    payment_error: str | None = None


class OrderItemOut(BaseModel):
    id: int
    product_id: int
    store_id: int
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    status: str

    model_config = ConfigDict(from_attributes=True)


class PaymentTransactionOut(BaseModel):
    id: int
    amount: Decimal
    currency: str
    payment_method: str
    transaction_id: str | None = None
    status: str
    failure_reason: str | None = None
    refunded_amount: Decimal | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    """Schema dla zamówienia (response)."""

    id: int
    order_number: str
    user_id: int
    primary_store_id: int | None = None
    user_address_id: int | None = None
    status: str
    payment_failed: bool
    subtotal: Decimal
    discount: Decimal
    delivery_fee: Decimal
    tax: Decimal
    total_amount: Decimal
    discount_code: str | None = None
    delivery_address: str
    shipping_method: str
    tracking_code: str | None = None
    created_at: datetime
    items: List[OrderItemOut] = []
    transactions: List[PaymentTransactionOut] = []

    model_config = ConfigDict(from_attributes=True)


class OrderStatusIn(BaseModel):
    status: Literal["confirmed", "processing", "shipped", "delivered"]
    tracking_code: str | None = None


class ItemStatusIn(BaseModel):
    status: Literal["ready", "collected", "packaged", "shipped", "delivered"]


class CancelIn(BaseModel):
    reason: str | None = Field(None, max_length=500)


class RefundIn(BaseModel):
    amount: Decimal | None = Field(None, gt=0)


class PaymentIntentOut(BaseModel):
    order_id: int
    transaction_id: str
    client_secret: str
    amount: Decimal
    currency: str


class WebhookAck(BaseModel):
    received: bool = True
    event_id: str | None = None


class UserCreate(BaseModel):
    """Schema dla tworzenia użytkownika."""

    id: int = Field(..., gt=0, description="ID użytkownika (musi być > 0)")
    name: str = Field(..., min_length=1, max_length=100, description="Imię użytkownika")
    email: str | None = Field(None, max_length=255)


class UserRead(BaseModel):
    """Schema dla użytkownika (response)."""

    id: int
    name: str
    email: str | None = None

    model_config = ConfigDict(from_attributes=True)
