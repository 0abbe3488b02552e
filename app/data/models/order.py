from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Numeric, Boolean, Text
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from app.data.database import Base


def _now():
    return datetime.now(timezone.utc)


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    order_number = Column(String, nullable=False, unique=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    primary_store_id = Column(Integer, ForeignKey("stores.id"), nullable=True)
    user_address_id = Column(Integer, ForeignKey("user_addresses.id"), nullable=True)

    status = Column(String, nullable=False, default="pending", index=True)  # pending, confirmed, processing, shipped, delivered, cancelled, refunded
    payment_failed = Column(Boolean, nullable=False, default=False)

    subtotal = Column(Numeric(10, 2), nullable=False)
    discount = Column(Numeric(10, 2), nullable=False, default=0)
    delivery_fee = Column(Numeric(8, 2), nullable=False, default=0)
    tax = Column(Numeric(8, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False)
    discount_code = Column(String, nullable=True)

    delivery_address = Column(Text, nullable=False)
    shipping_method = Column(String, nullable=False)
    tracking_code = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        cascade="all, delete-orphan",
    )
    transactions = relationship(
        "PaymentTransactionModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="PaymentTransactionModel.id",
    )
