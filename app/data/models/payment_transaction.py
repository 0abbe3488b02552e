from datetime import datetime, timezone

from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Numeric
from sqlalchemy.orm import relationship

from app.data.database import Base


def _now():
    return datetime.now(timezone.utc)


class PaymentTransactionModel(Base):
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="usd")
    payment_method = Column(String, nullable=False, default="card")
    # id payment intentu w bramce, ustawiany po utworzeniu intentu
    transaction_id = Column(String, nullable=True, unique=True, index=True)

    status = Column(String, nullable=False, default="pending")  # pending, completed, failed, refunded
    failure_reason = Column(String, nullable=True)
    refunded_amount = Column(Numeric(10, 2), nullable=True)
    intent_created_at = Column(DateTime(timezone=True), nullable=True)
    timeout_notified_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    order = relationship("OrderModel", back_populates="transactions")
