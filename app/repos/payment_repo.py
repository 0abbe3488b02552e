# app/repos/payment_repo.py
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from app.data.models.payment_transaction import PaymentTransactionModel
from app.data.models.webhook_event import WebhookEventModel


class PaymentRepo:
    def __init__(self, db: Session):
        self.db = db

    def add_transaction(self, tx: PaymentTransactionModel) -> PaymentTransactionModel:
        self.db.add(tx)
        self.db.flush()
        return tx

    def get(self, tx_id: int, for_update: bool = False) -> PaymentTransactionModel | None:
        stmt = select(PaymentTransactionModel).where(PaymentTransactionModel.id == tx_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_gateway_id(self, gateway_id: str, for_update: bool = False) -> PaymentTransactionModel | None:
        stmt = select(PaymentTransactionModel).where(PaymentTransactionModel.transaction_id == gateway_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def latest_for_order(self, order_id: int) -> PaymentTransactionModel | None:
        return self.db.execute(
            select(PaymentTransactionModel)
            .where(PaymentTransactionModel.order_id == order_id)
            .order_by(PaymentTransactionModel.id.desc())
        ).scalars().first()

    def completed_for_order(self, order_id: int) -> PaymentTransactionModel | None:
        return self.db.execute(
            select(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.order_id == order_id,
                PaymentTransactionModel.status == "completed",
            )
            .order_by(PaymentTransactionModel.id.desc())
        ).scalars().first()

    def completed_sum(self, order_id: int) -> Decimal:
        total = self.db.execute(
            select(func.coalesce(func.sum(PaymentTransactionModel.amount), 0)).where(
                PaymentTransactionModel.order_id == order_id,
                PaymentTransactionModel.status == "completed",
            )
        ).scalar_one()
        return Decimal(str(total))

    def stale_pending(self, intent_created_before: datetime) -> list[PaymentTransactionModel]:
        """Pending transactions whose gateway intent is older than the cutoff; no intent, no timeout."""
        return list(
            self.db.execute(
                select(PaymentTransactionModel).where(
                    PaymentTransactionModel.status == "pending",
                    PaymentTransactionModel.transaction_id.is_not(None),
                    PaymentTransactionModel.intent_created_at < intent_created_before,
                    PaymentTransactionModel.timeout_notified_at.is_(None),
                )
            ).scalars().all()
        )

    def event_seen(self, event_id: str) -> bool:
        return self.db.execute(
            select(WebhookEventModel.id).where(WebhookEventModel.event_id == event_id)
        ).first() is not None

    def record_event(self, event_id: str, event_type: str) -> None:
        self.db.add(WebhookEventModel(event_id=event_id, event_type=event_type))
        self.db.flush()
