# app/repos/order_repo.py
from sqlalchemy import select, func
from sqlalchemy.orm import Session, selectinload

from app.data.models.order import OrderModel


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def add_order(self, order: OrderModel) -> OrderModel:
        #bez commita - transakcja nalezy do wywolujacego
        self.db.add(order)
        self.db.flush()
        return order

    def get_order(self, order_id: int, for_update: bool = False) -> OrderModel | None:
        stmt = (
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .options(selectinload(OrderModel.items), selectinload(OrderModel.transactions))
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def list_orders_for_user(self, user_id: int) -> list[OrderModel]:
        stmt = (
            select(OrderModel)
            .where(OrderModel.user_id == user_id)
            .options(selectinload(OrderModel.items), selectinload(OrderModel.transactions))
            .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def order_number_exists(self, order_number: str) -> bool:
        return self.db.execute(
            select(OrderModel.id).where(OrderModel.order_number == order_number)
        ).first() is not None

    def has_previous_orders(self, user_id: int) -> bool:
        return self.db.execute(
            select(OrderModel.id).where(
                OrderModel.user_id == user_id,
                OrderModel.status != "cancelled",
            )
        ).first() is not None

    def count_code_usage(self, user_id: int, code: str) -> int:
        return self.db.execute(
            select(func.count(OrderModel.id)).where(
                OrderModel.user_id == user_id,
                func.upper(OrderModel.discount_code) == code.upper(),
                OrderModel.status != "cancelled",
            )
        ).scalar_one()
