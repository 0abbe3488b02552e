# app/repos/cart_repo.py
from datetime import datetime, timezone

from sqlalchemy import select, update, delete
from sqlalchemy.orm import Session, selectinload

from app.data.models.cart_item import CartItemModel
from app.data.models.anonymous_cart import AnonymousCartModel
from app.data.models.product import ProductModel


class CartRepo:
    def __init__(self, db: Session):
        self.db = db

    # ---- koszyk zalogowanego uzytkownika ----
    def get_user_items(self, user_id: int) -> list[CartItemModel]:
        stmt = (
            select(CartItemModel)
            .where(CartItemModel.user_id == user_id)
            .options(selectinload(CartItemModel.product).selectinload(ProductModel.store))
            .order_by(CartItemModel.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_user_item(self, user_id: int, product_id: int) -> CartItemModel | None:
        return self.db.execute(
            select(CartItemModel).where(
                CartItemModel.user_id == user_id,
                CartItemModel.product_id == product_id,
            )
        ).scalar_one_or_none()

    def get_user_item_by_id(self, user_id: int, item_id: int) -> CartItemModel | None:
        return self.db.execute(
            select(CartItemModel).where(
                CartItemModel.user_id == user_id,
                CartItemModel.id == item_id,
            )
        ).scalar_one_or_none()

    def add_cart_item(self, item: CartItemModel) -> CartItemModel:
        self.db.add(item)
        self.db.flush()
        return item

    def delete_cart_item(self, item: CartItemModel) -> None:
        self.db.delete(item)
        self.db.flush()

    def delete_user_items(self, user_id: int) -> int:
        res = self.db.execute(delete(CartItemModel).where(CartItemModel.user_id == user_id))
        return res.rowcount

    # ---- koszyk anonimowy (blob per sesja) ----
    def get_anonymous_cart(self, session_id: str) -> AnonymousCartModel | None:
        #populate_existing - po UPDATE z CAS obiekt w sesji ma stara wersje
        return self.db.execute(
            select(AnonymousCartModel)
            .where(AnonymousCartModel.session_id == session_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def create_anonymous_cart(self, session_id: str) -> AnonymousCartModel:
        cart = AnonymousCartModel(
            session_id=session_id,
            cart_data=[],
            version=1,
            last_accessed_at=datetime.now(timezone.utc),
        )
        self.db.add(cart)
        self.db.flush()
        return cart

    def update_anonymous_cart(self, cart_id: int, old_version: int, cart_data: list) -> int:
        """
        Compare-and-swap on ``version``; returns 0 when someone else wrote first.
        """
        res = self.db.execute(
            update(AnonymousCartModel)
            .where(
                AnonymousCartModel.id == cart_id,
                AnonymousCartModel.version == old_version,
            )
            .values(
                cart_data=cart_data,
                version=old_version + 1,
                last_accessed_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    def delete_stale_anonymous_carts(self, before: datetime) -> int:
        res = self.db.execute(
            delete(AnonymousCartModel).where(AnonymousCartModel.last_accessed_at < before)
        )
        return res.rowcount

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
