# app/repos/product_repo.py
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.data.models.product import ProductModel
from app.data.models.store import StoreModel


class ProductRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_product(self, product_id: int) -> ProductModel | None:
        return self.db.get(ProductModel, product_id)

    def get_products(self, product_ids) -> dict[int, ProductModel]:
        ids = sorted(set(product_ids))
        if not ids:
            return {}
        rows = self.db.execute(select(ProductModel).where(ProductModel.id.in_(ids))).scalars().all()
        return {p.id: p for p in rows}

    def lock_products(self, product_ids) -> dict[int, ProductModel]:
        """
        SELECT ... FOR UPDATE in id order so two checkouts never lock in opposite order.
        populate_existing refreshes rows already loaded in this session.
        """
        ids = sorted(set(product_ids))
        if not ids:
            return {}
        stmt = (
            select(ProductModel)
            .where(ProductModel.id.in_(ids))
            .order_by(ProductModel.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {p.id: p for p in self.db.execute(stmt).scalars().all()}

    def get_store_fees(self, store_ids) -> dict[int, object]:
        ids = sorted(set(store_ids))
        if not ids:
            return {}
        rows = self.db.execute(select(StoreModel.id, StoreModel.delivery_fee).where(StoreModel.id.in_(ids))).all()
        return {r.id: r.delivery_fee for r in rows}
