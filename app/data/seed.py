# app/data/seed.py
from decimal import Decimal

from app.data.database import SessionLocal
from app.data.models import (
    StoreModel,
    CategoryModel,
    ProductModel,
    DiscountCodeModel,
)
from app.repos.settings_repo import SettingsRepo
from app.utils.settings import DEFAULT_DELIVERY_FEE, DEFAULT_TAX_RATE, DEFAULT_MULTI_STORE_FEE_POLICY
from app.utils.logging import get_logger

logger = get_logger(__name__)

DISCOUNT_RULES = {
    "first_time_customer": {
        "enabled": True,
        "percentage": 10,
        "description": "10% off your first order",
    },
    "bulk_order": {
        "enabled": True,
        "threshold": 100,
        "percentage": 5,
        "description": "5% off orders over $100",
    },
}

PRODUCTS = [
    # (sklep, kategoria, nazwa, cena, stan)
    ("Fresh Market", "Produce", "Bananas (1 lb)", "0.69", 200),
    ("Fresh Market", "Produce", "Gala Apples (3 lb)", "4.49", 80),
    ("Fresh Market", "Dairy", "Whole Milk (1 gal)", "3.99", 60),
    ("Fresh Market", "Bakery", "Sourdough Loaf", "5.25", 25),
    ("Corner Pantry", "Pantry", "Spaghetti (16 oz)", "1.79", 120),
    ("Corner Pantry", "Pantry", "Marinara Sauce (24 oz)", "3.49", 70),
    ("Corner Pantry", "Dairy", "Cheddar Block (8 oz)", "3.29", 40),
]


def seed():
    db = SessionLocal()
    try:
        # not forcing: only seed if empty
        if db.query(StoreModel).first():
            return

        stores = {
            "Fresh Market": StoreModel(name="Fresh Market", delivery_fee=None, is_active=True),
            "Corner Pantry": StoreModel(name="Corner Pantry", delivery_fee=Decimal("2.99"), is_active=True),
        }
        categories = {name: CategoryModel(name=name) for name in {p[1] for p in PRODUCTS}}
        db.add_all([*stores.values(), *categories.values()])
        db.flush()

        for store, category, name, price, stock in PRODUCTS:
            db.add(
                ProductModel(
                    store_id=stores[store].id,
                    category_id=categories[category].id,
                    name=name,
                    price=Decimal(price),
                    stock_quantity=stock,
                    is_active=True,
                )
            )

        settings = SettingsRepo(db)
        settings.set("global_delivery_fee", str(DEFAULT_DELIVERY_FEE))
        settings.set("global_tax_rate", str(DEFAULT_TAX_RATE))
        settings.set("multi_store_delivery_fee_policy", DEFAULT_MULTI_STORE_FEE_POLICY)
        settings.set("discount_rules", DISCOUNT_RULES)

        db.add(
            DiscountCodeModel(
                code="WELCOME5",
                description="$5 off orders over $25",
                kind="fixed",
                value=Decimal("5.00"),
                min_order_amount=Decimal("25.00"),
                usage_limit_per_user=1,
            )
        )
        db.commit()
        logger.info(f"Seeded {len(stores)} stores, {len(PRODUCTS)} products and system settings")
    finally:
        db.close()


if __name__ == "__main__":
    seed()
