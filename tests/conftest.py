import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "1"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "whsec_test"

from decimal import Decimal

import pytest

from app.data.database import Base, SessionLocal, engine
from app.data import models  # noqa: F401
from app.data.models import (
    UserModel,
    StoreModel,
    CategoryModel,
    ProductModel,
    DiscountCodeModel,
)
from app.domain.errors import PaymentError
from app.domain.identity import Identity
from app.domain.schemas import AddressIn
from app.repos.settings_repo import SettingsRepo
from app.services.lock_service import LockService
from app.services.payment_gateway import PaymentGateway, PaymentIntent, RefundResult, verify_signature

WEBHOOK_SECRET = "whsec_test"


class FakeRedis:
    """SET NX EX + compare-and-delete, enough for LockService."""

    def __init__(self):
        self.store = {}

    def set(self, name, value, nx=False, ex=None):
        if nx and name in self.store:
            return None
        self.store[name] = value
        return True

    def eval(self, script, numkeys, key, token):
        if self.store.get(key) == token:
            del self.store[key]
            return 1
        return 0


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send(self, user_id, kind, payload=None):
        self.sent.append((user_id, kind, payload or {}))
        return True

    def kinds(self):
        return [kind for _, kind, _ in self.sent]


class FakeGateway(PaymentGateway):
    def __init__(self):
        self.intents = {}
        self.refunds = []
        self.fail_with = None
        self.webhook_secret = WEBHOOK_SECRET

    def create_payment_intent(self, amount, currency, metadata, idempotency_key=None):
        if self.fail_with:
            raise PaymentError(*self.fail_with)
        if idempotency_key in self.intents:
            return self.intents[idempotency_key]
        n = len(self.intents) + 1
        intent = PaymentIntent(f"pi_test_{n}", f"pi_test_{n}_secret", "requires_payment_method")
        self.intents[idempotency_key] = intent
        return intent

    def confirm_intent(self, intent_id):
        return PaymentIntent(intent_id, f"{intent_id}_secret", "succeeded")

    def refund(self, intent_id, amount=None):
        if self.fail_with:
            raise PaymentError(*self.fail_with)
        self.refunds.append((intent_id, amount))
        return RefundResult(f"re_{len(self.refunds)}", "succeeded", amount)

    def verify_webhook_signature(self, payload, signature):
        return verify_signature(payload, signature, self.webhook_secret)


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def lock_service():
    return LockService(client=FakeRedis())


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def catalog(db):
    """Two stores, a handful of products, default settings."""
    fresh = StoreModel(name="Fresh Market", delivery_fee=None, is_active=True)
    corner = StoreModel(name="Corner Pantry", delivery_fee=Decimal("2.99"), is_active=True)
    produce = CategoryModel(name="Produce")
    db.add_all([fresh, corner, produce])
    db.flush()

    products = {
        "milk": ProductModel(store_id=fresh.id, category_id=produce.id, name="Milk",
                             price=Decimal("3.99"), stock_quantity=10, is_active=True),
        "bread": ProductModel(store_id=fresh.id, category_id=produce.id, name="Bread",
                              price=Decimal("5.00"), stock_quantity=3, is_active=True),
        "pasta": ProductModel(store_id=corner.id, category_id=produce.id, name="Pasta",
                              price=Decimal("12.00"), stock_quantity=50, is_active=True),
        "retired": ProductModel(store_id=corner.id, category_id=produce.id, name="Old Jam",
                                price=Decimal("2.00"), stock_quantity=5, is_active=False),
    }
    db.add_all(products.values())

    settings = SettingsRepo(db)
    settings.set("global_delivery_fee", "4.99")
    settings.set("global_tax_rate", "8.5")
    settings.set("multi_store_delivery_fee_policy", "flat")
    db.commit()

    return {"stores": {"fresh": fresh, "corner": corner}, "products": products}


@pytest.fixture
def user(db):
    u = UserModel(id=1, name="Ala", email="ala@example.com")
    db.add(u)
    db.commit()
    return u


@pytest.fixture
def discount_code(db):
    code = DiscountCodeModel(code="SAVE10", description="10% off", kind="percentage",
                             value=Decimal("10"), min_order_amount=Decimal("0"))
    db.add(code)
    db.commit()
    return code


@pytest.fixture
def address():
    return AddressIn(street_address="1 Main St", city="Springfield", state="IL", zip_code="62701")


@pytest.fixture
def user_identity(user):
    return Identity(user_id=user.id)
