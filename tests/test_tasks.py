from datetime import datetime, timedelta, timezone

import pytest

from app.data.models import AnonymousCartModel, ProductModel, StoreModel
from app.data.seed import seed, PRODUCTS
from app.services.notification_service import NotificationService
from app.tasks.expire import purge_anonymous_carts


def add_cart(db, session_id, last_accessed_at):
    db.add(AnonymousCartModel(session_id=session_id, cart_data=[], version=1, last_accessed_at=last_accessed_at))
    db.commit()


def test_purge_disabled_when_ttl_is_zero(db):
    add_cart(db, "old", datetime.now(timezone.utc) - timedelta(days=365))

    assert purge_anonymous_carts(db, ttl_days=0) == 0
    assert db.query(AnonymousCartModel).count() == 1


def test_purge_removes_only_stale_carts(db):
    now = datetime.now(timezone.utc)
    add_cart(db, "old", now - timedelta(days=40))
    add_cart(db, "fresh", now - timedelta(days=1))

    assert purge_anonymous_carts(db, ttl_days=30, now=now) == 1
    assert [c.session_id for c in db.query(AnonymousCartModel).all()] == ["fresh"]


def test_notification_dispatch_runs_eagerly():
    assert NotificationService().send(1, "order_placed", {"order_id": 1}) is True


def test_unknown_notification_kind_rejected():
    with pytest.raises(ValueError):
        NotificationService().send(1, "birthday")


def test_seed_is_idempotent(db):
    seed()
    seed()

    assert db.query(StoreModel).count() == 2
    assert db.query(ProductModel).count() == len(PRODUCTS)
