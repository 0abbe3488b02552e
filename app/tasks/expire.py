# app/tasks/expire.py
from datetime import datetime, timedelta, timezone

from app.celery_worker import celery_app
from app.data.database import SessionLocal
from app.repos.cart_repo import CartRepo
from app.utils.settings import ANONYMOUS_CART_TTL_DAYS
from app.utils.logging import get_logger

logger = get_logger(__name__)


def purge_anonymous_carts(db, ttl_days: int = ANONYMOUS_CART_TTL_DAYS, now: datetime | None = None) -> int:
    #0 = koszyki anonimowe nie wygasaja
    if not ttl_days or ttl_days <= 0:
        return 0

    now = now or datetime.now(timezone.utc)
    repo = CartRepo(db)
    deleted = repo.delete_stale_anonymous_carts(now - timedelta(days=ttl_days))
    repo.commit()
    return deleted


@celery_app.task(name="app.tasks.expire.purge_anonymous_carts_task")
def purge_anonymous_carts_task():
    logger.info("Purge anonymous carts task started")

    db = SessionLocal()
    try:
        deleted = purge_anonymous_carts(db)
        logger.info(f"Purged {deleted} anonymous carts")
        return deleted
    finally:
        db.close()
