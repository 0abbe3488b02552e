# app/tasks/payments.py
from sqlalchemy.exc import OperationalError

from app.celery_worker import celery_app
from app.domain.errors import UnknownPaymentTransaction
from app.data.database import SessionLocal
from app.services.payment_gateway import StripePaymentGateway
from app.services.payment_service import PaymentService
from app.utils.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(
    name="app.tasks.payments.process_webhook_event_task",
    # intent moze jeszcze nie byc powiazany z transakcja (odpowiedz bramki w drodze)
    autoretry_for=(OperationalError, UnknownPaymentTransaction),
    retry_backoff=True,
    max_retries=5,
)
def process_webhook_event_task(event: dict):
    logger.info(f"Processing webhook {event.get('id')} ({event.get('type')})")

    db = SessionLocal()
    try:
        outcome = PaymentService(db, StripePaymentGateway()).process_event(event)
        logger.info(f"Webhook {event.get('id')}: {outcome}")
        return outcome
    finally:
        db.close()


@celery_app.task(name="app.tasks.payments.check_payment_timeouts_task")
def check_payment_timeouts_task():
    logger.info("Payment timeout check started")

    db = SessionLocal()
    try:
        return PaymentService(db, StripePaymentGateway()).check_payment_timeouts()
    finally:
        db.close()
