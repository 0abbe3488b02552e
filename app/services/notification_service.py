# app/services/notification_service.py
from app.celery_worker import celery_app
from app.utils.logging import get_logger

logger = get_logger(__name__)

ORDER_PLACED = "order_placed"
ORDER_CONFIRMED = "order_confirmed"
PAYMENT_FAILED = "payment_failed"
PAYMENT_TIMEOUT = "payment_timeout"
ORDER_REFUNDED = "order_refunded"
ORDER_CANCELLED = "order_cancelled"
ORDER_STATUS_UPDATED = "order_status_updated"

KINDS = {
    ORDER_PLACED,
    ORDER_CONFIRMED,
    PAYMENT_FAILED,
    PAYMENT_TIMEOUT,
    ORDER_REFUNDED,
    ORDER_CANCELLED,
    ORDER_STATUS_UPDATED,
}


class NotificationService:
    """
    Serwis do wysyłania powiadomień.
    Używa Celery do asynchronicznego przetwarzania. Best effort: blad brokera
    jest logowany i nigdy nie cofa zamowienia ani platnosci.
    """

    def send(self, user_id: int, kind: str, payload: dict | None = None) -> bool:
        if kind not in KINDS:
            raise ValueError(f"Unknown notification kind: {kind}")
        try:
            send_notification_task.delay(user_id, kind, payload or {})
            return True
        except Exception as e:
            logger.error(f"Failed to dispatch {kind} notification for user {user_id}: {e}")
            return False


@celery_app.task(name="app.services.notification_service.send_notification_task")
def send_notification_task(user_id: int, kind: str, payload: dict):
    """
    Celery task - w prawdziwym systemie wysłałby email/SMS/push.
    Teraz tylko loguje.
    """
    logger.info(f"[NOTIFICATION] User {user_id}: {kind} {payload}")

    return {"user_id": user_id, "kind": kind, "status": "sent"}
