# app/api/deps.py
from functools import lru_cache

from fastapi import Header, Query

from app.domain.identity import Identity
from app.services.lock_service import LockService
from app.services.notification_service import NotificationService
from app.services.payment_gateway import PaymentGateway, StripePaymentGateway


@lru_cache
def get_lock_service() -> LockService:
    return LockService()


def get_notification_service() -> NotificationService:
    return NotificationService()


def get_payment_gateway() -> PaymentGateway:
    return StripePaymentGateway()


def get_identity(
    user_id: int | None = Query(None, gt=0),
    x_session_id: str | None = Header(None, max_length=128),
) -> Identity:
    #zalogowany user ma pierwszenstwo przed sesja
    return Identity(user_id=user_id, session_id=x_session_id)
