# app/api/routers/checkout.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_identity, get_lock_service, get_notification_service, get_payment_gateway
from app.data.database import get_db
from app.domain.errors import PaymentError
from app.domain.identity import Identity
from app.domain.schemas import CheckoutIn, CheckoutOut
from app.services.checkout_service import CheckoutService
from app.services.lock_service import LockService
from app.services.notification_service import NotificationService
from app.services.payment_gateway import PaymentGateway
from app.services.payment_service import PaymentService

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post("", response_model=CheckoutOut, status_code=201)
def checkout(
    payload: CheckoutIn,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
    notifier: NotificationService = Depends(get_notification_service),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Sklada zamowienie z koszyka i od razu probuje utworzyc payment intent.
    Blad bramki nie cofa zamowienia - klient moze ponowic platnosc
    przez /orders/{id}/payment-intent.
    """
    order = CheckoutService(db, lock_service, notifier).place_order(
        identity, payload.address, payload.shipping_method, payload.discount_code
    )

    result = {
        "order_id": order.id,
        "order_number": order.order_number,
        "total_amount": order.total_amount,
        "status": order.status,
    }
    try:
        intent = PaymentService(db, gateway, notifier).create_intent_for_order(order.id, order.user_id)
        result["client_secret"] = intent["client_secret"]
    except PaymentError as e:
        result["payment_error"] = e.user_message
    return result
