# app/api/routers/orders.py
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_notification_service, get_payment_gateway
from app.data.database import get_db
from app.domain.schemas import (
    OrderOut,
    OrderStatusIn,
    ItemStatusIn,
    CancelIn,
    RefundIn,
    PaymentIntentOut,
)
from app.services.notification_service import NotificationService
from app.services.order_service import OrderService
from app.services.payment_gateway import PaymentGateway
from app.services.payment_service import PaymentService

router = APIRouter(prefix="/orders", tags=["orders"])


def get_service(db: Session, gateway: PaymentGateway, notifier: NotificationService):
    return OrderService(db, PaymentService(db, gateway, notifier), notifier)


@router.get("", response_model=List[OrderOut])
def list_orders(
    user_id: int = Query(..., gt=0),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationService = Depends(get_notification_service),
):
    return get_service(db, gateway, notifier).list_orders(user_id)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    user_id: int = Query(..., gt=0),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationService = Depends(get_notification_service),
):
    """
    Pobiera zamówienie.
    Sprawdza czy user ma dostęp.
    """
    return get_service(db, gateway, notifier).get_order(order_id, user_id)


@router.post("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(
    order_id: int,
    payload: CancelIn | None = None,
    user_id: int = Query(..., gt=0),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationService = Depends(get_notification_service),
):
    reason = payload.reason if payload else None
    return get_service(db, gateway, notifier).cancel_order(order_id, user_id, reason)


@router.post("/{order_id}/payment-intent", response_model=PaymentIntentOut)
def create_payment_intent(
    order_id: int,
    user_id: int = Query(..., gt=0),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationService = Depends(get_notification_service),
):
    return PaymentService(db, gateway, notifier).create_intent_for_order(order_id, user_id)


# operacje obslugi sklepu
@router.post("/{order_id}/refund", response_model=OrderOut)
def refund_order(
    order_id: int,
    payload: RefundIn | None = None,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationService = Depends(get_notification_service),
):
    amount = payload.amount if payload else None
    return PaymentService(db, gateway, notifier).refund_order(order_id, amount)


@router.patch("/{order_id}/status", response_model=OrderOut)
def update_status(
    order_id: int,
    payload: OrderStatusIn,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationService = Depends(get_notification_service),
):
    return get_service(db, gateway, notifier).update_status(order_id, payload.status, payload.tracking_code)


@router.patch("/{order_id}/items/{item_id}/status", response_model=OrderOut)
def update_item_status(
    order_id: int,
    item_id: int,
    payload: ItemStatusIn,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationService = Depends(get_notification_service),
):
    return get_service(db, gateway, notifier).update_item_status(order_id, item_id, payload.status)
