# app/api/routers/payments.py
from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_notification_service, get_payment_gateway
from app.data.database import get_db
from app.domain.schemas import WebhookAck
from app.services.notification_service import NotificationService
from app.services.payment_gateway import PaymentGateway
from app.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    stripe_signature: str | None = Header(None),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationService = Depends(get_notification_service),
):
    #podpis liczony z surowego body, nie z przeparsowanego JSON-a
    payload = await request.body()
    # sesja bazy i wysylka do brokera sa blokujace - poza petla zdarzen
    service = PaymentService(db, gateway, notifier)
    return await run_in_threadpool(service.handle_webhook, payload, stripe_signature)
