# app/payment_gateway/main.py
"""
Bramka platnosci do developmentu (dev mock) - endpointy Stripe, ktore wola SDK
(PAYMENT_GATEWAY_URL ustawia stripe.api_base): form-encoded, Bearer, kwoty w
centach, Idempotency-Key.
Po potwierdzeniu/zwrocie wysyla podpisany webhook na PAYMENT_WEBHOOK_TARGET.
"""
import json
import os
import uuid

import requests
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse

from app.services.payment_gateway import sign_payload
from app.utils.settings import PAYMENT_WEBHOOK_SECRET
from app.utils.logging import get_logger

logger = get_logger(__name__)

WEBHOOK_TARGET = os.getenv("PAYMENT_WEBHOOK_TARGET", "http://localhost:8000/payments/webhook")
DECLINED_METHOD = "pm_card_declined"

app = FastAPI(title="Payment Gateway (dev mock)")

INTENTS: dict[str, dict] = {}
IDEMPOTENCY: dict[str, dict] = {}


def _error(status: int, kind: str, message: str, code: str | None = None):
    return JSONResponse(status_code=status, content={"error": {"type": kind, "message": message, "code": code}})


def _authorized(authorization: str | None) -> bool:
    return bool(authorization and authorization.startswith("Bearer ") and len(authorization) > len("Bearer "))


def _emit(event_type: str, obj: dict) -> None:
    event = {"id": f"evt_{uuid.uuid4().hex[:24]}", "type": event_type, "data": {"object": obj}}
    body = json.dumps(event).encode()
    headers = {"Stripe-Signature": sign_payload(body, PAYMENT_WEBHOOK_SECRET), "Content-Type": "application/json"}
    try:
        requests.post(WEBHOOK_TARGET, data=body, headers=headers, timeout=5)
        logger.info(f"Webhook {event['id']} ({event_type}) sent to {WEBHOOK_TARGET}")
    except requests.RequestException as e:
        logger.warning(f"Webhook {event['id']} not delivered: {e}")


@app.post("/v1/payment_intents")
async def create_intent(
    request: Request,
    authorization: str | None = Header(None),
    idempotency_key: str | None = Header(None),
):
    if not _authorized(authorization):
        return _error(401, "invalid_request_error", "Invalid API key provided")
    if idempotency_key and idempotency_key in IDEMPOTENCY:
        return IDEMPOTENCY[idempotency_key]

    form = await request.form()
    try:
        amount = int(form.get("amount", "0"))
    except ValueError:
        return _error(400, "invalid_request_error", "amount must be an integer")
    if amount < 50:
        return _error(400, "invalid_request_error", "Amount must be at least 50 cents")

    intent_id = f"pi_{uuid.uuid4().hex[:24]}"
    intent = {
        "id": intent_id,
        "object": "payment_intent",
        "amount": amount,
        "currency": form.get("currency", "usd"),
        "status": "requires_payment_method",
        "client_secret": f"{intent_id}_secret_{uuid.uuid4().hex[:16]}",
        "metadata": {k[9:-1]: v for k, v in form.items() if k.startswith("metadata[")},
    }
    INTENTS[intent_id] = intent
    if idempotency_key:
        IDEMPOTENCY[idempotency_key] = intent
    return intent


@app.post("/v1/payment_intents/{intent_id}/confirm")
async def confirm_intent(intent_id: str, request: Request, authorization: str | None = Header(None)):
    if not _authorized(authorization):
        return _error(401, "invalid_request_error", "Invalid API key provided")
    intent = INTENTS.get(intent_id)
    if not intent:
        return _error(404, "invalid_request_error", f"No such payment_intent: {intent_id}")

    form = await request.form()
    if form.get("payment_method") == DECLINED_METHOD:
        intent["status"] = "requires_payment_method"
        failed = {**intent, "last_payment_error": {"message": "Your card was declined.", "code": "card_declined"}}
        _emit("payment_intent.payment_failed", failed)
        return _error(402, "card_error", "Your card was declined.", "card_declined")

    intent["status"] = "succeeded"
    _emit("payment_intent.succeeded", intent)
    return intent


@app.post("/v1/refunds")
async def create_refund(request: Request, authorization: str | None = Header(None)):
    if not _authorized(authorization):
        return _error(401, "invalid_request_error", "Invalid API key provided")

    form = await request.form()
    intent = INTENTS.get(form.get("payment_intent", ""))
    if not intent or intent["status"] != "succeeded":
        return _error(400, "invalid_request_error", "PaymentIntent has not succeeded")

    amount = int(form.get("amount") or intent["amount"])
    refund = {"id": f"re_{uuid.uuid4().hex[:24]}", "object": "refund", "amount": amount,
              "payment_intent": intent["id"], "status": "succeeded"}
    _emit("charge.refunded", {"id": f"ch_{intent['id'][3:]}", "payment_intent": intent["id"],
                              "amount_refunded": amount})
    return refund
