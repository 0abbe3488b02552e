# app/services/payment_gateway.py
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal

import stripe

from app.domain.errors import PaymentError
from app.domain.pricing import money
from app.utils.retry import gateway_retry
from app.utils.settings import (
    PAYMENT_GATEWAY_URL,
    PAYMENT_SECRET_KEY,
    PAYMENT_WEBHOOK_SECRET,
    WEBHOOK_TOLERANCE_SECONDS,
)
from app.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PaymentIntent:
    intent_id: str
    client_secret: str
    status: str


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    status: str
    amount: Decimal | None = None


def to_cents(amount: Decimal) -> int:
    return int(money(amount) * 100)


def sign_payload(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Builds a ``Stripe-Signature`` header (``t=<unix>,v1=<hex>``) for ``payload``."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{payload.decode('utf-8')}"
    return f"t={ts},v1={stripe.WebhookSignature._compute_signature(signed, secret)}"


def verify_signature(payload: bytes, header: str | None, secret: str, tolerance: int = WEBHOOK_TOLERANCE_SECONDS) -> bool:
    if not header or not secret:
        return False
    try:
        stripe.WebhookSignature.verify_header(payload.decode("utf-8"), header, secret, tolerance)
    except (stripe.SignatureVerificationError, UnicodeDecodeError):
        return False
    return True


def classify_error(e: stripe.StripeError) -> PaymentError:
    """Maps SDK exceptions onto card / configuration / network failures."""
    if isinstance(e, stripe.CardError):
        error = (e.json_body or {}).get("error") or {}
        decline = error.get("decline_code") or e.code
        message = f"Card was declined: {decline}" if decline else (e.user_message or "Your card was declined.")
        return PaymentError(PaymentError.CARD_ERROR, message)
    if isinstance(e, (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)):
        return PaymentError(PaymentError.NETWORK_ERROR, e.user_message or str(e))
    # AuthenticationError, PermissionError, InvalidRequestError, IdempotencyError
    return PaymentError(PaymentError.CONFIGURATION_ERROR, e.user_message or str(e))


class PaymentGateway(ABC):
    """What the checkout core needs from a card processor."""

    @abstractmethod
    def create_payment_intent(self, amount: Decimal, currency: str, metadata: dict, idempotency_key: str | None = None) -> PaymentIntent:
        ...

    @abstractmethod
    def confirm_intent(self, intent_id: str) -> PaymentIntent:
        ...

    @abstractmethod
    def refund(self, intent_id: str, amount: Decimal | None = None) -> RefundResult:
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        ...


class StripePaymentGateway(PaymentGateway):
    """
    Card processing through the Stripe SDK. Amounts go out in cents, every
    write carries an idempotency key, connection failures are retried
    (tenacity) and SDK exceptions are classified into ``card_error`` /
    ``configuration_error`` / ``network_error``.

    ``api_base`` points the SDK at another host (the dev mock in
    ``app/payment_gateway``); empty means Stripe itself.
    """

    def __init__(
        self,
        secret_key: str | None = None,
        webhook_secret: str | None = None,
        api_base: str | None = None,
    ):
        self.secret_key = PAYMENT_SECRET_KEY if secret_key is None else secret_key
        self.webhook_secret = PAYMENT_WEBHOOK_SECRET if webhook_secret is None else webhook_secret
        api_base = PAYMENT_GATEWAY_URL if api_base is None else api_base
        if api_base:
            stripe.api_base = api_base.rstrip("/")

    @gateway_retry()
    def _send(self, call, *args, **params):
        return call(*args, api_key=self.secret_key, **params)

    def _request(self, call, *args, **params):
        if not self.secret_key:
            raise PaymentError(PaymentError.CONFIGURATION_ERROR, "Payment gateway secret key is not configured")
        try:
            return self._send(call, *args, **params)
        except stripe.StripeError as e:
            logger.warning(f"Stripe {type(e).__name__}: {e}")
            raise classify_error(e) from e

    def create_payment_intent(self, amount: Decimal, currency: str, metadata: dict, idempotency_key: str | None = None) -> PaymentIntent:
        params = {
            "amount": to_cents(amount),
            "currency": currency,
            "automatic_payment_methods": {"enabled": True},
            "metadata": {key: str(value) for key, value in (metadata or {}).items()},
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        intent = self._request(stripe.PaymentIntent.create, **params)
        logger.info(f"PaymentIntent {intent['id']} created ({params['amount']} {currency})")
        return PaymentIntent(intent["id"], intent.get("client_secret") or "", intent.get("status") or "requires_payment_method")

    def confirm_intent(self, intent_id: str) -> PaymentIntent:
        intent = self._request(stripe.PaymentIntent.confirm, intent_id)
        return PaymentIntent(intent["id"], intent.get("client_secret") or "", intent.get("status") or "")

    def refund(self, intent_id: str, amount: Decimal | None = None) -> RefundResult:
        params = {"payment_intent": intent_id}
        if amount is not None:
            params["amount"] = to_cents(amount)
        params["idempotency_key"] = f"refund_{intent_id}_{params.get('amount', 'full')}"

        refund = self._request(stripe.Refund.create, **params)
        refunded = refund.get("amount")
        return RefundResult(
            refund["id"],
            refund.get("status") or "succeeded",
            (Decimal(refunded) / 100) if refunded is not None else None,
        )

    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        ok = verify_signature(payload, signature, self.webhook_secret)
        if not ok:
            logger.warning("Webhook signature verification failed")
        return ok
