# app/domain/errors.py


class ShopError(Exception):
    """
    Base for expected, user-correctable or classified failures.

    Carries the HTTP status the API should answer with, a stable machine code
    and extra context that is rendered next to the message.
    """

    status_code = 400
    code = "shop_error"

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, **self.context}


class ValidationError(ShopError):
    status_code = 422
    code = "validation_error"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class InvalidCartState(ShopError):
    status_code = 422
    code = "invalid_cart_state"


class InsufficientStock(ShopError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, product_id: int, available: int, requested: int):
        super().__init__(
            f"Insufficient stock. Only {available} items available.",
            {"product_id": product_id, "available": available, "requested": requested},
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class NotFound(ShopError):
    status_code = 404
    code = "not_found"


class Unauthorized(ShopError):
    status_code = 403
    code = "unauthorized"


class ConcurrencyConflict(ShopError):
    status_code = 409
    code = "concurrency_conflict"


class InvalidStateTransition(ShopError):
    status_code = 409
    code = "invalid_state_transition"

    def __init__(self, entity: str, current: str, requested: str):
        super().__init__(
            f"Cannot change {entity} status from '{current}' to '{requested}'",
            {"current_status": current, "requested_status": requested},
        )


class OrderCreationFailed(ShopError):
    """Opaque to the caller; the real cause is chained (``__cause__``) and logged."""

    status_code = 500
    code = "order_creation_failed"

    def __init__(self, message: str = "We could not place your order. Please try again."):
        super().__init__(message)


class PaymentError(ShopError):
    CARD_ERROR = "card_error"
    CONFIGURATION_ERROR = "configuration_error"
    NETWORK_ERROR = "network_error"

    code = "payment_error"

    _status_by_kind = {
        CARD_ERROR: 402,
        CONFIGURATION_ERROR: 502,
        NETWORK_ERROR: 503,
    }

    def __init__(self, kind: str, message: str):
        super().__init__(message, {"kind": kind, "retryable": kind == self.NETWORK_ERROR})
        self.kind = kind
        self.status_code = self._status_by_kind.get(kind, 502)

    @property
    def retryable(self) -> bool:
        return self.kind == self.NETWORK_ERROR

    @property
    def user_message(self) -> str:
        if self.kind == self.CARD_ERROR:
            return self.message
        return "Payment could not be processed. Please try again."


class InvalidSignature(ShopError):
    status_code = 400
    code = "invalid_signature"


class UnknownPaymentTransaction(ShopError):
    """Webhook for an intent no transaction is linked to yet; the event stays unrecorded so it can be retried."""

    status_code = 409
    code = "unknown_payment_transaction"

    def __init__(self, event_id: str, intent_id: str | None):
        super().__init__(
            f"No payment transaction for intent {intent_id} (event {event_id})",
            {"event_id": event_id, "intent_id": intent_id},
        )
        self.event_id = event_id
        self.intent_id = intent_id
