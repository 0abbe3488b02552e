# app/domain/status.py
from app.domain.errors import InvalidStateTransition

# zamowienie - zmiany napedzane platnoscia (pending -> confirmed) i obsluga sklepu
ORDER_TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"processing", "shipped", "delivered", "cancelled", "refunded"},
    "processing": {"shipped", "delivered", "cancelled", "refunded"},
    "shipped": {"delivered", "refunded"},
    "delivered": set(),
    "cancelled": set(),
    "refunded": set(),
}

CANCELLABLE = {"pending", "confirmed", "processing"}

# pozycja zamowienia idzie tylko do przodu, niezaleznie od innych pozycji
ITEM_FLOW = ["pending", "ready", "collected", "packaged", "shipped", "delivered"]

TRANSACTION_TRANSITIONS = {
    "pending": {"completed", "failed"},
    "completed": {"refunded"},
    "failed": set(),
    "refunded": set(),
}


def can_transition(table: dict, current: str, new: str) -> bool:
    return new in table.get(current, set())


def ensure_order_transition(current: str, new: str) -> None:
    if not can_transition(ORDER_TRANSITIONS, current, new):
        raise InvalidStateTransition("order", current, new)


def ensure_item_transition(current: str, new: str) -> None:
    if current not in ITEM_FLOW or new not in ITEM_FLOW or ITEM_FLOW.index(new) <= ITEM_FLOW.index(current):
        raise InvalidStateTransition("order item", current, new)
