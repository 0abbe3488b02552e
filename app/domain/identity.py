# app/domain/identity.py
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from app.domain.errors import ValidationError

ANONYMOUS_PREFIX = "anonymous"


@dataclass(frozen=True)
class Identity:
    """Who owns the cart: a logged-in user, an anonymous session, or both (right after login)."""

    user_id: int | None = None
    session_id: str | None = None

    def __post_init__(self):
        if self.user_id is None and not self.session_id:
            raise ValidationError("Either user id or session id is required", field="identity")

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def lock_key(self) -> str:
        if self.is_authenticated:
            return f"user:{self.user_id}"
        return f"session:{self.session_id}"


@dataclass
class AnonymousCartEntry:
    product_id: int
    quantity: int
    added_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def from_dict(cls, data: dict) -> "AnonymousCartEntry":
        return cls(
            product_id=int(data["product_id"]),
            quantity=int(data["quantity"]),
            added_at=str(data.get("added_at") or datetime.now(timezone.utc).isoformat()),
        )

    def to_dict(self) -> dict:
        return {"product_id": self.product_id, "quantity": self.quantity, "added_at": self.added_at}


def load_entries(cart_data) -> list[AnonymousCartEntry]:
    return [AnonymousCartEntry.from_dict(d) for d in (cart_data or [])]


def dump_entries(entries: list[AnonymousCartEntry]) -> list[dict]:
    return [e.to_dict() for e in entries]


@dataclass
class CartLineItem:
    line_id: str
    product_id: int
    name: str
    quantity: int
    unit_price: Decimal
    store_id: int
    category_id: int | None = None
    stock_quantity: int = 0
    added_at: str | None = None

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity


# identyfikator linii koszyka - jedyne miejsce ktore zna format
def encode_line_id(product_id: int, added_at: str | None = None, row_id: int | None = None) -> str:
    if row_id is not None:
        return str(row_id)
    ts = 0
    if added_at:
        try:
            ts = int(datetime.fromisoformat(added_at).timestamp())
        except ValueError:
            ts = 0
    return f"{ANONYMOUS_PREFIX}_{product_id}_{ts}"


def decode_line_id(line_id: str) -> tuple[str, int]:
    """
    Returns ("anonymous", product_id) or ("row", cart_item_id).

    Anonymous ids are located by product id only, so the timestamp part may be stale.
    """
    parts = str(line_id).split("_")
    if parts[0] == ANONYMOUS_PREFIX:
        if len(parts) < 3 or not parts[1].isdigit():
            raise ValidationError("Invalid cart item ID format.", field="line_id")
        return ANONYMOUS_PREFIX, int(parts[1])
    if not str(line_id).isdigit():
        raise ValidationError("Invalid cart item ID format.", field="line_id")
    return "row", int(line_id)
