# app/domain/pricing.py
"""
Pure price arithmetic for a cart.

Nothing here touches the database; ``PricingService`` gathers settings and
discounts and hands them in. All amounts are ``Decimal`` rounded to cents.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from app.domain.errors import InvalidCartState
from app.domain.identity import CartLineItem

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class AppliedDiscount:
    type: str
    description: str
    amount: Decimal
    code: str | None = None

    def breakdown(self) -> dict:
        return {
            "description": self.description,
            "amount": self.amount,
            "formatted_amount": f"${self.amount:,.2f}",
        }


@dataclass
class DiscountResult:
    applied: list[AppliedDiscount] = field(default_factory=list)
    available: list[dict] = field(default_factory=list)
    # powod odrzucenia kodu; None gdy kod nie byl podany albo zadzialal
    rejected_code_reason: str | None = None

    @property
    def total(self) -> Decimal:
        return sum((d.amount for d in self.applied), ZERO)

    @property
    def breakdown(self) -> list[dict]:
        return [d.breakdown() for d in self.applied]

    @property
    def applied_code(self) -> str | None:
        return next((d.code for d in self.applied if d.code), None)


@dataclass
class PricingResult:
    subtotal: Decimal
    discount: Decimal
    delivery_fee: Decimal
    tax: Decimal
    total: Decimal
    applied_discounts: list[AppliedDiscount] = field(default_factory=list)
    discount_breakdown: list[dict] = field(default_factory=list)
    available_discounts: list[dict] = field(default_factory=list)
    rejected_code_reason: str | None = None
    applied_code: str | None = None
    store_count: int = 0


def validate_lines(lines: list[CartLineItem]) -> None:
    for line in lines:
        if line.quantity < 1:
            raise InvalidCartState(f"Line {line.line_id} has invalid quantity {line.quantity}")
        if line.unit_price < 0:
            raise InvalidCartState(f"Line {line.line_id} has negative price {line.unit_price}")


def calculate_subtotal(lines: list[CartLineItem]) -> Decimal:
    return money(sum((line.unit_price * line.quantity for line in lines), ZERO))


def store_ids(lines: list[CartLineItem]) -> list[int]:
    return sorted({line.store_id for line in lines})


def calculate_delivery_fee(
    lines: list[CartLineItem],
    store_fees: dict[int, Decimal | None],
    global_fee: Decimal,
    multi_store_policy: str = "flat",
) -> Decimal:
    """
    Empty cart pays nothing. One store: its own fee, else the global one.
    Several stores: ``flat`` charges the global fee once, ``per_store`` sums
    every store's fee.
    """
    stores = store_ids(lines)
    if not stores:
        return ZERO

    def fee_for(store_id):
        fee = store_fees.get(store_id)
        return money(fee) if fee is not None else money(global_fee)

    if len(stores) == 1:
        return fee_for(stores[0])
    if multi_store_policy == "per_store":
        return money(sum((fee_for(s) for s in stores), ZERO))
    return money(global_fee)


def calculate_tax(taxable_amount: Decimal, tax_rate: Decimal) -> Decimal:
    base = max(taxable_amount, ZERO)
    return money(base * Decimal(str(tax_rate)) / Decimal("100"))


def compute_totals(
    lines: list[CartLineItem],
    discounts: DiscountResult,
    delivery_fee: Decimal,
    tax_rate: Decimal,
) -> PricingResult:
    validate_lines(lines)

    subtotal = calculate_subtotal(lines)
    discount = money(min(discounts.total, subtotal))
    fee = money(delivery_fee)
    tax = calculate_tax(subtotal - discount, tax_rate)
    total = max(subtotal - discount + fee + tax, ZERO)

    return PricingResult(
        subtotal=subtotal,
        discount=discount,
        delivery_fee=fee,
        tax=tax,
        total=money(total),
        applied_discounts=list(discounts.applied),
        discount_breakdown=discounts.breakdown,
        available_discounts=list(discounts.available),
        rejected_code_reason=discounts.rejected_code_reason,
        applied_code=discounts.applied_code,
        store_count=len(store_ids(lines)),
    )
