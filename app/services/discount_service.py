# app/services/discount_service.py
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from app.data.models.discount_code import DiscountCodeModel
from app.domain.identity import CartLineItem
from app.domain.pricing import AppliedDiscount, DiscountResult, calculate_subtotal, money, ZERO
from app.repos.order_repo import OrderRepo
from app.repos.settings_repo import SettingsRepo
from app.utils.logging import get_logger

logger = get_logger(__name__)

# powody odrzucenia kodu, zwracane zamiast wyjatku
NOT_FOUND = "not_found"
INACTIVE = "inactive"
EXPIRED = "expired"
MINIMUM_NOT_MET = "minimum_not_met"
USAGE_LIMIT_REACHED = "usage_limit_reached"
LOGIN_REQUIRED = "login_required"


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _percent(amount: Decimal, percentage) -> Decimal:
    return money(amount * Decimal(str(percentage or 0)) / Decimal("100"))


class DiscountService:
    """
    Works out which discounts a cart gets.

    Sources are the always-on promotions stored under the ``discount_rules``
    system setting (first-time customer, bulk order) and an optional code from
    ``discount_codes``. Promotions stack with each other and with a regular
    code; an exclusive code replaces them. The total is capped at the subtotal.

    Bad codes never raise: the result carries ``rejected_code_reason``.
    """

    def __init__(self, db: Session):
        self.db = db
        self.settings = SettingsRepo(db)
        self.orders = OrderRepo(db)

    def resolve(self, lines: list[CartLineItem], code: str | None = None, user_id: int | None = None) -> DiscountResult:
        subtotal = calculate_subtotal(lines)
        rules = self.settings.get("discount_rules", {}) or {}

        result = DiscountResult()
        if subtotal <= ZERO:
            return result

        code_discount = None
        if code:
            code_discount, result.rejected_code_reason = self._apply_code(code.strip(), subtotal, user_id)
            if result.rejected_code_reason:
                logger.info(f"Discount code {code!r} not applied for user {user_id}: {result.rejected_code_reason}")

        exclusive = code_discount is not None and code_discount[1]
        if not exclusive:
            result.applied.extend(self._auto_promotions(rules, subtotal, user_id))
        if code_discount is not None:
            result.applied.append(code_discount[0])

        self._cap(result, subtotal)
        result.available = self.available_discounts(rules, subtotal, user_id)
        return result

    def _is_first_time_customer(self, user_id: int | None) -> bool:
        return user_id is not None and not self.orders.has_previous_orders(user_id)

    def _auto_promotions(self, rules: dict, subtotal: Decimal, user_id: int | None) -> list[AppliedDiscount]:
        applied = []

        first = rules.get("first_time_customer") or {}
        if first.get("enabled") and self._is_first_time_customer(user_id):
            amount = _percent(subtotal, first.get("percentage"))
            if amount > 0:
                applied.append(AppliedDiscount("first_time_customer", first.get("description", ""), amount))

        bulk = rules.get("bulk_order") or {}
        if bulk.get("enabled") and subtotal >= Decimal(str(bulk.get("threshold", 0))):
            amount = _percent(subtotal, bulk.get("percentage"))
            if amount > 0:
                applied.append(AppliedDiscount("bulk_order", bulk.get("description", ""), amount))

        return applied

    def _apply_code(self, code: str, subtotal: Decimal, user_id: int | None):
        row = self.db.execute(
            select(DiscountCodeModel).where(func.upper(DiscountCodeModel.code) == code.upper())
        ).scalar_one_or_none()

        if row is None:
            return None, NOT_FOUND
        if not row.is_active:
            return None, INACTIVE
        if row.expires_at is not None and _aware(row.expires_at) <= datetime.now(timezone.utc):
            return None, EXPIRED
        if subtotal < Decimal(str(row.min_order_amount or 0)):
            return None, MINIMUM_NOT_MET
        if row.usage_limit_per_user is not None:
            #limit per uzytkownik wymaga zalogowania
            if user_id is None:
                return None, LOGIN_REQUIRED
            if self.orders.count_code_usage(user_id, row.code) >= row.usage_limit_per_user:
                return None, USAGE_LIMIT_REACHED

        if row.kind == "fixed":
            amount = money(min(Decimal(str(row.value)), subtotal))
        else:
            amount = _percent(subtotal, row.value)

        discount = AppliedDiscount("code", row.description or row.code, amount, code=row.code)
        return (discount, row.exclusive), None

    @staticmethod
    def _cap(result: DiscountResult, subtotal: Decimal) -> None:
        excess = result.total - subtotal
        if excess <= 0:
            return
        # obcinamy od konca, kod jest ostatni
        for d in reversed(result.applied):
            cut = min(d.amount, excess)
            d.amount = money(d.amount - cut)
            excess -= cut
            if excess <= 0:
                break

    def available_discounts(self, rules: dict, subtotal: Decimal, user_id: int | None) -> list[dict]:
        available = []

        first = rules.get("first_time_customer") or {}
        if first.get("enabled") and self._is_first_time_customer(user_id):
            amount = _percent(subtotal, first.get("percentage"))
            available.append({
                "type": "first_time_customer",
                "description": first.get("description", ""),
                "discount_amount": amount,
                "formatted_discount": f"${amount:,.2f}",
            })

        bulk = rules.get("bulk_order") or {}
        if bulk.get("enabled"):
            threshold = Decimal(str(bulk.get("threshold", 0)))
            entry = {"type": "bulk_order", "description": bulk.get("description", "")}
            if subtotal >= threshold:
                amount = _percent(subtotal, bulk.get("percentage"))
                entry.update(discount_amount=amount, formatted_discount=f"${amount:,.2f}")
            else:
                remaining = money(threshold - subtotal)
                entry.update(
                    discount_amount=ZERO,
                    formatted_discount="$0.00",
                    remaining_for_discount=remaining,
                    formatted_remaining=f"${remaining:,.2f}",
                )
            available.append(entry)

        return available
