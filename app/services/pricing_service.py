# app/services/pricing_service.py
from decimal import Decimal

from sqlalchemy.orm import Session

from app.domain.identity import CartLineItem
from app.domain.pricing import PricingResult, calculate_delivery_fee, compute_totals, store_ids
from app.repos.product_repo import ProductRepo
from app.repos.settings_repo import SettingsRepo
from app.services.discount_service import DiscountService
from app.utils.settings import DEFAULT_DELIVERY_FEE, DEFAULT_TAX_RATE, DEFAULT_MULTI_STORE_FEE_POLICY


class PricingService:
    """
    Reads the current fee/tax configuration and discounts, then delegates the
    arithmetic to ``app.domain.pricing.compute_totals``.
    """

    def __init__(self, db: Session, discount_service: DiscountService | None = None):
        self.settings = SettingsRepo(db)
        self.products = ProductRepo(db)
        self.discounts = discount_service or DiscountService(db)

    def system_settings(self) -> dict:
        return {
            "global_delivery_fee": Decimal(str(self.settings.get("global_delivery_fee", DEFAULT_DELIVERY_FEE))),
            "global_tax_rate": Decimal(str(self.settings.get("global_tax_rate", DEFAULT_TAX_RATE))),
            "multi_store_delivery_fee_policy": self.settings.get(
                "multi_store_delivery_fee_policy", DEFAULT_MULTI_STORE_FEE_POLICY
            ),
            "discount_rules": self.settings.get("discount_rules", {}),
        }

    def compute_totals(
        self,
        lines: list[CartLineItem],
        user_id: int | None = None,
        discount_code: str | None = None,
    ) -> PricingResult:
        cfg = self.system_settings()

        delivery_fee = calculate_delivery_fee(
            lines,
            self.products.get_store_fees(store_ids(lines)),
            cfg["global_delivery_fee"],
            cfg["multi_store_delivery_fee_policy"],
        )
        discounts = self.discounts.resolve(lines, code=discount_code, user_id=user_id)

        return compute_totals(lines, discounts, delivery_fee, cfg["global_tax_rate"])
