# billing/products.py
"""
Stripe price and product views.

Prices are listed from Stripe with their product expanded and reduced
to the fields the pricing page needs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class PriceSummary:
    """Subscription price as shown to clients."""
    id: str
    product_id: Optional[str]
    product_name: Optional[str]
    product_active: bool
    unit_amount: Optional[int]  # cents
    currency: str = "usd"
    interval: Optional[str] = None
    interval_count: int = 1
    nickname: Optional[str] = None
    trial_period_days: Optional[int] = None

    @classmethod
    def from_stripe(cls, price) -> PriceSummary:
        """Build from a Stripe Price whose product may or may not be expanded."""
        product = price.get("product")
        if isinstance(product, str):
            product_id, product_name, product_active = product, None, True
        elif product:
            product_id = product.get("id")
            product_name = product.get("name")
            product_active = bool(product.get("active", True))
        else:
            product_id, product_name, product_active = None, None, True

        recurring = price.get("recurring") or {}

        return cls(
            id=price["id"],
            product_id=product_id,
            product_name=product_name,
            product_active=product_active,
            unit_amount=price.get("unit_amount"),
            currency=price.get("currency") or "usd",
            interval=recurring.get("interval"),
            interval_count=recurring.get("interval_count") or 1,
            nickname=price.get("nickname"),
            trial_period_days=recurring.get("trial_period_days"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "productName": self.product_name,
            "productActive": self.product_active,
            "unitAmount": self.unit_amount,
            "currency": self.currency,
            "interval": self.interval,
            "intervalCount": self.interval_count,
            "nickname": self.nickname,
            "trialPeriodDays": self.trial_period_days,
        }


def summarize_prices(prices, active_product: bool = True) -> list[PriceSummary]:
    """
    Convert Stripe prices, keeping only active products when asked.

    Args:
        prices: Iterable of Stripe Price objects
        active_product: Drop prices whose product is archived
    """
    summaries = [PriceSummary.from_stripe(p) for p in prices]
    if active_product:
        summaries = [s for s in summaries if s.product_active]
    return summaries
