# discounts.py: product snapshot + randomized margin-preserving markdown

from __future__ import annotations
import math
import random
from dataclasses import dataclass, asdict

import config

ESTIMATED_COST_RATIO = 0.5


class DiscountError(ValueError):
    """Product cannot receive a markdown that stays above cost and below price."""


@dataclass
class Product:
    id: str
    title: str
    image_url: str
    cost: float | None
    selling_price: float
    compare_at_price: float | None
    inventory_quantity: int
    variant_id: str
    currency_code: str = "USD"
    variant_title: str | None = None
    image_alt: str | None = None
    has_cost_data: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Discount:
    profit_margin: float | None
    discount_percentage: int
    original_price: float
    discounted_price: float
    savings_amount: float
    savings_percentage: float

    def to_dict(self) -> dict:
        return asdict(self)


# --- pricing helpers ---
def ceil_to_cent(value: float) -> float:
    # round first so float noise (88.00000000001) does not bump a whole cent
    return math.ceil(round(value * 100, 6)) / 100.0


def calculate_profit_margin(cost: float, selling_price: float) -> float:
    if selling_price <= 0:
        return 0.0
    return (selling_price - cost) / selling_price * 100


def calculate_savings_amount(original_price: float, discounted_price: float) -> float:
    return round(original_price - discounted_price, 2)


def calculate_savings_percentage(original_price: float, discounted_price: float) -> float:
    if original_price <= 0:
        return 0.0
    return (original_price - discounted_price) / original_price * 100


def estimated_cost(selling_price: float) -> float:
    return selling_price * ESTIMATED_COST_RATIO


def random_discount_percentage(
    rng: random.Random | None = None,
    lo: int = config.MIN_DISCOUNT_PERCENT,
    hi: int = config.MAX_DISCOUNT_PERCENT,
) -> int:
    return (rng or random).randint(lo, hi)


def generate_discount(
    product: Product,
    rng: random.Random | None = None,
    percentage: int | None = None,
) -> Discount:
    """
    Discount the profit, never the cost:

        profit           = price - cost
        discountedPrice  = ceil_to_cent(cost + profit * (1 - pct/100))

    so cost <= discountedPrice. Raises DiscountError when the margin is too
    thin for the rounded price to land strictly below the selling price.
    """
    price = float(product.selling_price)
    cost = float(product.cost)
    if price <= 0 or cost >= price:
        raise DiscountError(f"No positive margin for {product.title!r} (cost {cost}, price {price})")

    pct = percentage if percentage is not None else random_discount_percentage(rng)
    profit = price - cost
    discounted_profit = profit * (1 - pct / 100.0)
    discounted_price = ceil_to_cent(cost + discounted_profit)
    if discounted_price >= price:
        raise DiscountError(f"Margin too small to discount {product.title!r} by {pct}%")

    return Discount(
        profit_margin=calculate_profit_margin(cost, price),
        discount_percentage=int(pct),
        original_price=price,
        discounted_price=discounted_price,
        savings_amount=calculate_savings_amount(price, discounted_price),
        savings_percentage=calculate_savings_percentage(price, discounted_price),
    )
