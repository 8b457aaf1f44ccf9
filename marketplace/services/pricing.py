# marketplace/services/pricing.py
# Order pricing: tax, shipping and total computed once at checkout.

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from marketplace.core.config import settings

CENT = Decimal("0.01")


def money(value) -> Decimal:
    """Rounds to two decimal places, half up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def line_total(unit_price, quantity: int) -> Decimal:
    return money(Decimal(unit_price) * quantity)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal


def shipping_for(subtotal: Decimal, free_threshold: Optional[Decimal] = None,
                 fee: Optional[Decimal] = None) -> Decimal:
    threshold = settings.DELIVERY_FREE_THRESHOLD if free_threshold is None else free_threshold
    flat_fee = settings.DELIVERY_FEE if fee is None else fee
    # Free shipping only strictly above the threshold
    return money(0) if subtotal > threshold else money(flat_fee)


def compute_totals(subtotal, discount=Decimal("0"), tax_rate: Optional[Decimal] = None,
                   free_threshold: Optional[Decimal] = None,
                   fee: Optional[Decimal] = None) -> OrderTotals:
    """total = subtotal + tax + shipping - discount, with tax and shipping
    both derived from the pre-tax subtotal."""
    subtotal = money(subtotal)
    discount = money(discount)
    if subtotal < 0:
        raise ValueError("subtotal cannot be negative")
    if discount < 0 or discount > subtotal:
        raise ValueError("discount must be between 0 and the subtotal")
    rate = settings.TAX_RATE if tax_rate is None else Decimal(tax_rate)
    tax = money(subtotal * rate)
    shipping = shipping_for(subtotal, free_threshold, fee)
    return OrderTotals(
        subtotal=subtotal,
        tax_amount=tax,
        shipping_amount=shipping,
        discount_amount=discount,
        total_amount=money(subtotal + tax + shipping - discount),
    )
