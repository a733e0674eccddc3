"""Order pricing shared by checkout and the payment provider bridge."""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple, Union

from storefront.config import SHIPPING_FLAT_RATE, TAX_RATE

CENT = Decimal("0.01")


def to_money(value: Union[Decimal, float, int, str]) -> Decimal:
    """Quantize an amount to cents, rounding half up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Decimal) -> str:
    return str(to_money(value))


def items_total(lines: Iterable[Tuple[Decimal, int]]) -> Decimal:
    """Sum of price x quantity over (price, quantity) lines."""
    return sum((to_money(price) * quantity for price, quantity in lines), Decimal("0.00"))


@dataclass(frozen=True)
class PaymentBreakdown:
    """Amounts charged for an order; ``total`` always equals the sum of the parts."""
    item_total: Decimal
    shipping: Decimal
    tax: Decimal

    @property
    def total(self) -> Decimal:
        return self.item_total + self.shipping + self.tax


def calculate_breakdown(lines: Iterable[Tuple[Decimal, int]]) -> PaymentBreakdown:
    """
    Price an order.

    Args:
        lines: (unit price, quantity) pairs

    Returns:
        Item total, flat shipping and tax on the item total
    """
    item_total = to_money(items_total(lines))
    return PaymentBreakdown(
        item_total=item_total,
        shipping=to_money(SHIPPING_FLAT_RATE),
        tax=to_money(item_total * TAX_RATE)
    )
