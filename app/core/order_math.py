"""Shared helpers for cart and order totals."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class PriceBreakdown:
    subtotal: Decimal
    delivery_fee: Decimal
    tax: Decimal
    total: Decimal

    def to_dict(self) -> dict[str, float]:
        return {
            "subtotal": float(self.subtotal),
            "deliveryFee": float(self.delivery_fee),
            "tax": float(self.tax),
            "total": float(self.total),
        }


EMPTY_BREAKDOWN = PriceBreakdown(ZERO, ZERO, ZERO, ZERO)


def calc_items_total(lines: Iterable[tuple[Any, int]]) -> Decimal:
    """Sum of unit price x quantity over (price, quantity) pairs."""
    total = ZERO
    for price, quantity in lines:
        total += to_money(price) * int(quantity)
    return to_money(total)


def calc_tax(subtotal: Decimal, tax_rate: Decimal) -> Decimal:
    return to_money(to_money(subtotal) * tax_rate)


def calc_breakdown(subtotal: Decimal, *, delivery_fee: Decimal, tax_rate: Decimal) -> PriceBreakdown:
    subtotal = to_money(subtotal)
    fee = to_money(delivery_fee)
    tax = calc_tax(subtotal, tax_rate)
    return PriceBreakdown(subtotal=subtotal, delivery_fee=fee, tax=tax, total=subtotal + fee + tax)


def to_minor_units(amount: Decimal) -> int:
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def gateway_amount(total: Decimal, minimum_minor: int) -> tuple[int, bool]:
    """Charge amount in minor units and whether the gateway minimum was applied."""
    amount = to_minor_units(total)
    if amount < minimum_minor:
        return minimum_minor, True
    return amount, False
