"""Checkout arithmetic and order number formatting.

Pure functions only: nothing here touches the database, so the totals
invariant can be checked anywhere an order document is about to be written.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable

from .config import settings
from .errors import InvariantViolationError

TOTALS_TOLERANCE = 0.01
ORDER_SEQUENCE_WIDTH = 4


def round_money(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def line_total(price: float, quantity: int) -> float:
    return round_money(price * quantity)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: float
    shipping_cost: float
    tax: float
    total: float

    def as_dict(self) -> dict[str, float]:
        return {
            "subtotal": self.subtotal,
            "shipping_cost": self.shipping_cost,
            "tax": self.tax,
            "total": self.total,
        }


def compute_totals(
    lines: Iterable[tuple[float, int]],
    free_shipping_threshold: float | None = None,
    shipping_fee: float | None = None,
    tax_rate: float | None = None,
) -> OrderTotals:
    """Price a list of (unit price, quantity) pairs.

    Shipping is waived when the subtotal is strictly above the threshold.
    Tax is rounded to a whole currency unit.
    """
    if free_shipping_threshold is None:
        free_shipping_threshold = settings.FREE_SHIPPING_THRESHOLD
    if shipping_fee is None:
        shipping_fee = settings.SHIPPING_FEE
    if tax_rate is None:
        tax_rate = settings.TAX_RATE

    subtotal = round_money(sum(line_total(price, qty) for price, qty in lines))
    shipping_cost = 0.0 if subtotal > free_shipping_threshold else float(shipping_fee)
    tax = float(round_half_up(subtotal * tax_rate))
    total = round_money(subtotal + shipping_cost + tax)
    return OrderTotals(subtotal=subtotal, shipping_cost=shipping_cost, tax=tax, total=total)


def check_totals(order: dict[str, Any]) -> None:
    """Raise InvariantViolationError if the stored figures of an order do not add up."""
    for item in order.get("items", []):
        expected = line_total(item["price"], item["quantity"])
        if abs(expected - item["total"]) > TOTALS_TOLERANCE:
            raise InvariantViolationError(
                f"Line total for {item.get('name', item.get('product_id'))} does not match price x quantity"
            )

    calculated = order["subtotal"] + order.get("shipping_cost", 0) + order.get("tax", 0)
    if abs(calculated - order["total"]) > TOTALS_TOLERANCE:
        raise InvariantViolationError("Order total does not match calculated total")


def order_number_prefix(when: datetime) -> str:
    return when.strftime("%Y%m%d")


def format_order_number(when: datetime, sequence: int) -> str:
    """Daily sequence appended to the date, e.g. 202610170001. Widens past 9999 instead of wrapping."""
    return f"{order_number_prefix(when)}{sequence:0{ORDER_SEQUENCE_WIDTH}d}"
