"""
Pricing computations over a cart snapshot.

All functions are pure and work in integer minor units.
"""
from typing import List, Sequence

from pos_engine.models import CartLine, LineDiscount, PricingSummary
from pos_engine.money import percent_of


def subtotal(lines: Sequence[CartLine]) -> int:
    return sum(line.subtotal for line in lines)


def line_tax(line: CartLine) -> int:
    return percent_of(line.subtotal, line.tax_rate)


def tax(lines: Sequence[CartLine]) -> int:
    """Tax is computed per line so mixed rates sum correctly"""
    return sum(line_tax(line) for line in lines)


def total(lines: Sequence[CartLine]) -> int:
    return subtotal(lines) + tax(lines)


def payable_total(lines: Sequence[CartLine], discount: int = 0) -> int:
    return max(0, total(lines) - discount)


def change_due(cash_received: int, amount_due: int) -> int:
    return max(0, cash_received - amount_due)


def distribute_loyalty_discount(lines: Sequence[CartLine], discount: int) -> List[LineDiscount]:
    """
    Split ``discount`` across lines in proportion to each line's subtotal.

    Every share except the last is rounded down to a whole minor unit, so the
    running total never passes ``discount``; the last line takes whatever is
    left. Shares are never negative and always add up to ``discount`` exactly.
    """
    if not lines:
        return []

    base = subtotal(lines)
    count = len(lines)
    allocated = 0
    shares: List[LineDiscount] = []

    for index, line in enumerate(lines):
        product_id, variant_id = line.key
        if index == count - 1:
            amount = discount - allocated
        elif base > 0:
            amount = (discount * line.subtotal) // base
        else:
            amount = discount // count
        allocated += amount
        shares.append(LineDiscount(product_id=product_id, variant_id=variant_id, amount=amount))

    return shares


def summarize(lines: Sequence[CartLine], discount: int = 0) -> PricingSummary:
    sub = subtotal(lines)
    tax_amount = tax(lines)
    return PricingSummary(
        subtotal=sub,
        tax=tax_amount,
        total=sub + tax_amount,
        discount=discount,
        payable_total=max(0, sub + tax_amount - discount),
        line_discounts=distribute_loyalty_discount(lines, discount),
    )
