"""Decimal helpers for agreement amounts. Display formatting lives elsewhere."""
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

CENT = Decimal("0.01")
# deposit + balance may differ from the total by less than this
PRICE_TOLERANCE = Decimal("0.01")


def to_amount(value: Any) -> Decimal:
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def split_matches_total(total_price: Any, deposit_amount: Any, balance_due: Any) -> bool:
    difference = to_amount(deposit_amount) + to_amount(balance_due) - to_amount(total_price)
    return abs(difference) < PRICE_TOLERANCE
