"""
Fixed-point amounts.

Prices and quantities travel through the engine as integers counted in the
smallest indivisible unit (10^-4 of a monetary or energy unit by default).
Decimal is only used at the edges: DB rows, JSON payloads and the CLI.

Every sum is checked against the unsigned 64-bit range used on-chain, so a
clearing result can be reproduced bit-for-bit by any party.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from energy_auction.config import PRICE_DECIMALS, QUANTITY_DECIMALS
from energy_auction.errors import AmountOverflow, InvalidInput

MAX_UNITS = 2 ** 64 - 1


def to_decimal(n: Any) -> Decimal:
    try:
        if isinstance(n, Decimal):
            value = n
        else:
            value = Decimal(str(n))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInput("Invalid numeric value", details={"value": str(n)})
    if not value.is_finite():
        raise InvalidInput("Invalid numeric value", details={"value": str(n)})
    return value


def to_units(value: Any, decimals: int, field: str = "value") -> int:
    """Convert a decimal amount into integer units, refusing to round."""
    if isinstance(value, bool):
        raise InvalidInput(f"Field '{field}' must be numeric")
    amount = to_decimal(value)
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise InvalidInput(
            f"Field '{field}' has more than {decimals} decimal places",
            details={"value": str(value)},
        )
    units = int(scaled)
    if abs(units) > MAX_UNITS:
        raise AmountOverflow(details={"field": field, "value": str(value)})
    return units


def from_units(units: int, decimals: int) -> Decimal:
    return Decimal(units).scaleb(-decimals)


def price_to_units(value: Any, field: str = "price") -> int:
    return to_units(value, PRICE_DECIMALS, field)


def quantity_to_units(value: Any, field: str = "quantity") -> int:
    return to_units(value, QUANTITY_DECIMALS, field)


def format_price(units: int) -> str:
    return str(from_units(units, PRICE_DECIMALS))


def format_quantity(units: int) -> str:
    return str(from_units(units, QUANTITY_DECIMALS))


def checked_add(a: int, b: int) -> int:
    total = a + b
    if total < 0 or total > MAX_UNITS:
        raise AmountOverflow(details={"operation": "add", "left": a, "right": b})
    return total


def checked_sub(a: int, b: int) -> int:
    result = a - b
    if result < 0 or result > MAX_UNITS:
        raise AmountOverflow(
            "Amount underflow", details={"operation": "sub", "left": a, "right": b}
        )
    return result


def checked_sum(values: Iterable[int]) -> int:
    total = 0
    for value in values:
        total = checked_add(total, value)
    return total


__all__ = [
    'MAX_UNITS',
    'to_decimal',
    'to_units',
    'from_units',
    'price_to_units',
    'quantity_to_units',
    'format_price',
    'format_quantity',
    'checked_add',
    'checked_sub',
    'checked_sum',
]
