from decimal import ROUND_HALF_DOWN, ROUND_HALF_UP, Decimal
from typing import Iterable, Union

# Type alias for money values
Money = Decimal

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def round_money(value: Union[Decimal, float, int, str]) -> Decimal:
    """
    Round monetary value to 2 decimal places using ROUND_HALF_UP.

    Examples:
        >>> round_money(10.125)
        Decimal('10.13')
        >>> round_money(10.124)
        Decimal('10.12')
        >>> round_money("10.115")
        Decimal('10.12')
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if value < 0:
        return value.quantize(CENT, rounding=ROUND_HALF_DOWN)
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_money(value: Union[Decimal, float, int, str, None]) -> Decimal:
    """Coerce a DB/driver value (None, float from SQLite sums) to rounded Decimal."""
    if value is None:
        return ZERO
    return round_money(value)


def sum_money(values: Iterable[Union[Decimal, float, int, str, None]]) -> Decimal:
    """Exact sum of money values, rounded once at the end."""
    total = Decimal("0")
    for value in values:
        if value is None:
            continue
        total += value if isinstance(value, Decimal) else Decimal(str(value))
    return round_money(total)


def format_money(value: Decimal, currency: str = "NPR") -> str:
    """
    Format amount for summaries.

    Examples:
        >>> format_money(Decimal("2903.23"))
        'NPR 2,903.23'
    """
    return f"{currency} {round_money(value):,.2f}"
