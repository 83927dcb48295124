"""
Module: budget_kernel.db.types
Responsibility: Annotated column aliases and the sanctioned rounding helpers
    for monetary values and percentages.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and selectors/.

No floats anywhere in the kernel.  All amounts are Decimal with explicit
precision; round_money() is the only rounding function used for values
that leave the kernel (snapshots, version payloads, utilization).
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Any

from sqlalchemy import Numeric, String

# Monetary amount: 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Short identifier strings (codes, statuses)
ShortCode = Annotated[str, String(50)]

# Long text for descriptions and comments
LongText = Annotated[str, String(4000)]

MONEY_DECIMAL_PLACES = 9
DISPLAY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def round_money(
    value: Decimal,
    decimal_places: int = DISPLAY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    """
    Coerce an int, str or Decimal into a Decimal.

    Floats are rejected because they cannot represent money exactly.

    Raises:
        ValueError: If the value is a float, a bool or not numeric.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (float, bool)) or value is None:
        raise ValueError(f"{field} must be a Decimal, int or numeric string, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{field} is not numeric: {value!r}") from exc


def money_str(value: Decimal) -> str:
    """Canonical two-place string form used in JSON payloads."""
    return str(round_money(Decimal(value)))
