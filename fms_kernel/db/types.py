"""
Module: fms_kernel.db.types
Responsibility: Money coercion and rounding helpers shared by models,
    services and selectors.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    No floats anywhere in the kernel.  All monetary amounts use Decimal with
    two decimal places.  Caller input carrying sub-centavo precision is
    refused by to_money(); only computed figures are rounded, half-up, by
    round_money().
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0.00")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the kernel's fixed precision.

    This is the ONLY sanctioned rounding function for monetary values.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def to_money(value: Any) -> Decimal:
    """
    Coerce a caller-supplied amount into a two-place Decimal.

    Accepts Decimal, int, or numeric strings.  Floats are rejected: a float
    has already lost the exact value the caller meant.  Amounts that are
    not whole centavos are rejected rather than rounded; trailing zeros
    (``"10.500"``) are fine.

    Raises:
        TypeError: If value is a float or bool.
        ValueError: If value is not a finite number, or has a non-zero
            digit beyond the second decimal place.
    """
    if isinstance(value, (float, bool)):
        raise TypeError(f"Monetary amounts must not be {type(value).__name__}: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    rounded = round_money(amount)
    if rounded != amount:
        raise ValueError(
            f"More than {MONEY_DECIMAL_PLACES} decimal places: {value!r}"
        )
    return rounded


def sum_to_money(value: Any) -> Decimal:
    """Normalize a SQL SUM() result (None, Decimal, or driver float) to money."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return round_money(value)
    return round_money(Decimal(str(value)))
