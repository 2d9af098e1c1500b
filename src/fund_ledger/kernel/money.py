"""
Money helpers - fixed-decimal amounts only

All ledger amounts are Decimals in the currency's minor unit. Binary
floats are refused at the boundary: 0.1 + 0.2 != 0.3 is not a property
anyone wants in a disbursement ledger. Neither is silent rounding, so an
amount finer than a cent is refused rather than quantized.

Validation failures raise InvalidAmount. It is not a ValueError, so
pydantic lets it through a command model unchanged instead of wrapping
it in a ValidationError.
"""

from decimal import Decimal, InvalidOperation
from typing import Annotated, Any

from pydantic import BeforeValidator

from fund_ledger.kernel.errors import InvalidAmount

MINOR_UNIT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_amount(value: Any) -> Decimal:
    """
    Convert a str/int/Decimal to a Decimal amount with exactly two places

    Raises:
        InvalidAmount: For floats, booleans, unparseable or non-finite
            values, and anything with a non-zero digit past the cent
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmount(
            repr(value), f"must be given as a string, int or Decimal, not {type(value).__name__}"
        )
    try:
        amount = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
    except InvalidOperation as e:
        raise InvalidAmount(repr(value), "not a valid decimal") from e
    if not amount.is_finite():
        raise InvalidAmount(repr(value), "not finite")
    try:
        quantized = amount.quantize(MINOR_UNIT)
    except InvalidOperation as e:
        raise InvalidAmount(str(amount), "too many digits") from e
    if quantized != amount:
        raise InvalidAmount(str(amount), "more than 2 decimal places")
    return quantized


def to_non_negative_amount(value: Any) -> Decimal:
    amount = to_amount(value)
    if amount < ZERO:
        raise InvalidAmount(amount, "must not be negative")
    return amount


def split_evenly(total: Decimal, parts: int) -> list[Decimal]:
    """
    Split total into ``parts`` minor-unit slices; the last slice absorbs the remainder

    >>> split_evenly(Decimal("100.00"), 3)
    [Decimal('33.33'), Decimal('33.33'), Decimal('33.34')]
    """
    if parts < 1:
        raise ValueError("parts must be >= 1")
    slice_amount = (total / parts).quantize(MINOR_UNIT, rounding="ROUND_DOWN")
    slices = [slice_amount] * (parts - 1)
    slices.append(total - slice_amount * (parts - 1))
    return slices


Amount = Annotated[Decimal, BeforeValidator(to_amount)]
NonNegativeAmount = Annotated[Decimal, BeforeValidator(to_non_negative_amount)]
