"""Conversion between display amounts and integer base units.

Amounts cross the HTTP boundary as decimal strings in the asset's display
unit ("0.5" ETH) and live everywhere else as integers of the smallest unit
(wei). Conversion is exact: more fractional digits than the asset supports
is an error, never a rounding.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, localcontext

from secure_swap.domain.exceptions import ValidationError

ETHER_DECIMALS = 18
MAX_UINT256 = 2**256 - 1
# largest power of ten below 2**256
_MAX_UINT256_EXPONENT = len(str(MAX_UINT256)) - 1


def to_base_units(
    value: str | int | float | Decimal,
    decimals: int = ETHER_DECIMALS,
    field: str = "amount",
) -> int:
    """Parse a display amount into base units.

    JSON numbers are accepted and read through their string form, so 0.1
    means exactly one tenth rather than its binary float approximation.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required", field=field)
    text = str(value).strip()
    if not text:
        raise ValidationError(f"{field} is required", field=field)
    try:
        amount = Decimal(text)
    except InvalidOperation as err:
        raise ValidationError(f"{field} is not a decimal number: {text!r}", field=field) from err
    if not amount.is_finite():
        raise ValidationError(f"{field} must be finite", field=field)
    if amount < 0:
        raise ValidationError(f"{field} must not be negative", field=field)
    if amount and amount.adjusted() + decimals > _MAX_UINT256_EXPONENT:
        raise ValidationError(f"{field} is too large", field=field)
    if amount and amount.adjusted() + decimals < 0:
        raise ValidationError(
            f"{field} has more than {decimals} decimal places: {text!r}",
            field=field,
        )

    with localcontext() as ctx:
        ctx.prec = 120
        scaled = amount.scaleb(decimals)
        integral = scaled.to_integral_value()
    if scaled != integral:
        raise ValidationError(
            f"{field} has more than {decimals} decimal places: {text!r}",
            field=field,
        )
    result = int(integral)
    if result > MAX_UINT256:
        raise ValidationError(f"{field} is too large", field=field)
    return result


def from_base_units(value: int, decimals: int = ETHER_DECIMALS) -> str:
    """Format base units as a display string, always with a fractional part.

    >>> from_base_units(1_500_000_000_000_000_000)
    '1.5'
    >>> from_base_units(10**18)
    '1.0'
    """
    if value < 0:
        raise ValueError("base-unit amounts are never negative")
    whole, frac = divmod(value, 10**decimals)
    frac_text = str(frac).rjust(decimals, "0").rstrip("0") or "0"
    return f"{whole}.{frac_text}"
