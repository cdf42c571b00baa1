"""
Decimal Codec - fixed-point integer conversions.

Raw exchange amounts are integers scaled by 10^exponent. All conversions
go through Decimal so magnitudes beyond 2^53 keep their low-order digits.
"""

from decimal import ROUND_HALF_EVEN, Context, Decimal, InvalidOperation
from typing import Any, Optional

from .config import DEFAULT_ASSET_DECIMALS


# Wide enough for 64-bit raw amounts at any realistic exponent
DECIMAL_CONTEXT = Context(prec=60, rounding=ROUND_HALF_EVEN)


def to_decimal(value: Any) -> Optional[Decimal]:
    """Parse a raw amount (int, numeric string, Decimal, float) or return None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, int):
        parsed = Decimal(value)
    elif isinstance(value, (float, str)):
        try:
            parsed = Decimal(str(value).strip())
        except InvalidOperation:
            return None
    else:
        return None
    if not parsed.is_finite():
        return None
    return parsed


def scale_down(raw: Any, exponent: int) -> Decimal:
    """raw / 10^exponent, exact. Unparseable input counts as zero."""
    parsed = to_decimal(raw)
    if parsed is None:
        return Decimal(0)
    return parsed.scaleb(-exponent, context=DECIMAL_CONTEXT)


def scale_up(value: Decimal, exponent: int) -> Decimal:
    """value * 10^exponent, exact."""
    return value.scaleb(exponent, context=DECIMAL_CONTEXT)


def plain(value: Decimal) -> str:
    """Render without exponent notation or trailing zeros."""
    if value == 0:
        return "0"
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def to_decimal_string(raw: Any, exponent: Optional[int] = None) -> str:
    """
    Interpret raw as an integer scaled by 10^exponent and render it.

    Returns "0" for None / non-numeric input. A None exponent means the
    default asset precision.
    """
    parsed = to_decimal(raw)
    if parsed is None:
        return "0"
    if exponent is None:
        exponent = DEFAULT_ASSET_DECIMALS
    return plain(parsed.scaleb(-exponent, context=DECIMAL_CONTEXT))


def format_fixed(value: Decimal, places: int) -> str:
    """Fixed number of fractional digits (half-even), like toFixed."""
    quantum = Decimal(1).scaleb(-places)
    context = DECIMAL_CONTEXT
    needed = max(value.adjusted(), 0) + places + 2
    if needed > context.prec:
        context = context.copy()
        context.prec = needed
    result = value.quantize(quantum, context=context)
    if result == 0:
        result = abs(result)
    return format(result, "f")
