from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional, Union


# Quantities are stored as NUMERIC(14, 3): whole units plus three decimals
# (0.001 t, 0.001 m). Inputs with more precision are rejected, never rounded.
QUANTITY_PLACES = 3
QUANTITY_STEP = Decimal("0.001")

# Upper bound for a single quantity (threshold, delta, ordered, received)
MAX_QUANTITY = Decimal(1_000_000_000)

ZERO = Decimal(0)


def parse_quantity(value: Any) -> Decimal:
    """
    Normalize a JSON number to a Decimal quantity.

    - int, float and Decimal are accepted; floats go through str() so 2.5
      stays 2.5 and 0.1 stays 0.1
    - booleans, strings, NaN and infinity are rejected

    Raises ValueError with a message suitable for "<field> <message>".
    """
    if isinstance(value, bool):
        raise ValueError("must be a number")

    if isinstance(value, Decimal):
        dec = value
    elif isinstance(value, int):
        dec = Decimal(value)
    elif isinstance(value, float):
        dec = Decimal(str(value))
    else:
        raise ValueError("must be a number")

    if not dec.is_finite():
        raise ValueError("must be a finite number")
    if abs(dec) > MAX_QUANTITY:
        raise ValueError(f"magnitude cannot exceed {MAX_QUANTITY}")
    if dec != dec.quantize(QUANTITY_STEP):
        raise ValueError(f"cannot have more than {QUANTITY_PLACES} decimal places")
    return dec


def to_decimal(value: Union[Decimal, int, float, None]) -> Decimal:
    """
    Quantity read back from the database (column or SUM) as a Decimal.

    SQLite hands NUMERIC aggregates back as floats; they are snapped to the
    stored precision. None (an empty SUM) is zero.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        dec = value
    elif isinstance(value, float):
        dec = Decimal(str(value))
    else:
        dec = Decimal(value)
    return dec.quantize(QUANTITY_STEP)


def quantity_to_json(value: Union[Decimal, int, float, None]) -> Optional[Union[int, float]]:
    """Whole quantities serialize as JSON integers, fractional ones as numbers (10, 2.5)."""
    if value is None:
        return None
    dec = to_decimal(value)
    if dec == dec.to_integral_value():
        return int(dec)
    return float(dec)
