"""
Money Type

All amounts in the ledger are `decimal.Decimal`. Binary floats are rejected
at the boundary so that a value like 0.1 can never sneak in as
0.1000000000000000055511151231257827.
"""

from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Annotated

from pydantic import BeforeValidator

ZERO = Decimal("0")


def to_decimal(value: object) -> Decimal:
    """
    Coerce a value to an exact Decimal.

    Accepts Decimal, int and numeric strings. Floats and bools are refused
    because they cannot represent money exactly.
    """
    if isinstance(value, bool):
        raise ValueError("Booleans are not valid money amounts")
    if isinstance(value, float):
        raise ValueError(
            f"Float {value!r} is not a valid money amount; pass a Decimal or a string"
        )
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip().replace(",", "."))
        except InvalidOperation:
            raise ValueError(f"Not a number: {value!r}")
    else:
        raise ValueError(f"Unsupported money type: {type(value).__name__}")

    if not result.is_finite():
        raise ValueError(f"Money amounts must be finite, got {result}")
    return result


def round_money(amount: Decimal, places: int = 2) -> Decimal:
    """Round for display or export. Balances are never rounded internally."""
    return amount.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_EVEN)


Money = Annotated[Decimal, BeforeValidator(to_decimal)]
