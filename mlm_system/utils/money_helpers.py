# mlm_system/utils/money_helpers.py
"""
Helper functions for money arithmetic.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

WHOLE_UNIT = Decimal("1")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """
    Convert any numeric input to Decimal without float artefacts.

    Example:
        to_decimal(0.1) -> Decimal("0.1")
    """
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def calculate_commission(amount: Number, percentage: Number) -> Decimal:
    """
    Commission for one level, rounded to the nearest whole currency unit (half up).

    Each level is rounded independently, no remainder carried between levels.

    Example:
        calculate_commission(1000, 5) -> Decimal("50")
        calculate_commission(10, 5) -> Decimal("1")     # 0.5 rounds up
        calculate_commission(9, 5) -> Decimal("0")      # 0.45 rounds down
    """
    raw = to_decimal(amount) * to_decimal(percentage) / Decimal("100")
    return raw.quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)


def to_json_number(value: Number) -> Union[int, float]:
    """
    JSON-friendly number: int when whole, float otherwise.

    Example:
        to_json_number(Decimal("50.00")) -> 50
        to_json_number(Decimal("2.5")) -> 2.5
    """
    value = to_decimal(value)
    if value == value.to_integral_value():
        return int(value)
    return float(value)
