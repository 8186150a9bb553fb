"""
Variance calculation for stock count items.

All arithmetic is Decimal. Floats are converted through `str` so a value
entered as 2.00 stays exactly 2.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Union

Number = Union[Decimal, int, float, str]

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class Variance:
    """Derived variance of one counted item."""
    quantity: Decimal
    percentage: Decimal
    value: Decimal


def to_decimal(value: Optional[Number]) -> Decimal:
    """Convert a stored quantity or cost to Decimal. Missing or non-finite values are 0."""
    if value is None:
        return ZERO
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            return ZERO
    if not result.is_finite():
        return ZERO
    return result


def parse_count_value(raw: Any) -> Optional[Decimal]:
    """
    Parse a raw counted quantity.

    Returns None for empty, whitespace-only, non-numeric or non-finite text.
    The whole trimmed string must be a number: "12abc" is rejected.
    """
    if raw is None:
        return None
    if isinstance(raw, (int, float, Decimal)) and not isinstance(raw, bool):
        text = str(raw)
    elif isinstance(raw, str):
        text = raw.strip()
    else:
        return None

    if not text:
        return None

    try:
        value = Decimal(text)
    except InvalidOperation:
        return None

    if not value.is_finite():
        return None
    return value


def compute_variance(
    counted: Number,
    expected: Optional[Number],
    unit_cost: Optional[Number] = None,
) -> Variance:
    """
    Compute variance of a counted quantity against the expected closing.

    - quantity = counted - expected (missing expected is 0)
    - percentage = 0 when expected is 0, else quantity / expected * 100
    - value = quantity * unit_cost (missing cost is 0)
    """
    counted_qty = to_decimal(counted)
    expected_qty = to_decimal(expected)
    cost = to_decimal(unit_cost)

    quantity = counted_qty - expected_qty
    if expected_qty == ZERO:
        percentage = ZERO
    else:
        percentage = quantity / expected_qty * HUNDRED

    return Variance(
        quantity=quantity,
        percentage=percentage,
        value=quantity * cost,
    )


def variance_mismatches(submitted: Any, recomputed: Variance) -> List[str]:
    """
    Names of derived fields whose submitted value differs from the recomputed one.

    `submitted` is anything with variance_quantity / variance_percentage /
    variance_value attributes (a CountItemWrite, a CountItem row).
    """
    mismatches = []
    pairs = (
        ("variance_quantity", recomputed.quantity),
        ("variance_percentage", recomputed.percentage),
        ("variance_value", recomputed.value),
    )
    for field, expected in pairs:
        value = getattr(submitted, field, None)
        if value is None:
            continue
        if to_decimal(value) != expected:
            mismatches.append(field)
    return mismatches


def format_quantity(value: Optional[Number]) -> str:
    """Render a stored quantity as plain text: Decimal("12.500") -> "12.5"."""
    if value is None:
        return ""
    number = to_decimal(value)
    if number == ZERO:
        return "0"
    return format(number.normalize(), "f")
