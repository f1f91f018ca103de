"""Integer-cent money helpers.

Amounts are stored and summed as integer cents. Floats only appear at the
display boundary, via :func:`cents_to_major`.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

Number = Union[int, float, Decimal]

# Largest value an SQL INTEGER column holds.
MAX_CENTS = 2**63 - 1


def to_cents(amount: Number) -> int:
    """Convert a major-unit amount to cents, rounding half away from zero.

    Raises ``ValueError`` when the result does not fit a database integer.
    """
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    try:
        cents = int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except ArithmeticError as exc:
        raise ValueError("Amount out of range") from exc
    if abs(cents) > MAX_CENTS:
        raise ValueError("Amount out of range")
    return cents


def cents_to_major(cents: Union[int, float]) -> float:
    return cents / 100


def parse_amount(value: str) -> Decimal:
    """Parse user-entered amount text, accepting a comma as decimal separator.

    Raises ``ValueError`` for anything that is not a finite number.
    """
    clean = (value or "").strip().replace(",", ".")
    if not clean or "_" in clean:
        raise ValueError("Invalid amount")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    return amount


def format_money(cents: int) -> str:
    return f"{cents / 100:,.2f}"
