"""
Money Handling Module

Balances and amounts are Decimal values with two fractional digits.
NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Union

from .exceptions import InvalidAmountError

# High precision for intermediate calculations
getcontext().prec = 28

CENT = Decimal('0.01')
ZERO = Decimal('0.00')
# Largest single amount accepted; keeps balances well inside the context precision
MAX_AMOUNT = Decimal('999999999999.99')

AmountLike = Union[Decimal, int, str]


def to_amount(value: AmountLike) -> Decimal:
    """
    Convert a value to a Decimal rounded to cents (half-up).

    Raises:
        InvalidAmountError: if the value is not a finite number or its
            magnitude exceeds MAX_AMOUNT
    """
    if isinstance(value, float):
        # Go through str() so 0.1 becomes Decimal('0.1') rather than its binary expansion
        value = str(value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        if not amount.is_finite():
            raise InvalidAmountError(f"Invalid amount: {value!r}")
        amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise InvalidAmountError(f"Invalid amount: {value!r}")
    if abs(amount) > MAX_AMOUNT:
        raise InvalidAmountError(f"Amount out of range: {value!r}")
    return amount


def format_amount(amount: Decimal) -> str:
    """Format for display, e.g. $1234.50"""
    return f"${amount:.2f}"
