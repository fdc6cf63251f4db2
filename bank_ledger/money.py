"""
Monetary Arithmetic Helpers

Parsing and rounding for Decimal amounts. NEVER uses float for monetary values.
"""

from contextlib import contextmanager
from decimal import Decimal, Inexact, InvalidOperation, ROUND_HALF_UP, getcontext, localcontext
from typing import Any, Optional
import re

# Set global decimal context for financial precision
getcontext().prec = 28

ZERO = Decimal('0')

# Invariant numeric format: optional sign, '.' as decimal separator, no grouping, no exponent
_DECIMAL_PATTERN = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)$')


def parse_decimal(text: str) -> Decimal:
    """
    Parse a decimal string in the invariant (locale-independent) format

    Raises:
        ValueError: If the text is not a plain finite decimal number
    """
    if not isinstance(text, str):
        raise ValueError(f"Expected a decimal string, got {type(text).__name__}")

    candidate = text.strip()
    if not _DECIMAL_PATTERN.match(candidate):
        raise ValueError(f"Not a decimal number: {text!r}")

    try:
        return Decimal(candidate)
    except InvalidOperation as e:
        raise ValueError(f"Not a decimal number: {text!r}") from e


def to_amount(value: Any) -> Optional[Decimal]:
    """
    Convert a caller-supplied amount to Decimal without going through float

    Accepts Decimal, int and decimal strings. Returns None for floats,
    booleans, non-finite values and anything unparseable.
    """
    if isinstance(value, bool):
        return None

    if isinstance(value, Decimal):
        return value if value.is_finite() else None

    if isinstance(value, int):
        return Decimal(value)

    if isinstance(value, str):
        try:
            return parse_decimal(value)
        except ValueError:
            return None

    return None


@contextmanager
def exact_arithmetic():
    """
    Decimal context in which any rounded result raises decimal.Inexact

    Balance arithmetic runs inside it, so a result that does not fit the
    context precision fails instead of silently losing digits.
    """
    with localcontext() as ctx:
        ctx.traps[Inexact] = True
        yield ctx


def quantize_amount(value: Decimal, places: int) -> Decimal:
    """Round to a fixed number of decimal places using ROUND_HALF_UP"""
    with localcontext() as ctx:
        # Rounding is the point here, even inside exact_arithmetic()
        ctx.traps[Inexact] = False
        return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
