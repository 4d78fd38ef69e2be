"""
Decimal <-> atomic unit conversion

Token amounts are handled as strings end to end. Amounts can carry up to 18
fractional digits, so conversion is done with digit arithmetic only and never
goes through float.
"""

import re
import logging
from typing import Optional

from .errors import InvalidAmountFormat, PrecisionExceeded, AmountNotPositive

logger = logging.getLogger(__name__)

DECIMAL_PATTERN = re.compile(r'^[0-9]+(\.[0-9]+)?$')
ATOMIC_PATTERN = re.compile(r'^[0-9]+$')

AMOUNT_FORMAT_DECIMAL = 'decimal'
AMOUNT_FORMAT_ATOMIC = 'atomic'


def _check_decimals(decimals: int) -> int:
    try:
        decimals = int(decimals)
    except (TypeError, ValueError):
        raise InvalidAmountFormat(f"Token decimals must be an integer, got {decimals!r}")
    if decimals < 0:
        raise InvalidAmountFormat(f"Token decimals must not be negative, got {decimals}")
    return decimals


def decimal_to_atomic(amount_decimal: str, decimals: int) -> str:
    """
    Convert a human decimal amount into atomic units

    Args:
        amount_decimal: Amount such as "2.50"
        decimals: Token decimal precision

    Returns:
        Minimal positive digit string, e.g. "2500000" for ("2.50", 6)

    Raises:
        InvalidAmountFormat: amount is not a plain decimal number
        PrecisionExceeded: more fractional digits than the token supports
        AmountNotPositive: amount is zero
    """
    decimals = _check_decimals(decimals)
    amount = (amount_decimal or '').strip() if isinstance(amount_decimal, str) else ''

    if not DECIMAL_PATTERN.match(amount):
        raise InvalidAmountFormat(f"Invalid amount format: {amount_decimal!r}")

    integer_part, _, fractional_part = amount.partition('.')

    if len(fractional_part) > decimals:
        raise PrecisionExceeded(
            f"Amount {amount} has {len(fractional_part)} fractional digits, token allows {decimals}"
        )

    atomic = (integer_part + fractional_part.ljust(decimals, '0')).lstrip('0')
    if not atomic:
        raise AmountNotPositive(f"Amount must be greater than zero: {amount}")

    return atomic


def atomic_to_decimal(atomic: str, decimals: int) -> str:
    """Render an atomic amount as a human decimal string"""
    decimals = _check_decimals(decimals)
    digits = re.sub(r'[^0-9]', '', str(atomic or ''))

    if decimals == 0:
        return digits.lstrip('0') or '0'

    digits = digits.rjust(decimals, '0')
    whole, fraction = digits[:-decimals], digits[-decimals:]

    whole = whole.lstrip('0') or '0'
    fraction = fraction.rstrip('0')

    return f"{whole}.{fraction}" if fraction else whole


def sanitize_atomic_string(value: str) -> Optional[str]:
    """Strip to digits; None unless the result is a positive integer"""
    digits = re.sub(r'[^0-9]', '', str(value or ''))
    normalized = digits.lstrip('0')
    return normalized or None


def normalize_atomic_amount(
    amount: str,
    decimals: int,
    amount_format: Optional[str] = None
) -> str:
    """
    Normalize a configured amount into atomic units

    `amount_format="atomic"` means the value is already in atomic units.
    Without a format flag a bare integer string is taken as atomic, which is
    how resources stored before the flag existed were saved.
    """
    amount_string = str(amount if amount is not None else '').strip()

    if not amount_string:
        raise InvalidAmountFormat("Amount is empty")

    treat_as_atomic = amount_format == AMOUNT_FORMAT_ATOMIC or (
        amount_format is None and ATOMIC_PATTERN.match(amount_string)
    )

    if treat_as_atomic:
        if not ATOMIC_PATTERN.match(amount_string):
            raise InvalidAmountFormat(f"Atomic amount must be digits only: {amount_string!r}")
        normalized = sanitize_atomic_string(amount_string)
        if normalized is None:
            raise AmountNotPositive(f"Amount must be greater than zero: {amount_string}")
        return normalized

    return decimal_to_atomic(amount_string, decimals)
