"""
Tests for decimal/atomic amount conversion
"""

import pytest

from api.paywall.amounts import (
    decimal_to_atomic,
    atomic_to_decimal,
    normalize_atomic_amount,
    sanitize_atomic_string,
)
from api.paywall.errors import (
    AmountError,
    InvalidAmountFormat,
    PrecisionExceeded,
    AmountNotPositive,
    PaymentErrorKind,
)


# =============================================================================
# DECIMAL -> ATOMIC
# =============================================================================

@pytest.mark.parametrize("amount,decimals,expected", [
    ("2.50", 6, "2500000"),
    ("1", 6, "1000000"),
    ("0.000001", 6, "1"),
    ("0001.5", 2, "150"),
    ("7", 0, "7"),
    ("1.000000000000000001", 18, "1000000000000000001"),
])
def test_decimal_to_atomic(amount, decimals, expected):
    assert decimal_to_atomic(amount, decimals) == expected


def test_decimal_to_atomic_has_no_leading_zeros():
    assert decimal_to_atomic("0.05", 6) == "50000"


@pytest.mark.parametrize("amount", ["0", "0.0", "0.000000", "000"])
def test_zero_is_rejected(amount):
    with pytest.raises(AmountNotPositive):
        decimal_to_atomic(amount, 6)


def test_precision_beyond_token_decimals_is_rejected():
    with pytest.raises(PrecisionExceeded):
        decimal_to_atomic("1.0000001", 6)


@pytest.mark.parametrize("amount", ["", "abc", "-1", "1.", ".5", "1,5", "1e6", " ", "1.2.3"])
def test_malformed_amounts_are_rejected(amount):
    with pytest.raises(InvalidAmountFormat):
        decimal_to_atomic(amount, 6)


@pytest.mark.parametrize("amount", ["２.5", "٢", "1.５", "२"])
def test_non_ascii_digits_are_rejected(amount):
    with pytest.raises(InvalidAmountFormat):
        decimal_to_atomic(amount, 6)


def test_non_ascii_atomic_amount_is_rejected():
    with pytest.raises(InvalidAmountFormat):
        normalize_atomic_amount("２500000", 6, "atomic")


def test_negative_decimals_are_rejected():
    with pytest.raises(InvalidAmountFormat):
        decimal_to_atomic("1", -1)


def test_amount_errors_carry_kind():
    with pytest.raises(AmountError) as exc_info:
        decimal_to_atomic("1.0000001", 6)
    assert exc_info.value.kind == PaymentErrorKind.PRECISION_EXCEEDED


# =============================================================================
# ATOMIC -> DECIMAL
# =============================================================================

@pytest.mark.parametrize("atomic,decimals,expected", [
    ("2500000", 6, "2.5"),
    ("1", 6, "0.000001"),
    ("1000000", 6, "1"),
    ("0", 6, "0"),
    ("42", 0, "42"),
])
def test_atomic_to_decimal(atomic, decimals, expected):
    assert atomic_to_decimal(atomic, decimals) == expected


@pytest.mark.parametrize("amount,decimals,expected", [
    ("2.5", 6, "2.5"),
    ("2.50", 6, "2.5"),
    ("0.000001", 6, "0.000001"),
    ("123456.789", 9, "123456.789"),
    ("0010.100", 3, "10.1"),
    ("5", 0, "5"),
    ("1.10", 18, "1.1"),
    ("1.000000000000000001", 18, "1.000000000000000001"),
])
def test_display_round_trip(amount, decimals, expected):
    assert atomic_to_decimal(decimal_to_atomic(amount, decimals), decimals) == expected


# =============================================================================
# NORMALIZATION OF STORED AMOUNTS
# =============================================================================

def test_sanitize_atomic_string():
    assert sanitize_atomic_string("00123") == "123"
    assert sanitize_atomic_string("000") is None
    assert sanitize_atomic_string("") is None


def test_normalize_explicit_atomic_amount():
    assert normalize_atomic_amount("0002500000", 6, "atomic") == "2500000"


def test_normalize_explicit_atomic_rejects_decimal_point():
    with pytest.raises(InvalidAmountFormat):
        normalize_atomic_amount("2.5", 6, "atomic")


def test_normalize_explicit_atomic_rejects_zero():
    with pytest.raises(AmountNotPositive):
        normalize_atomic_amount("0", 6, "atomic")


def test_normalize_decimal_amount():
    assert normalize_atomic_amount("2.50", 6, "decimal") == "2500000"


def test_bare_integer_without_format_is_atomic():
    assert normalize_atomic_amount("2500000", 6) == "2500000"


def test_decimal_without_format_is_converted():
    assert normalize_atomic_amount("2.5", 6) == "2500000"


def test_empty_amount_is_rejected():
    with pytest.raises(InvalidAmountFormat):
        normalize_atomic_amount("", 6)
