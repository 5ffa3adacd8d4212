"""Fixed-point price conversion."""

from decimal import Decimal

import pytest

from eth_oracle_mock.price import format_price, parse_price, validate_decimals


def test_format_price():
    assert format_price(200050000000, 8) == "2000.50000000"
    assert format_price(0, 8) == "0.00000000"
    assert format_price(1, 18) == "0.000000000000000001"


def test_format_negative_price():
    assert format_price(-150000000, 8) == "-1.50000000"


def test_parse_price():
    assert parse_price("2000.50", 8) == 200050000000
    assert parse_price("2000", 8) == 200000000000
    assert parse_price(".5", 8) == 50000000
    assert parse_price("1.1", 18) == 1_100000000000000000
    assert parse_price(Decimal("3.25"), 8) == 325000000


def test_parse_decimal_in_exponent_form():
    assert parse_price(Decimal("0.00000001"), 8) == 1
    assert parse_price(Decimal("1E-8"), 8) == 1
    assert parse_price(Decimal("2E+3"), 8) == 2000_00000000
    assert parse_price(Decimal("-1.5E+1"), 18) == -15_000000000000000000


def test_parse_price_truncates_extra_digits():
    assert parse_price("1.123456789", 8) == 112345678


def test_parse_format_round_trip():
    assert parse_price(format_price(123456789012, 8), 8) == 123456789012


def test_parse_garbage():
    with pytest.raises(ValueError):
        parse_price("12,5", 8)


def test_validate_decimals():
    assert validate_decimals(8) == 8
    assert validate_decimals(18) == 18
    with pytest.raises(ValueError, match="Unsupported feed decimals: 6"):
        validate_decimals(6)
