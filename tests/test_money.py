from decimal import Decimal

import pytest

from storefront.money import format_amount, parse_amount, round_half_up


@pytest.mark.parametrize("text,expected", [
    ("1000", Decimal("1000")),
    ("1000.0", Decimal("1000")),
    ("1,000.0", Decimal("1000")),
    (" 99.50 ", Decimal("99.5")),
    (1000.0, Decimal("1000")),
])
def test_parse_amount(text, expected):
    assert parse_amount(text) == expected


@pytest.mark.parametrize("text", [None, "", "abc", "NaN", "Infinity", True])
def test_parse_amount_rejects(text):
    assert parse_amount(text) is None


def test_format_amount():
    assert format_amount(Decimal("2760.00")) == "2760"
    assert format_amount(Decimal("1856.5")) == "1856.50"


def test_round_half_up():
    assert round_half_up(Decimal("156.5")) == Decimal("157")
    assert round_half_up(Decimal("156.065")) == Decimal("156")
