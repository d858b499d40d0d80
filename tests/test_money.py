from decimal import Decimal

import pytest

from penny.errors import ValidationError
from penny.money import format_amount, parse_amount


@pytest.mark.parametrize("raw, expected", [
    ("1,234.56", Decimal("1234.56")),
    ('"$500.00"', Decimal("500.00")),
    ("-12.345", Decimal("-12.35")),
    ("0.005", Decimal("0.01")),
    (10, Decimal("10.00")),
    (0.1, Decimal("0.10")),
    (Decimal("3.14159"), Decimal("3.14")),
])
def test_parse_amount(raw, expected):
    assert parse_amount(raw) == expected


@pytest.mark.parametrize("raw", ["abc", "", "NaN", "Infinity"])
def test_parse_amount_rejects_garbage(raw):
    with pytest.raises(ValidationError):
        parse_amount(raw)


def test_format_amount():
    assert format_amount(Decimal("1234.5")) == "$1,234.50"
    assert format_amount(Decimal("-3"), symbol="€") == "€-3.00"
