from decimal import Decimal

import pytest

from solalertbot.helpers import crossed, humanize, is_solana_address, parse_amount


def test_crossed_is_strict_at_threshold():
    assert not crossed("above", 100, 100)
    assert crossed("above", 100.0001, 100)
    assert not crossed("below", 100, 100)
    assert crossed("below", 99.9999, 100)


def test_crossed_never_fires_without_data():
    assert not crossed("above", None, 1)
    assert not crossed("below", None, 1)
    assert not crossed("above", float("nan"), 1)
    assert not crossed("sideways", 5, 1)


def test_crossed_accepts_decimal_thresholds():
    assert crossed("above", 0.0021, Decimal("0.002"))


@pytest.mark.parametrize("raw,expected", [
    ("2500000", Decimal("2500000")),
    ("250k", Decimal("250000")),
    ("2.5m", Decimal("2500000")),
    ("$1B", Decimal("1000000000")),
    (0.5, Decimal("0.5")),
])
def test_parse_amount(raw, expected):
    assert parse_amount(raw) == expected


def test_parse_amount_rejects_garbage():
    with pytest.raises(ValueError):
        parse_amount("lots")


def test_is_solana_address():
    assert is_solana_address("So11111111111111111111111111111111111111112")
    assert not is_solana_address("0x" + "a" * 40)
    assert not is_solana_address("short")
    assert not is_solana_address("O" * 44)


def test_humanize():
    assert humanize(None) == "—"
    assert humanize(2_500_000) == "2.50M"
