from decimal import Decimal

import pytest

from ordering.exceptions import CurrencyMismatch
from ordering.money import Money, clamp_quantity, minor_unit_exponent


def test_add_keeps_exact_decimal():
    total = Money.zero('TRY')
    for _ in range(10):
        total = total + Money(0.1, 'TRY')
    assert total.amount == Decimal('1.0')


def test_add_rejects_other_currency():
    with pytest.raises(CurrencyMismatch):
        Money('1', 'TRY').add(Money('1', 'USD'))


def test_currency_code_normalized():
    assert Money('1', ' try').currency == 'TRY'


def test_percentage_rounds_half_up():
    assert Money('0.50', 'TRY').percentage(5).amount == Decimal('0.03')
    assert Money('200', 'TRY').percentage(8).amount == Decimal('16.00')


def test_percentage_respects_minor_units():
    assert Money('1005', 'JPY').percentage(10).amount == Decimal('101')
    assert Money('1.000', 'KWD').percentage(12.5).amount == Decimal('0.125')
    assert minor_unit_exponent('usd') == 2


def test_multiply_and_clamp():
    assert Money('2.50', 'TRY').multiply(3).amount == Decimal('7.50')
    assert Money('-4', 'TRY').clamp_non_negative() == Money.zero('TRY')
    assert not Money('-0.01', 'TRY').is_non_negative()


@pytest.mark.parametrize('total,parts', [
    ('246', 3),
    ('100', 3),
    ('999.99', 7),
    ('10', 1),
])
def test_split_ceil_never_under_collects(total, parts):
    amount = Money(total, 'TRY')
    share = amount.split_ceil(parts)
    assert share.multiply(parts) >= amount
    assert share.multiply(parts - 1) < amount


def test_split_ceil_rejects_zero_parts():
    with pytest.raises(ValueError):
        Money('10', 'TRY').split_ceil(0)


def test_clamp_quantity(settings):
    settings.VENUETAB = {'MAX_ITEM_QTY': 20}
    assert clamp_quantity(0) == 1
    assert clamp_quantity(7) == 7
    assert clamp_quantity(500) == 20
    assert clamp_quantity(500, upper=99) == 99
