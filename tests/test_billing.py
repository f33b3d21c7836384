from decimal import Decimal
from types import SimpleNamespace

import pytest

from ordering.billing import (
    VenuePolicy,
    calculate_bill,
    estimate_preparation_minutes,
    line_total,
)
from ordering.exceptions import MinimumOrderNotMet
from ordering.money import Money

POLICY = VenuePolicy(
    currency='TRY',
    tax_percent=Decimal('8'),
    delivery_base_fee=Decimal('10'),
    minimum_order_amount=Decimal('100'),
)


def item(price, qty=1, options=()):
    return SimpleNamespace(unit_price=Decimal(price), quantity=qty, options=list(options))


def assert_total_reconciles(bill):
    expected = (
        bill.subtotal.amount + bill.tax.amount + bill.service_charge.amount
        + bill.tip.amount + bill.delivery_fee.amount - bill.discount.amount
    )
    assert bill.total.amount == max(expected, Decimal('0'))


def test_subtotal_tax_total():
    bill = calculate_bill([item('100', 2)], POLICY, 'takeaway')
    assert bill.subtotal == Money('200', 'TRY')
    assert bill.tax == Money('16', 'TRY')
    assert bill.total == Money('216', 'TRY')
    assert bill.per_head is None
    assert_total_reconciles(bill)


def test_tip_and_split():
    bill = calculate_bill([item('100', 2)], POLICY, 'takeaway', tip_percent=15)
    assert bill.tip == Money('30', 'TRY')
    assert bill.total == Money('246', 'TRY')

    split = calculate_bill([item('100', 2)], POLICY, 'takeaway', tip_percent=15, split_count=3)
    assert split.per_head == Money('82', 'TRY')
    assert split.split_surplus == Money('0', 'TRY')


def test_split_reports_surplus():
    bill = calculate_bill([item('100')], POLICY, 'takeaway', split_count=3)
    # 108.00 splits evenly
    assert bill.per_head == Money('36', 'TRY')
    bill = calculate_bill([item('95.50')], POLICY, 'takeaway', split_count=4)
    # total 103.14 -> 25.79 each, 0.02 over
    assert bill.total == Money('103.14', 'TRY')
    assert bill.per_head == Money('25.79', 'TRY')
    assert bill.split_surplus == Money('0.02', 'TRY')


def test_explicit_tip_wins_over_percent():
    bill = calculate_bill([item('100', 2)], POLICY, 'takeaway', tip_percent=15, tip_amount='5')
    assert bill.tip == Money('5', 'TRY')
    assert bill.total == Money('221', 'TRY')


def test_service_charge_and_discount():
    policy = VenuePolicy(currency='TRY', tax_percent=Decimal('8'), service_charge_percent=Decimal('10'))
    bill = calculate_bill([item('50', 2)], policy, 'dine_in', discount='20')
    assert bill.service_charge == Money('10', 'TRY')
    assert bill.discount == Money('20', 'TRY')
    assert bill.total == Money('98', 'TRY')
    assert_total_reconciles(bill)


def test_discount_cannot_make_total_negative():
    bill = calculate_bill([item('10')], POLICY, 'takeaway', discount='500')
    assert bill.total == Money('0', 'TRY')


def test_delivery_fee_only_for_delivery():
    assert calculate_bill([item('150')], POLICY, 'delivery').delivery_fee == Money('10', 'TRY')
    assert calculate_bill([item('150')], POLICY, 'dine_in').delivery_fee == Money('0', 'TRY')


def test_minimum_order_for_delivery():
    with pytest.raises(MinimumOrderNotMet):
        calculate_bill([item('80')], POLICY, 'delivery', enforce_minimum=True)
    # takeaway has no minimum
    calculate_bill([item('80')], POLICY, 'takeaway', enforce_minimum=True)


def test_line_total_includes_modifiers():
    i = item('12.50', 2, options=[
        {'option_name': 'Size', 'choice_name': 'Large', 'price_modifier': '3'},
        {'option_name': 'Extra', 'choice_name': 'Cheese', 'price_modifier': '1.25'},
    ])
    assert line_total(i, 'TRY') == Money('33.50', 'TRY')


def test_breakdown_serializes_strings():
    d = calculate_bill([item('100', 2)], POLICY, 'takeaway', split_count=3).as_dict()
    assert d['total'] == '216.00'
    assert d['per_head'] == '72.00'
    assert d['split_count'] == 3
    assert d['currency'] == 'TRY'


def test_preparation_estimate():
    assert estimate_preparation_minutes([item('1', 1)], 'takeaway') == 15
    assert estimate_preparation_minutes([item('1', 4)], 'dine_in') == 30
    assert estimate_preparation_minutes([item('1', 4)], 'delivery') == 50
