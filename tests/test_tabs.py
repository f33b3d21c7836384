from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from conftest import line, serve
from ordering import services
from ordering.exceptions import InvalidTransition
from ordering.models import FulfillmentType, Order, OrderStatus, PaymentStatus, WaiterCall, WaiterCallType
from ordering.money import Money
from ordering.tabs import get_open_bill, list_open_bills

pytestmark = pytest.mark.django_db


def test_no_open_bill(customer, venue):
    assert get_open_bill(customer.pk, venue.pk) is None


def test_aggregates_non_terminal_orders(make_order, customer, venue):
    a = make_order()
    b = make_order(items=[line(key='soup', price='50')])
    c = make_order(items=[line(key='tea', price='10')])
    services.cancel_order(c.pk, 'mistake')
    services.advance_order_status(a.pk, OrderStatus.CONFIRMED)

    bill = get_open_bill(customer.pk, venue.pk)
    assert bill.order_ids == [a.pk, b.pk]
    # 216 + 54
    assert bill.grand_total == Money('270', 'TRY')
    assert bill.status == OrderStatus.PENDING
    assert bill.spending_limit is None
    assert not bill.near_limit


def test_elapsed_from_earliest_order(make_order, customer, venue):
    a = make_order()
    Order.objects.filter(pk=a.pk).update(created_at=timezone.now() - timedelta(minutes=42))
    make_order(items=[line(key='soup', price='50')])
    bill = get_open_bill(customer.pk, venue.pk)
    assert bill.elapsed_minutes == 42


def test_split_for_tab(make_order, customer, venue):
    make_order()
    make_order(items=[line(key='soup', price='50')])
    bill = get_open_bill(customer.pk, venue.pk, split_count=4)
    assert bill.per_head == Money('67.50', 'TRY')


@pytest.mark.parametrize('limit,near,over', [
    ('1000', False, False),
    ('300', True, False),
    ('270', True, True),
    ('200', True, True),
])
def test_spending_limit_reported(make_order, customer, venue, limit, near, over):
    venue.spending_limit = Decimal(limit)
    venue.save()
    make_order()
    make_order(items=[line(key='soup', price='50')])
    bill = get_open_bill(customer.pk, venue.pk)
    assert bill.near_limit is near
    assert bill.over_limit is over


def test_over_limit_never_blocks(make_order, customer, venue):
    venue.spending_limit = Decimal('100')
    venue.save()
    make_order()
    make_order()
    bill = get_open_bill(customer.pk, venue.pk)
    assert bill.over_limit
    assert len(bill.orders) == 2


def test_request_bill_pages_waiter_for_dine_in(make_order, customer, venue):
    order = serve(make_order(fulfillment_type=FulfillmentType.DINE_IN, table_number='7'))
    bill = get_open_bill(customer.pk, venue.pk)
    bill.request_bill()
    assert bill.status == OrderStatus.BILL_REQUESTED
    assert Order.objects.get(pk=order.pk).status == OrderStatus.BILL_REQUESTED
    call = WaiterCall.objects.get()
    assert call.call_type == WaiterCallType.BILL
    assert call.table_number == '7'


def test_request_bill_with_kitchen_order_fails_cleanly(make_order, customer, venue):
    serve(make_order(fulfillment_type=FulfillmentType.DINE_IN, table_number='7'))
    make_order(items=[line(key='soup', price='50')])
    bill = get_open_bill(customer.pk, venue.pk)
    with pytest.raises(InvalidTransition):
        bill.request_bill()
    assert not WaiterCall.objects.exists()
    assert not Order.objects.filter(status=OrderStatus.BILL_REQUESTED).exists()


def test_settle_tab(make_order, customer, venue):
    serve(make_order())
    serve(make_order(items=[line(key='soup', price='50')]))
    bill = get_open_bill(customer.pk, venue.pk)
    bill.settle_payment('card')
    assert set(Order.objects.values_list('payment_status', flat=True)) == {PaymentStatus.PAID}
    assert get_open_bill(customer.pk, venue.pk) is None


def test_list_open_bills(make_order, customer, other_customer, venue):
    make_order()
    make_order(customer=other_customer, items=[line(key='tea', price='10')])
    bills = list_open_bills(venue.pk)
    assert {b.customer_id for b in bills} == {customer.pk, other_customer.pk}
    totals = {b.customer_id: b.grand_total for b in bills}
    assert totals[other_customer.pk] == Money('10.80', 'TRY')
