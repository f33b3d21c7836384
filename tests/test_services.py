import threading
from contextlib import nullcontext
from decimal import Decimal

import pytest
from django.db import connection, connections

from conftest import line, serve
from ordering import services
from ordering.constants import ALLOWED_CURRENCY_CODES
from ordering.exceptions import (
    ConcurrentModification,
    EmptyCart,
    InvalidTransition,
    ItemNotFound,
    MinimumOrderNotMet,
    MissingFulfillmentDetails,
    OrderClosed,
    PartialSettlementNotSupported,
    TableOccupied,
    ValidationError,
)
from ordering.models import (
    FulfillmentType,
    ItemStatus,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)

pytestmark = pytest.mark.django_db


def assert_pricing_reconciles(order):
    expected = (
        order.subtotal + order.tax + order.service_charge + order.tip
        + order.delivery_fee - order.discount
    )
    assert order.total == max(expected, Decimal('0'))


class TestCreateOrder:
    def test_pending_and_priced(self, make_order):
        order = make_order()
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.UNPAID
        assert order.subtotal == Decimal('200')
        assert order.tax == Decimal('16')
        assert order.total == Decimal('216')
        assert order.currency == 'TRY'
        assert order.version == 1
        assert order.order_number.startswith('ORD-')
        assert order.estimated_minutes == 20
        assert [i.item_key for i in order.items.all()] == ['burger']

    def test_empty_cart(self, make_order):
        with pytest.raises(EmptyCart):
            make_order(items=[])
        # quantity 0 lines are dropped, leaving nothing
        with pytest.raises(EmptyCart):
            make_order(items=[line(qty=0)])
        assert Order.objects.count() == 0

    def test_quantity_clamped(self, make_order, settings):
        settings.VENUETAB = {'MAX_ITEM_QTY': 10}
        order = make_order(items=[line(price='1', qty=250)])
        assert order.items.get().quantity == 10

    def test_missing_fulfillment_details(self, make_order):
        with pytest.raises(MissingFulfillmentDetails):
            make_order(fulfillment_type=FulfillmentType.DINE_IN, table_number='')
        with pytest.raises(MissingFulfillmentDetails):
            make_order(fulfillment_type=FulfillmentType.DELIVERY, delivery_address=None)
        with pytest.raises(MissingFulfillmentDetails):
            make_order(fulfillment_type=FulfillmentType.TAKEAWAY, customer_contact='  ')

    def test_delivery_minimum_order(self, make_order):
        with pytest.raises(MinimumOrderNotMet):
            make_order(items=[line(price='80')], fulfillment_type=FulfillmentType.DELIVERY)
        assert Order.objects.count() == 0

    def test_delivery_fee_added(self, make_order):
        order = make_order(items=[line(price='120')], fulfillment_type=FulfillmentType.DELIVERY)
        assert order.delivery_fee == Decimal('10')
        assert order.total == Decimal('139.60')
        assert order.delivery_address == 'Kordon 12, Izmir'
        assert order.table_number is None

    def test_table_lock_lifecycle(self, make_order):
        first = make_order(fulfillment_type=FulfillmentType.DINE_IN, table_number='5')
        services.advance_item_status(first.pk, 'burger', ItemStatus.PREPARING)
        services.advance_order_status(first.pk, OrderStatus.CONFIRMED)
        services.advance_order_status(first.pk, OrderStatus.PREPARING)
        with pytest.raises(TableOccupied):
            make_order(fulfillment_type=FulfillmentType.DINE_IN, table_number='5')
        services.cancel_order(first.pk, 'guest left')
        second = make_order(fulfillment_type=FulfillmentType.DINE_IN, table_number='5')
        assert second.status == OrderStatus.PENDING

    def test_idempotent_replay(self, make_order):
        a = make_order(idempotency_key='checkout-1')
        b = make_order(idempotency_key='checkout-1')
        assert a.pk == b.pk
        assert Order.objects.count() == 1
        c = make_order(idempotency_key='checkout-2')
        assert c.pk != a.pk

    def test_item_keys_unique(self, make_order):
        order = make_order(items=[line(key='x'), line(key='x'), line()])
        keys = [i.item_key for i in order.items.all()]
        assert len(set(keys)) == 3

    def test_negative_unit_price_rejected(self, make_order):
        with pytest.raises(ValidationError) as exc:
            make_order(items=[line(price='-5')])
        assert exc.value.context['field'] == 'unit_price'
        assert not Order.objects.exists()

    def test_three_decimal_currency_rejected(self, make_order, venue):
        venue.currency = 'KWD'
        venue.save()
        with pytest.raises(ValidationError) as exc:
            make_order(items=[line(price='1.000')])
        assert exc.value.context['field'] == 'currency'
        assert not Order.objects.exists()

    @pytest.mark.parametrize('currency', sorted(ALLOWED_CURRENCY_CODES))
    def test_stored_pricing_reconciles(self, make_order, venue, currency):
        venue.currency = currency
        venue.tax_percent = Decimal('0.6')
        venue.save()
        order = make_order(items=[line(price='1.00')], tip_percent='0.6', split_count=3)
        stored = Order.objects.get(pk=order.pk)
        assert stored.currency == currency
        assert stored.total == order.total
        assert stored.per_head == order.per_head
        assert_pricing_reconciles(stored)
        assert stored.per_head * 3 >= stored.total

    def test_creation_event(self, make_order, published, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            order = make_order()
        assert len(published) == 1
        event = published[0]
        assert event.kind == 'created'
        assert event.version == 1
        assert event.order['order_number'] == order.order_number


class TestStatus:
    def test_skip_rejected(self, make_order):
        order = make_order()
        with pytest.raises(InvalidTransition):
            services.advance_order_status(order.pk, OrderStatus.READY)
        order.refresh_from_db()
        assert order.status == OrderStatus.PENDING
        assert order.version == 1

    def test_version_and_timestamp_advance(self, make_order):
        order = make_order()
        before = order.updated_at
        updated = services.advance_order_status(order.pk, OrderStatus.CONFIRMED)
        assert updated.version == 2
        assert updated.updated_at >= before
        # instance passed in is refreshed and used as the compare-and-set base
        services.advance_order_status(updated, OrderStatus.PREPARING)
        assert updated.status == OrderStatus.PREPARING
        assert updated.version == 3

    def test_stale_order_write(self, make_order):
        order = make_order()
        services.advance_order_status(order.pk, OrderStatus.CONFIRMED, expected_version=1)
        with pytest.raises(ConcurrentModification):
            services.advance_order_status(order.pk, OrderStatus.PREPARING, expected_version=1)

    def test_served_needs_started_items(self, make_order):
        order = make_order()
        services.advance_order_status(order.pk, OrderStatus.CONFIRMED)
        services.advance_order_status(order.pk, OrderStatus.PREPARING)
        services.advance_order_status(order.pk, OrderStatus.READY)
        with pytest.raises(InvalidTransition):
            services.advance_order_status(order.pk, OrderStatus.SERVED)

    def test_cancel_freezes_pricing(self, make_order):
        order = make_order()
        cancelled = services.cancel_order(order.pk, 'changed mind')
        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.cancel_reason == 'changed mind'
        assert cancelled.total == Decimal('216')
        with pytest.raises(OrderClosed):
            services.advance_order_status(order.pk, OrderStatus.CONFIRMED)
        with pytest.raises(OrderClosed):
            services.update_pricing_inputs(order.pk, tip_percent=10)


class TestItemStatus:
    def test_different_items_both_succeed(self, make_order, published, django_capture_on_commit_callbacks):
        order = make_order(items=[line(key='a'), line(key='b')])
        with django_capture_on_commit_callbacks(execute=True):
            services.advance_item_status(order.pk, 'a', ItemStatus.PREPARING, expected_version=1)
            services.advance_item_status(order.pk, 'b', ItemStatus.PREPARING, expected_version=1)
        fresh = services.get_order(order.pk)
        assert {i.item_key: i.status for i in fresh.items.all()} == {'a': 'preparing', 'b': 'preparing'}
        assert fresh.version == 3
        assert [e.version for e in published] == [2, 3]
        assert [e.item_key for e in published] == ['a', 'b']

    def test_same_item_from_same_snapshot(self, make_order):
        order = make_order(items=[line(key='a')])
        services.advance_item_status(order.pk, 'a', ItemStatus.PREPARING, expected_version=1)
        with pytest.raises(ConcurrentModification):
            services.advance_item_status(order.pk, 'a', ItemStatus.READY, expected_version=1)
        item = services.get_order(order.pk).items.get(item_key='a')
        assert item.status == ItemStatus.PREPARING
        assert item.version == 2

    def test_same_item_from_two_reads(self, make_order):
        order = make_order(items=[line(key='a')])
        first = services.get_order(order.pk)
        second = services.get_order(order.pk)
        services.advance_item_status(first, 'a', ItemStatus.PREPARING)
        with pytest.raises(ConcurrentModification):
            services.advance_item_status(second, 'a', ItemStatus.PREPARING)
        assert services.get_order(order.pk).version == 2

    def test_different_items_from_two_reads(self, make_order):
        order = make_order(items=[line(key='a'), line(key='b')])
        first = services.get_order(order.pk)
        second = services.get_order(order.pk)
        services.advance_item_status(first, 'a', ItemStatus.PREPARING)
        services.advance_item_status(second, 'b', ItemStatus.PREPARING)
        assert services.get_order(order.pk).version == 3

    def test_retry_on_conflict_rereads(self, make_order):
        order = make_order(items=[line(key='a')])
        calls = []

        def flaky(pk):
            calls.append(pk)
            if len(calls) == 1:
                raise ConcurrentModification()
            return services.advance_item_status(pk, 'a', ItemStatus.PREPARING)

        result = services.retry_on_conflict(flaky, order.pk)
        assert len(calls) == 2
        assert result.items.get().status == ItemStatus.PREPARING

    def test_retry_gives_up(self, make_order):
        def always_conflicts():
            raise ConcurrentModification()

        with pytest.raises(ConcurrentModification):
            services.retry_on_conflict(always_conflicts, attempts=2)

    def test_unknown_item(self, make_order):
        order = make_order()
        with pytest.raises(ItemNotFound):
            services.advance_item_status(order.pk, 'nope', ItemStatus.PREPARING)

    def test_item_skip_rejected(self, make_order):
        order = make_order()
        with pytest.raises(InvalidTransition):
            services.advance_item_status(order.pk, 'burger', ItemStatus.READY)


def race_items(order_id, item_keys):
    """
    One thread per key: each reads the order, waits for the others to read,
    then moves its item to preparing from that read. Returns 'ok' or
    'conflict' per thread.
    """
    barrier = threading.Barrier(len(item_keys))
    # SQLite has no row locks; serialize the writes the way select_for_update would.
    write_lock = nullcontext() if connection.features.has_select_for_update else threading.Lock()
    results = [None] * len(item_keys)

    def worker(idx, key):
        try:
            snapshot = services.get_order(order_id)
            barrier.wait(timeout=10)
            with write_lock:
                services.advance_item_status(snapshot, key, ItemStatus.PREPARING)
            results[idx] = 'ok'
        except ConcurrentModification:
            results[idx] = 'conflict'
        except Exception as e:
            results[idx] = repr(e)
        finally:
            connections.close_all()

    threads = [threading.Thread(target=worker, args=(idx, key)) for idx, key in enumerate(item_keys)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results


@pytest.mark.django_db(transaction=True)
class TestConcurrentCallers:
    def test_different_items_both_succeed(self, make_order, published):
        order = make_order(items=[line(key='a'), line(key='b')])
        assert race_items(order.pk, ['a', 'b']) == ['ok', 'ok']
        fresh = services.get_order(order.pk)
        assert fresh.version == 3
        assert {i.status for i in fresh.items.all()} == {ItemStatus.PREPARING}
        assert sorted(e.version for e in published if e.kind == 'item_status') == [2, 3]

    def test_same_item_one_winner(self, make_order, published):
        order = make_order(items=[line(key='a')])
        assert sorted(race_items(order.pk, ['a', 'a'])) == ['conflict', 'ok']
        fresh = services.get_order(order.pk)
        assert fresh.version == 2
        assert fresh.items.get().version == 2


class TestEdits:
    def test_add_item_reprices(self, make_order):
        order = make_order()
        updated = services.add_item(order.pk, line(name='Fries', price='25', key='fries'))
        assert updated.subtotal == Decimal('225')
        assert updated.tax == Decimal('18')
        assert updated.total == Decimal('243')
        assert updated.version == 2
        assert_pricing_reconciles(updated)

    def test_quantity_zero_removes(self, make_order):
        order = make_order(items=[line(key='a', price='100'), line(key='b', price='50')])
        updated = services.update_item_quantity(order.pk, 'b', 0)
        assert [i.item_key for i in updated.items.all()] == ['a']
        assert updated.subtotal == Decimal('100')

    def test_quantity_update_and_clamp(self, make_order, settings):
        settings.VENUETAB = {'MAX_ITEM_QTY': 5}
        order = make_order(items=[line(key='a', price='10')])
        updated = services.update_item_quantity(order.pk, 'a', 9)
        assert updated.items.get().quantity == 5
        assert updated.items.get().line_total == Decimal('50')
        assert updated.subtotal == Decimal('50')

    def test_remove_last_item(self, make_order):
        order = make_order()
        with pytest.raises(EmptyCart):
            services.remove_item(order.pk, 'burger')
        with pytest.raises(EmptyCart):
            services.update_item_quantity(order.pk, 'burger', 0)
        assert services.get_order(order.pk).items.count() == 1

    def test_minimum_order_rechecked_while_pending(self, make_order):
        order = make_order(
            items=[line(key='a', price='60'), line(key='b', price='60')],
            fulfillment_type=FulfillmentType.DELIVERY,
        )
        with pytest.raises(MinimumOrderNotMet):
            services.remove_item(order.pk, 'b')
        fresh = services.get_order(order.pk)
        assert fresh.items.count() == 2
        assert fresh.version == 1

    def test_items_frozen_after_bill_requested(self, make_order):
        order = serve(make_order())
        services.request_bill([order.pk])
        with pytest.raises(InvalidTransition):
            services.add_item(order.pk, line(key='late'))

    def test_tip_split_recompute(self, make_order):
        order = make_order()
        updated = services.update_pricing_inputs(order.pk, tip_percent=15)
        assert updated.tip == Decimal('30')
        assert updated.total == Decimal('246')
        updated = services.update_pricing_inputs(order.pk, split_count=3)
        assert updated.per_head == Decimal('82')
        assert updated.tip == Decimal('30')
        updated = services.update_pricing_inputs(order.pk, tip_amount='5')
        assert updated.tip == Decimal('5')
        assert updated.total == Decimal('221')
        assert updated.version == 4
        assert_pricing_reconciles(updated)

    def test_stale_edit(self, make_order):
        order = make_order()
        services.update_pricing_inputs(order.pk, tip_percent=10)
        with pytest.raises(ConcurrentModification):
            services.update_pricing_inputs(order.pk, tip_percent=20, expected_version=1)


class TestSettlement:
    def test_settle_with_preparing_order_changes_nothing(self, make_order):
        served = serve(make_order())
        preparing = make_order(items=[line(key='soup', price='40')])
        services.advance_order_status(preparing.pk, OrderStatus.CONFIRMED)
        services.advance_order_status(preparing.pk, OrderStatus.PREPARING)
        with pytest.raises(InvalidTransition):
            services.settle_payment([served.pk, preparing.pk], PaymentMethod.CARD)
        for pk in (served.pk, preparing.pk):
            o = Order.objects.get(pk=pk)
            assert o.payment_status == PaymentStatus.UNPAID
        assert Order.objects.get(pk=served.pk).status == OrderStatus.SERVED

    def test_settle_whole_tab(self, make_order):
        a = serve(make_order())
        b = serve(make_order(items=[line(key='soup', price='40')]))
        services.request_bill([a.pk])
        settled = services.settle_payment([a.pk, b.pk], PaymentMethod.CASH)
        assert {o.status for o in settled} == {OrderStatus.PAID}
        assert {o.payment_status for o in settled} == {PaymentStatus.PAID}
        assert {o.payment_method for o in settled} == {PaymentMethod.CASH}
        with pytest.raises(OrderClosed):
            services.update_pricing_inputs(a.pk, tip_percent=5)
        completed = services.advance_order_status(a.pk, OrderStatus.COMPLETED)
        assert completed.status == OrderStatus.COMPLETED

    def test_partial_tab_rejected(self, make_order):
        a = serve(make_order())
        make_order(items=[line(key='soup', price='40')])
        with pytest.raises(PartialSettlementNotSupported):
            services.settle_payment([a.pk], PaymentMethod.CASH)
        assert Order.objects.get(pk=a.pk).payment_status == PaymentStatus.UNPAID

    def test_orders_of_two_customers_rejected(self, make_order, other_customer):
        a = serve(make_order())
        b = serve(make_order(customer=other_customer))
        with pytest.raises(PartialSettlementNotSupported):
            services.settle_payment([a.pk, b.pk], PaymentMethod.CASH)

    def test_request_bill_validates_whole_set(self, make_order):
        served = serve(make_order())
        pending = make_order(items=[line(key='soup', price='40')])
        with pytest.raises(InvalidTransition):
            services.request_bill([served.pk, pending.pk])
        assert Order.objects.get(pk=served.pk).status == OrderStatus.SERVED


class TestReads:
    def test_get_order_idempotent(self, make_order):
        from ordering.utils import order_to_dict

        order = make_order()
        assert order_to_dict(services.get_order(order.pk)) == order_to_dict(services.get_order(order.pk))

    def test_list_orders(self, make_order, customer):
        a = make_order()
        b = make_order(items=[line(key='soup', price='40')])
        services.cancel_order(b.pk, 'dup')
        assert [o.pk for o in services.list_orders(customer.pk)] == [b.pk, a.pk]
        assert [o.pk for o in services.list_orders(customer.pk, active_only=True)] == [a.pk]
