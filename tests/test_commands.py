from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from conftest import serve
from ordering import services
from ordering.models import Order, OrderStatus

pytestmark = pytest.mark.django_db


@pytest.fixture
def paid_order(make_order):
    order = serve(make_order())
    services.settle_payment([order.pk], 'cash')
    Order.objects.filter(pk=order.pk).update(updated_at=timezone.now() - timedelta(hours=2))
    return order


def test_dry_run_changes_nothing(paid_order):
    out = StringIO()
    call_command('close_paid_orders', '--dry-run', stdout=out)
    assert 'Would complete' in out.getvalue()
    assert Order.objects.get(pk=paid_order.pk).status == OrderStatus.PAID


def test_completes_old_paid_orders(paid_order, make_order):
    recent = serve(make_order(items=[{'product_name': 'Tea', 'unit_price': '100', 'item_key': 'tea'}]))
    out = StringIO()
    call_command('close_paid_orders', stdout=out)
    assert Order.objects.get(pk=paid_order.pk).status == OrderStatus.COMPLETED
    assert Order.objects.get(pk=recent.pk).status == OrderStatus.SERVED
    assert 'Completed 1 of 1' in out.getvalue()


def test_minutes_option(paid_order):
    out = StringIO()
    call_command('close_paid_orders', '--minutes', '300', stdout=out)
    assert 'No paid orders to close' in out.getvalue()
    assert Order.objects.get(pk=paid_order.pk).status == OrderStatus.PAID
