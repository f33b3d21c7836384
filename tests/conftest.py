from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.authtoken.models import Token

from ordering import order_notify, services
from ordering.models import Customer, FulfillmentType, ItemStatus, OrderStatus, Venue


class RecordingPublisher:
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)
        return True


@pytest.fixture
def published(monkeypatch):
    """Capture change events instead of sending them to the channel layer."""
    recorder = RecordingPublisher()
    monkeypatch.setattr(order_notify, 'publisher', recorder)
    return recorder.events


@pytest.fixture
def venue(db):
    return Venue.objects.create(
        slug='harbour-cafe',
        name='Harbour Cafe',
        currency='TRY',
        tax_percent=Decimal('8'),
        delivery_base_fee=Decimal('10'),
        minimum_order_amount=Decimal('100'),
    )


@pytest.fixture
def customer(db):
    return Customer.objects.create(name='Deniz', phone='5550001')


@pytest.fixture
def other_customer(db):
    return Customer.objects.create(name='Ece', phone='5550002')


@pytest.fixture
def staff_token(db):
    user = get_user_model().objects.create_user(username='kitchen', password='x', is_staff=True)
    return Token.objects.create(user=user).key


@pytest.fixture
def guest_token(db):
    user = get_user_model().objects.create_user(username='guest', password='x')
    return Token.objects.create(user=user).key


def line(name='Burger', price='100', qty=1, key='', options=None):
    return {
        'product_name': name,
        'unit_price': price,
        'quantity': qty,
        'item_key': key,
        'options': options or [],
    }


@pytest.fixture
def make_order(venue, customer):
    """Create an order; takeaway unless told otherwise."""
    def _make(items=None, fulfillment_type=FulfillmentType.TAKEAWAY, **kwargs):
        if fulfillment_type == FulfillmentType.TAKEAWAY:
            kwargs.setdefault('customer_contact', '5550001')
        elif fulfillment_type == FulfillmentType.DINE_IN:
            kwargs.setdefault('table_number', '5')
        elif fulfillment_type == FulfillmentType.DELIVERY:
            kwargs.setdefault('delivery_address', 'Kordon 12, Izmir')
        return services.create_order(
            kwargs.pop('venue', venue),
            kwargs.pop('customer', customer),
            items if items is not None else [line(price='100', qty=2, key='burger')],
            fulfillment_type,
            **kwargs,
        )
    return _make


def serve(order):
    """Walk an order (and its items) through the kitchen to served/delivered."""
    for item in order.items.all():
        if item.status == ItemStatus.PENDING:
            services.advance_item_status(order.pk, item.item_key, ItemStatus.PREPARING)
    for target in (OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY):
        services.advance_order_status(order.pk, target)
    final = OrderStatus.DELIVERED if order.fulfillment_type == FulfillmentType.DELIVERY else OrderStatus.SERVED
    return services.advance_order_status(order.pk, final)
