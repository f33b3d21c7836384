"""
Publish order changes to subscribers over the Channels layer.

Every accepted mutation produces one OrderChangeEvent carrying the order's new
version and a full snapshot (same shape as the order detail endpoint). Events
are built inside the mutating transaction and sent after commit, to the groups
order.<id>, customer.<id> and venue.<id>. Delivery is at-least-once; observers
order events per order by version (see tracking.observer).
"""
import logging
from dataclasses import asdict, dataclass, field
from typing import Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction

logger = logging.getLogger(__name__)

MESSAGE_TYPE = 'order.change'

STATUS_LABELS = {
    'pending': 'Order received',
    'confirmed': 'Order confirmed',
    'preparing': 'Your order is being prepared',
    'ready': 'Your order is ready',
    'served': 'Order served',
    'delivered': 'Order delivered',
    'bill_requested': 'Bill requested',
    'paid': 'Payment received',
    'completed': 'Order completed',
    'cancelled': 'Order cancelled',
}


def order_group(order_id):
    return f'order.{order_id}'


def customer_group(customer_id):
    return f'customer.{customer_id}'


def venue_group(venue_id):
    return f'venue.{venue_id}'


@dataclass(frozen=True)
class OrderChangeEvent:
    order_id: int
    order_number: str
    customer_id: int
    venue_id: int
    version: int
    kind: str
    status: str
    updated_at: str
    item_key: Optional[str] = None
    item_status: Optional[str] = None
    order: dict = field(default_factory=dict)

    @property
    def label(self):
        return STATUS_LABELS.get(self.status, f'Status: {self.status}')

    def groups(self):
        return [
            order_group(self.order_id),
            customer_group(self.customer_id),
            venue_group(self.venue_id),
        ]

    def as_message(self):
        return {'type': MESSAGE_TYPE, 'event': asdict(self)}

    @classmethod
    def from_message(cls, message):
        return cls(**message['event'])


def build_event(order, kind, item=None):
    """Snapshot the (already updated) order into an event."""
    from .utils import order_to_dict

    return OrderChangeEvent(
        order_id=order.pk,
        order_number=order.order_number,
        customer_id=order.customer_id,
        venue_id=order.venue_id,
        version=order.version,
        kind=kind,
        status=order.status,
        updated_at=order.updated_at.isoformat(),
        item_key=item.item_key if item is not None else None,
        item_status=item.status if item is not None else None,
        order=order_to_dict(order),
    )


class ChannelLayerPublisher:
    """Publisher backed by the configured Channels layer."""

    def publish(self, event):
        channel_layer = get_channel_layer()
        if channel_layer is None:
            logger.info('No channel layer configured; dropping %s v%s', event.order_number, event.version)
            return False
        message = event.as_message()
        try:
            for group in event.groups():
                async_to_sync(channel_layer.group_send)(group, message)
        except Exception as e:
            logger.exception('Publishing %s v%s failed: %s', event.order_number, event.version, e)
            return False
        return True


publisher = ChannelLayerPublisher()


def notify_order_update(order, kind, item=None):
    """
    Build the change event now and publish it once the surrounding transaction
    commits. Call after the order row (and item, if any) has been updated and
    refreshed inside the transaction.
    """
    event = build_event(order, kind, item=item)
    transaction.on_commit(lambda: publisher.publish(event))
    return event
