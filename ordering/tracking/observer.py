"""
Client-side reconciliation of order change events.

OrderObserver keeps the latest snapshot per order. It applies an event only when
its version is strictly greater than the last applied one, so duplicated or
reordered deliveries never make an order regress. When a version gap shows that
events were missed, or after a subscription timeout, it re-reads the order
through the pull path (same snapshot shape as the events).
"""
import logging

from ..order_notify import OrderChangeEvent

logger = logging.getLogger(__name__)


class OrderObserver:
    def __init__(self, fetch=None):
        """fetch(order_id) -> snapshot dict (order_to_dict shape) or None when gone."""
        self.fetch = fetch
        self.orders = {}
        self.dropped = 0
        self.resyncs = 0

    def version_of(self, order_id):
        snapshot = self.orders.get(order_id)
        return snapshot['version'] if snapshot else 0

    def load(self, snapshot):
        """Merge a pulled snapshot; older than what we hold is ignored."""
        if snapshot is None:
            return False
        if snapshot['version'] <= self.version_of(snapshot['id']):
            return False
        self.orders[snapshot['id']] = snapshot
        return True

    def apply(self, event):
        """Merge one change event. Returns True if the local view changed."""
        if isinstance(event, dict):
            event = OrderChangeEvent.from_message(event) if 'event' in event else OrderChangeEvent(**event)
        last = self.version_of(event.order_id)
        if event.version <= last:
            self.dropped += 1
            logger.debug('Dropped %s v%s (have v%s)', event.order_number, event.version, last)
            return False
        if last and event.version > last + 1 and self.fetch is not None:
            logger.info('Gap on %s: v%s -> v%s, resyncing', event.order_number, last, event.version)
            if self.resync(event.order_id):
                return True
        if event.order:
            self.orders[event.order_id] = event.order
        else:
            snapshot = dict(self.orders.get(event.order_id) or {'id': event.order_id})
            snapshot.update(version=event.version, status=event.status, updated_at=event.updated_at)
            self.orders[event.order_id] = snapshot
        return True

    def resync(self, order_id=None):
        """Re-fetch one order (or every known order) through the pull path."""
        if self.fetch is None:
            return False
        changed = False
        ids = [order_id] if order_id is not None else list(self.orders)
        for oid in ids:
            self.resyncs += 1
            changed = self.load(self.fetch(oid)) or changed
        return changed

    def status_of(self, order_id):
        snapshot = self.orders.get(order_id)
        return snapshot['status'] if snapshot else None

    def snapshot(self, order_id):
        return self.orders.get(order_id)
