"""
Open bill (tab): all non-terminal orders of one customer at one venue.

The tab is always computed from the current orders, never stored, so it is
recomputed whenever one of its orders changes.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional

from django.db import transaction
from django.utils import timezone

from . import lifecycle, services
from .constants import near_limit_ratio
from .models import FulfillmentType, Order, Venue, WaiterCall, WaiterCallType
from .money import Money

logger = logging.getLogger(__name__)


@dataclass
class OpenBill:
    customer_id: int
    venue_id: int
    currency: str
    orders: List[Order] = field(default_factory=list)
    grand_total: Optional[Money] = None
    elapsed: timedelta = timedelta(0)
    status: Optional[str] = None
    spending_limit: Optional[Money] = None
    usage_ratio: Optional[Decimal] = None
    near_limit: bool = False
    over_limit: bool = False
    split_count: Optional[int] = None
    per_head: Optional[Money] = None

    @property
    def elapsed_minutes(self):
        return int(self.elapsed.total_seconds() // 60)

    @property
    def order_ids(self):
        return [o.pk for o in self.orders]

    def request_bill(self):
        """Request the bill for every order of the tab; pages floor staff for dine-in tabs."""
        with transaction.atomic():
            updated = services.request_bill(self.order_ids)
            tables = sorted({
                o.table_number for o in updated
                if o.fulfillment_type == FulfillmentType.DINE_IN and o.table_number
            })
            for table in tables:
                WaiterCall.objects.create(
                    venue_id=self.venue_id,
                    customer_id=self.customer_id,
                    table_number=table,
                    call_type=WaiterCallType.BILL,
                    message=f'Bill requested ({self.grand_total})',
                )
        self.orders = updated
        self.status = lifecycle.least_advanced([o.status for o in updated])
        logger.info('Tab of customer %s at venue %s: bill requested', self.customer_id, self.venue_id)
        return updated

    def settle_payment(self, method):
        settled = services.settle_payment(self.order_ids, method)
        self.orders = settled
        self.status = lifecycle.least_advanced([o.status for o in settled])
        return settled


def _build(customer_id, venue, orders, split_count=None, now=None):
    now = now or timezone.now()
    currency = orders[0].currency if orders else venue.currency
    grand_total = Money.sum((o.money(o.total) for o in orders), currency)
    earliest = min(o.created_at for o in orders)
    bill = OpenBill(
        customer_id=customer_id,
        venue_id=venue.pk,
        currency=currency,
        orders=orders,
        grand_total=grand_total,
        elapsed=max(now - earliest, timedelta(0)),
        status=lifecycle.least_advanced([o.status for o in orders]),
    )
    if venue.spending_limit is not None and venue.spending_limit > 0:
        limit = Money(venue.spending_limit, currency)
        ratio = grand_total.ratio_to(limit)
        bill.spending_limit = limit
        bill.usage_ratio = ratio
        bill.near_limit = ratio >= near_limit_ratio()
        bill.over_limit = ratio >= Decimal('1')
    if split_count is not None and int(split_count) > 1:
        bill.split_count = int(split_count)
        bill.per_head = grand_total.split_ceil(int(split_count))
    return bill


def _open_orders(**filters):
    return list(
        Order.objects.filter(**filters)
        .exclude(status__in=lifecycle.CLOSED_STATUSES)
        .select_related('venue')
        .prefetch_related('items')
        .order_by('created_at', 'id')
    )


def get_open_bill(customer_id, venue_id, split_count=None):
    """The customer's open tab at the venue, or None when nothing is open."""
    orders = _open_orders(customer_id=customer_id, venue_id=venue_id)
    if not orders:
        return None
    return _build(customer_id, orders[0].venue, orders, split_count=split_count)


def list_open_bills(venue_id):
    """Every open tab at the venue, longest-running first."""
    venue = Venue.objects.get(pk=venue_id)
    by_customer = {}
    for o in _open_orders(venue_id=venue_id):
        by_customer.setdefault(o.customer_id, []).append(o)
    now = timezone.now()
    bills = [_build(cid, venue, orders, now=now) for cid, orders in by_customer.items()]
    bills.sort(key=lambda b: b.elapsed, reverse=True)
    return bills
