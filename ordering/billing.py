"""
Billing calculator.

calculate_bill() is a pure function of (items, venue policy, pricing inputs).
Every caller that needs totals (order creation, item edits, tip/split changes,
the open bill and the printed bill) goes through it, so there is one place
where subtotal/tax/tip/fees/discount/total/per-head are derived.
"""
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable, Optional

from .exceptions import MinimumOrderNotMet
from .money import Money

DELIVERY = 'delivery'


def _dec(value, default=Decimal('0')):
    if value is None or value == '':
        return default
    return Decimal(str(value))


@dataclass(frozen=True)
class VenuePolicy:
    currency: str
    tax_percent: Decimal = Decimal('0')
    service_charge_percent: Optional[Decimal] = None
    delivery_base_fee: Decimal = Decimal('0')
    minimum_order_amount: Decimal = Decimal('0')
    spending_limit: Optional[Decimal] = None

    @classmethod
    def from_venue(cls, venue):
        return cls(
            currency=venue.currency,
            tax_percent=_dec(venue.tax_percent),
            service_charge_percent=_dec(venue.service_charge_percent, None),
            delivery_base_fee=_dec(venue.delivery_base_fee),
            minimum_order_amount=_dec(venue.minimum_order_amount),
            spending_limit=_dec(venue.spending_limit, None),
        )

    def money(self, value):
        return Money(_dec(value), self.currency)


@dataclass(frozen=True)
class BillBreakdown:
    subtotal: Money
    tax: Money
    service_charge: Money
    tip: Money
    delivery_fee: Money
    discount: Money
    total: Money
    split_count: Optional[int] = None
    per_head: Optional[Money] = None

    @property
    def currency(self):
        return self.total.currency

    @property
    def split_surplus(self):
        """Amount collected above total when every payer pays per_head."""
        if self.per_head is None:
            return Money.zero(self.currency)
        return self.per_head.multiply(self.split_count).subtract(self.total)

    @classmethod
    def from_order(cls, order):
        m = order.money
        return cls(
            subtotal=m(order.subtotal),
            tax=m(order.tax),
            service_charge=m(order.service_charge),
            tip=m(order.tip),
            delivery_fee=m(order.delivery_fee),
            discount=m(order.discount),
            total=m(order.total),
            split_count=order.split_count,
            per_head=m(order.per_head) if order.per_head is not None else None,
        )

    def as_fields(self):
        """Column values for Order; used with save(update_fields=...) or queryset.update()."""
        return {
            'subtotal': self.subtotal.amount,
            'tax': self.tax.amount,
            'service_charge': self.service_charge.amount,
            'tip': self.tip.amount,
            'delivery_fee': self.delivery_fee.amount,
            'discount': self.discount.amount,
            'total': self.total.amount,
            'split_count': self.split_count,
            'per_head': self.per_head.amount if self.per_head is not None else None,
        }

    def as_dict(self):
        d = {k: (str(v) if v is not None else None) for k, v in self.as_fields().items()}
        d['split_count'] = self.split_count
        d['split_surplus'] = str(self.split_surplus.amount)
        d['currency'] = self.currency
        return d


def line_total(item, currency) -> Money:
    """(unit_price + sum of option price modifiers) * quantity."""
    unit = Money(_dec(item.unit_price), currency)
    for option in item.options or []:
        unit = unit.add(Money(_dec(option.get('price_modifier')), currency))
    return unit.multiply(int(item.quantity))


def check_minimum_order(subtotal: Money, policy: VenuePolicy, fulfillment_type):
    if fulfillment_type != DELIVERY:
        return
    minimum = policy.money(policy.minimum_order_amount)
    if subtotal < minimum:
        raise MinimumOrderNotMet(
            f'Delivery orders need a subtotal of at least {minimum}',
            subtotal=subtotal,
            minimum=minimum,
        )


def calculate_bill(
    items: Iterable,
    policy: VenuePolicy,
    fulfillment_type,
    tip_percent=None,
    tip_amount=None,
    discount=None,
    split_count=None,
    enforce_minimum=False,
) -> BillBreakdown:
    currency = policy.currency
    subtotal = Money.sum((line_total(i, currency) for i in items), currency)
    if enforce_minimum:
        check_minimum_order(subtotal, policy, fulfillment_type)

    tax = subtotal.percentage(policy.tax_percent)
    if policy.service_charge_percent:
        service_charge = subtotal.percentage(policy.service_charge_percent)
    else:
        service_charge = Money.zero(currency)
    if tip_amount is not None:
        tip = Money(_dec(tip_amount), currency).rounded()
    else:
        tip = subtotal.percentage(_dec(tip_percent))
    if fulfillment_type == DELIVERY:
        delivery_fee = policy.money(policy.delivery_base_fee)
    else:
        delivery_fee = Money.zero(currency)
    discount_money = Money(_dec(discount), currency).rounded()

    total = (
        subtotal.add(tax).add(service_charge).add(tip).add(delivery_fee)
        .subtract(discount_money)
        .clamp_non_negative()
        .rounded()
    )

    per_head = None
    if split_count is not None and int(split_count) > 1:
        per_head = total.split_ceil(int(split_count))

    return BillBreakdown(
        subtotal=subtotal.rounded(),
        tax=tax,
        service_charge=service_charge,
        tip=tip,
        delivery_fee=delivery_fee,
        discount=discount_money,
        total=total,
        split_count=int(split_count) if split_count else None,
        per_head=per_head,
    )


def calculate_for_order(order, items=None, enforce_minimum=False) -> BillBreakdown:
    """Run calculate_bill with the order's venue policy and stored pricing inputs."""
    if items is None:
        items = list(order.items.all())
    policy = order.venue.policy()
    if policy.currency != order.currency:
        policy = replace(policy, currency=order.currency)
    return calculate_bill(
        items,
        policy,
        order.fulfillment_type,
        tip_percent=order.tip_percent,
        tip_amount=order.tip_amount,
        discount=order.discount_amount,
        split_count=order.split_count,
        enforce_minimum=enforce_minimum,
    )


def estimate_preparation_minutes(items: Iterable, fulfillment_type) -> int:
    """15 minutes at least, 5 per unit on top of 10; delivery adds 20."""
    units = sum(int(i.quantity) for i in items)
    minutes = max(15, 10 + units * 5)
    if fulfillment_type == DELIVERY:
        minutes += 20
    return minutes
