"""
Reusable business logic for orders: creation, status transitions, item edits,
pricing recomputation, bill requests and settlement.
Used by views, the open-bill aggregator and management commands so the rules stay consistent.

Every mutation runs in one transaction with the order row locked and writes
through a version compare-and-set; on conflict it raises ConcurrentModification
and leaves the database untouched. Accepted mutations bump Order.version and
updated_at exactly once and emit one change event after commit.
"""
import logging
import secrets
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from . import lifecycle
from .billing import calculate_bill, calculate_for_order, estimate_preparation_minutes
from .constants import is_storable_currency, max_item_qty, setting
from .exceptions import (
    ConcurrencyError,
    ConcurrentModification,
    EmptyCart,
    InvalidTransition,
    ItemNotFound,
    MissingFulfillmentDetails,
    OrderClosed,
    PartialSettlementNotSupported,
    TableOccupied,
    ValidationError,
)
from .models import (
    FulfillmentType,
    ItemStatus,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from .money import clamp_quantity
from .order_notify import notify_order_update

logger = logging.getLogger(__name__)

UNSET = object()


@dataclass
class CartItem:
    """One line handed over by the cart/checkout collaborator."""
    product_name: str
    unit_price: Decimal
    quantity: int = 1
    options: list = field(default_factory=list)
    note: str = ''
    item_key: str = ''

    @classmethod
    def from_dict(cls, data):
        return cls(
            product_name=data.get('product_name') or data.get('name') or '',
            unit_price=data.get('unit_price', data.get('price', 0)),
            quantity=int(data.get('quantity', 1)),
            options=list(data.get('options') or []),
            note=data.get('note') or '',
            item_key=str(data.get('item_key') or data.get('id') or ''),
        )


# --- Helpers ---


def generate_order_number():
    """ORD-<yymmddHHMMSS>-<6 hex>; the random suffix keeps same-tick orders apart."""
    return f'ORD-{timezone.now():%y%m%d%H%M%S}-{secrets.token_hex(3).upper()}'


def _unique_order_number(attempts=5):
    for _ in range(attempts):
        number = generate_order_number()
        if not Order.objects.filter(order_number=number).exists():
            return number
    raise IntegrityError('Could not allocate a unique order number')


def _now_after(previous):
    now = timezone.now()
    if previous is not None and now < previous:
        return previous
    return now


def _order_pk(order):
    return order.pk if isinstance(order, Order) else int(order)


def _decimal_or_none(value, name):
    if value is None or value == '':
        return None
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{name} must be a number', field=name)
    if d < 0:
        raise ValidationError(f'{name} must not be negative', field=name)
    return d


def _normalize_options(options):
    out = []
    for o in options or []:
        out.append({
            'option_name': str(o.get('option_name') or o.get('name') or ''),
            'choice_name': str(o.get('choice_name') or o.get('choice') or ''),
            'price_modifier': str(Decimal(str(o.get('price_modifier', o.get('price', 0)) or 0))),
        })
    return out


def _normalize_cart(cart_items):
    """
    Drop lines with quantity below 1 (removal), clamp the rest to MAX_ITEM_QTY,
    and give every line a key unique within the order.
    """
    upper = max_item_qty()
    lines = []
    used_keys = set()
    for idx, raw in enumerate(cart_items or [], start=1):
        item = raw if isinstance(raw, CartItem) else CartItem.from_dict(raw)
        if int(item.quantity) < 1:
            continue
        key = item.item_key or f'item-{idx}'
        if key in used_keys:
            key = f'{key}-{idx}'
        used_keys.add(key)
        unit_price = _decimal_or_none(item.unit_price, 'unit_price')
        if unit_price is None:
            raise ValidationError('unit_price is required', field='unit_price')
        lines.append(CartItem(
            product_name=item.product_name,
            unit_price=unit_price,
            quantity=clamp_quantity(item.quantity, upper),
            options=_normalize_options(item.options),
            note=item.note or '',
            item_key=key,
        ))
    return lines


def _fulfillment_fields(fulfillment_type, table_number, delivery_address, customer_contact):
    table_number = (table_number or '').strip() if table_number is not None else ''
    delivery_address = (delivery_address or '').strip() if delivery_address is not None else ''
    customer_contact = (customer_contact or '').strip() if customer_contact is not None else ''
    if fulfillment_type == FulfillmentType.DINE_IN:
        if not table_number:
            raise MissingFulfillmentDetails('Dine-in orders need a table number', field='table_number')
        return {'table_number': table_number, 'delivery_address': None, 'customer_contact': None}
    if fulfillment_type == FulfillmentType.DELIVERY:
        if not delivery_address:
            raise MissingFulfillmentDetails('Delivery orders need an address', field='delivery_address')
        return {'table_number': None, 'delivery_address': delivery_address, 'customer_contact': None}
    if fulfillment_type == FulfillmentType.TAKEAWAY:
        if not customer_contact:
            raise MissingFulfillmentDetails('Takeaway orders need a contact', field='customer_contact')
        return {'table_number': None, 'delivery_address': None, 'customer_contact': customer_contact}
    raise MissingFulfillmentDetails(f'Unknown fulfillment type {fulfillment_type!r}', field='fulfillment_type')


def table_is_occupied(venue, table_number):
    return (
        Order.objects.filter(
            venue=venue,
            fulfillment_type=FulfillmentType.DINE_IN,
            table_number=table_number,
        )
        .exclude(status__in=lifecycle.CLOSED_STATUSES)
        .exists()
    )


def _locked_order(order_id):
    return Order.objects.select_for_update().select_related('venue').get(pk=order_id)


def _cas_update_order(order, expected_version, **fields):
    """
    UPDATE order SET ..., version = version + 1 WHERE id = ? AND version = ?.
    Refreshes ``order`` in place. Raises ConcurrentModification when the row moved.
    """
    fields['updated_at'] = _now_after(order.updated_at)
    updated = Order.objects.filter(pk=order.pk, version=expected_version).update(
        version=F('version') + 1, **fields
    )
    if not updated:
        logger.warning('Stale write to %s (expected v%s)', order.order_number, expected_version)
        raise ConcurrentModification(
            f'Order {order.order_number} changed since version {expected_version}',
            order=order.order_number,
            expected_version=expected_version,
        )
    order.refresh_from_db()


def _check_expected(order, expected_version):
    if expected_version is not None and int(expected_version) != order.version:
        raise ConcurrentModification(
            f'Order {order.order_number} is at version {order.version}, not {expected_version}',
            order=order.order_number,
            expected_version=expected_version,
        )


def _refresh_caller(order):
    if isinstance(order, Order):
        order.refresh_from_db()


def retry_on_conflict(func, *args, attempts=None, **kwargs):
    """
    Call func(*args, **kwargs), retrying on ConcurrencyError up to ``attempts``
    times. func must re-read state itself (pass ids, not instances).
    """
    attempts = attempts or int(setting('CONFLICT_RETRY_ATTEMPTS'))
    for attempt in range(1, attempts + 1):
        try:
            return func(*args, **kwargs)
        except ConcurrencyError:
            if attempt == attempts:
                raise
            logger.warning('Conflict in %s; retry %s/%s', getattr(func, '__name__', func), attempt, attempts)


# --- Reads ---


def get_order(order_id):
    """Point read; raises Order.DoesNotExist."""
    return (
        Order.objects.select_related('venue', 'customer')
        .prefetch_related('items')
        .get(pk=order_id)
    )


def list_orders(customer_id, venue_id=None, active_only=False):
    qs = (
        Order.objects.filter(customer_id=customer_id)
        .select_related('venue')
        .prefetch_related('items')
        .order_by('-created_at', '-id')
    )
    if venue_id is not None:
        qs = qs.filter(venue_id=venue_id)
    if active_only:
        qs = qs.exclude(status__in=lifecycle.CLOSED_STATUSES)
    return list(qs)


# --- Creation ---


def create_order(
    venue,
    customer,
    cart_items,
    fulfillment_type,
    payment_method=PaymentMethod.CASH,
    table_number=None,
    delivery_address=None,
    customer_contact=None,
    tip_percent=None,
    tip_amount=None,
    discount=None,
    split_count=None,
    notes='',
    idempotency_key=None,
):
    """
    Validate the checkout, price it and persist a pending order.
    A replay with the same idempotency_key for the same customer returns the
    order created the first time.
    """
    idempotency_key = (idempotency_key or '').strip() or None
    if idempotency_key:
        existing = Order.objects.filter(customer=customer, idempotency_key=idempotency_key).first()
        if existing is not None:
            logger.info('Replayed checkout %s -> %s', idempotency_key, existing.order_number)
            return get_order(existing.pk)

    lines = _normalize_cart(cart_items)
    if not lines:
        raise EmptyCart()
    fulfillment = _fulfillment_fields(fulfillment_type, table_number, delivery_address, customer_contact)
    if payment_method not in PaymentMethod.values:
        raise ValidationError(f'Unknown payment method {payment_method!r}', field='payment_method')
    tip_percent = _decimal_or_none(tip_percent, 'tip_percent')
    tip_amount = _decimal_or_none(tip_amount, 'tip_amount')
    discount = _decimal_or_none(discount, 'discount')
    if split_count is not None and int(split_count) < 1:
        raise ValidationError('split_count must be at least 1', field='split_count')

    policy = venue.policy()
    if not is_storable_currency(policy.currency):
        raise ValidationError(
            f'Prices in {policy.currency} need more decimal places than orders store',
            field='currency',
        )
    pricing = calculate_bill(
        lines, policy, fulfillment_type,
        tip_percent=tip_percent, tip_amount=tip_amount,
        discount=discount, split_count=split_count,
        enforce_minimum=True,
    )
    now = timezone.now()
    try:
        with transaction.atomic():
            if fulfillment_type == FulfillmentType.DINE_IN and table_is_occupied(venue, fulfillment['table_number']):
                raise TableOccupied(
                    f'Table {fulfillment["table_number"]} already has an active order',
                    table_number=fulfillment['table_number'],
                )
            order = Order.objects.create(
                order_number=_unique_order_number(),
                venue=venue,
                customer=customer,
                fulfillment_type=fulfillment_type,
                payment_method=payment_method,
                currency=policy.currency,
                tip_percent=tip_percent,
                tip_amount=tip_amount,
                discount_amount=discount,
                notes=notes or '',
                estimated_minutes=estimate_preparation_minutes(lines, fulfillment_type),
                idempotency_key=idempotency_key,
                created_at=now,
                updated_at=now,
                **fulfillment,
                **pricing.as_fields(),
            )
            for position, line in enumerate(lines):
                OrderItem(
                    order=order,
                    item_key=line.item_key,
                    product_name=line.product_name,
                    unit_price=line.unit_price,
                    quantity=line.quantity,
                    options=line.options,
                    note=line.note,
                    position=position,
                ).save()
            order = get_order(order.pk)
            notify_order_update(order, 'created')
    except IntegrityError:
        if idempotency_key:
            existing = Order.objects.filter(customer=customer, idempotency_key=idempotency_key).first()
            if existing is not None:
                return get_order(existing.pk)
        if fulfillment_type == FulfillmentType.DINE_IN and table_is_occupied(venue, fulfillment['table_number']):
            raise TableOccupied(
                f'Table {fulfillment["table_number"]} already has an active order',
                table_number=fulfillment['table_number'],
            )
        raise
    logger.info('Created %s at venue %s (%s, total %s)', order.order_number, venue.pk, fulfillment_type, order.total)
    return order


# --- Status transitions ---


def advance_order_status(order, target, expected_version=None):
    """
    Move the order to ``target`` (a direct successor, or cancelled).
    When an Order instance is passed its version is the compare-and-set base.
    """
    if expected_version is None and isinstance(order, Order):
        expected_version = order.version
    with transaction.atomic():
        current = _locked_order(_order_pk(order))
        _check_expected(current, expected_version)
        item_statuses = list(current.items.values_list('status', flat=True))
        lifecycle.check_order_transition(
            current.status, target, current.fulfillment_type,
            item_statuses=item_statuses, order_label=current.order_number,
        )
        previous = current.status
        _cas_update_order(current, current.version, status=target)
        notify_order_update(get_order(current.pk), 'status')
    logger.info('%s: %s -> %s', current.order_number, previous, target)
    _refresh_caller(order)
    return get_order(current.pk)


def _snapshot_item_version(order, item_key):
    """Item version from a prefetched Order snapshot, or None when items were not loaded."""
    cached = getattr(order, '_prefetched_objects_cache', {}).get('items')
    if cached is None:
        return None
    return next((i.version for i in cached if i.item_key == item_key), None)


def advance_item_status(order, item_key, target, expected_version=None):
    """
    Move one item to ``target``. expected_version is the item's version as the
    caller read it; two callers racing on the same item from the same read get
    one success and one ConcurrentModification. Different items never conflict.
    Passing an Order read with get_order makes its item version the base.
    """
    if expected_version is None and isinstance(order, Order):
        expected_version = _snapshot_item_version(order, item_key)
    with transaction.atomic():
        current = _locked_order(_order_pk(order))
        items = list(current.items.all())
        item = next((i for i in items if i.item_key == item_key), None)
        if item is None:
            lifecycle.ensure_open(current.status, current.order_number)
            raise ItemNotFound(f'Item {item_key} not in order {current.order_number}', item_key=item_key)
        base_version = item.version if expected_version is None else int(expected_version)
        if base_version != item.version:
            raise ConcurrentModification(
                f'Item {item_key} is at version {item.version}, not {base_version}',
                item_key=item_key,
                expected_version=base_version,
            )
        lifecycle.check_item_transition(
            current.status, item.status, target,
            sibling_statuses=[i.status for i in items if i.pk != item.pk],
            order_label=current.order_number,
        )
        now = _now_after(current.updated_at)
        updated = OrderItem.objects.filter(pk=item.pk, version=base_version).update(
            status=target, version=F('version') + 1, updated_at=now
        )
        if not updated:
            logger.warning('Stale item write %s/%s (expected v%s)', current.order_number, item_key, base_version)
            raise ConcurrentModification(
                f'Item {item_key} changed since version {base_version}',
                item_key=item_key,
                expected_version=base_version,
            )
        Order.objects.filter(pk=current.pk).update(version=F('version') + 1, updated_at=now)
        fresh = get_order(current.pk)
        fresh_item = next(i for i in fresh.items.all() if i.item_key == item_key)
        notify_order_update(fresh, 'item_status', item=fresh_item)
    logger.info('%s item %s -> %s', current.order_number, item_key, target)
    _refresh_caller(order)
    return fresh


def cancel_order(order, reason='', expected_version=None):
    """Cancel a not-yet-paid order; pricing stays as last computed."""
    if expected_version is None and isinstance(order, Order):
        expected_version = order.version
    with transaction.atomic():
        current = _locked_order(_order_pk(order))
        _check_expected(current, expected_version)
        lifecycle.check_order_transition(
            current.status, OrderStatus.CANCELLED, current.fulfillment_type,
            order_label=current.order_number,
        )
        _cas_update_order(
            current, current.version,
            status=OrderStatus.CANCELLED, cancel_reason=(reason or '').strip(),
        )
        notify_order_update(get_order(current.pk), 'cancelled')
    logger.info('%s cancelled: %s', current.order_number, reason or '-')
    _refresh_caller(order)
    return get_order(current.pk)


def _lock_set(orders):
    pks = sorted({_order_pk(o) for o in orders})
    if not pks:
        raise ValidationError('At least one order is required', field='orders')
    locked = list(
        Order.objects.select_for_update().select_related('venue').filter(pk__in=pks).order_by('pk')
    )
    if len(locked) != len(pks):
        missing = set(pks) - {o.pk for o in locked}
        raise Order.DoesNotExist(f'Orders not found: {sorted(missing)}')
    return locked


def request_bill(orders):
    """
    Move every served/delivered order of the set to bill_requested; orders
    already at bill_requested or later are left alone. Orders still in the
    kitchen (pending through ready) are not swept along: they raise
    InvalidTransition, so a bill never covers items that have not been served.
    The whole set is validated before anything is written.
    """
    with transaction.atomic():
        locked = _lock_set(orders)
        to_request = []
        for o in locked:
            if lifecycle.order_rank(o.status) >= lifecycle.order_rank(OrderStatus.BILL_REQUESTED):
                continue
            if o.status == OrderStatus.CANCELLED:
                raise OrderClosed(f'Order {o.order_number} is cancelled', status=o.status)
            lifecycle.check_order_transition(
                o.status, OrderStatus.BILL_REQUESTED, o.fulfillment_type,
                order_label=o.order_number,
            )
            to_request.append(o)
        for o in to_request:
            _cas_update_order(o, o.version, status=OrderStatus.BILL_REQUESTED)
            notify_order_update(get_order(o.pk), 'status')
    for o in to_request:
        logger.info('%s: bill requested', o.order_number)
    return [get_order(o.pk) for o in locked]


def settle_payment(orders, method):
    """
    Mark every order of the set paid with ``method``. All-or-nothing: the set
    must be the complete open tab of one customer at one venue, and every order
    must be payable; otherwise nothing changes.
    """
    if method not in PaymentMethod.values:
        raise ValidationError(f'Unknown payment method {method!r}', field='payment_method')
    with transaction.atomic():
        locked = _lock_set(orders)
        tabs = {(o.customer_id, o.venue_id) for o in locked}
        if len(tabs) > 1:
            raise PartialSettlementNotSupported('Orders belong to different tabs')
        customer_id, venue_id = tabs.pop()
        open_pks = set(
            Order.objects.filter(customer_id=customer_id, venue_id=venue_id)
            .exclude(status__in=lifecycle.CLOSED_STATUSES)
            .values_list('pk', flat=True)
        )
        left_out = open_pks - {o.pk for o in locked}
        if left_out:
            raise PartialSettlementNotSupported(
                f'{len(left_out)} open order(s) of this tab were not included',
                missing=sorted(left_out),
            )
        for o in locked:
            lifecycle.ensure_open(o.status, o.order_number)
            if lifecycle.path_to_paid(o.status) is None:
                raise InvalidTransition(
                    f'Order {o.order_number} is {o.status} and cannot be paid yet',
                    current=o.status, target=OrderStatus.PAID, order=o.order_number,
                )
        for o in locked:
            _cas_update_order(
                o, o.version,
                status=OrderStatus.PAID,
                payment_status=PaymentStatus.PAID,
                payment_method=method,
            )
            notify_order_update(get_order(o.pk), 'paid')
    logger.info('Settled %s order(s) for customer %s at venue %s by %s', len(locked), customer_id, venue_id, method)
    return [get_order(o.pk) for o in locked]


# --- Item and pricing edits ---


def _ensure_items_editable(order):
    lifecycle.ensure_open(order.status, order.order_number)
    if lifecycle.order_rank(order.status) >= lifecycle.order_rank(OrderStatus.BILL_REQUESTED):
        raise InvalidTransition(
            f'Items of {order.order_number} cannot change after the bill was requested',
            current=order.status,
        )


def _reprice(current, expected_version, kind, **fields):
    """Recompute the full bill for ``current`` (with ``fields`` applied) and write it."""
    for name, value in fields.items():
        setattr(current, name, value)
    items = list(OrderItem.objects.filter(order=current))
    pricing = calculate_for_order(
        current, items=items,
        enforce_minimum=current.status == OrderStatus.PENDING,
    )
    _cas_update_order(current, expected_version, **{**fields, **pricing.as_fields()})
    fresh = get_order(current.pk)
    notify_order_update(fresh, kind)
    return fresh


def add_item(order, cart_item, expected_version=None):
    if expected_version is None and isinstance(order, Order):
        expected_version = order.version
    lines = _normalize_cart([cart_item])
    if not lines:
        raise EmptyCart('Nothing to add')
    line = lines[0]
    with transaction.atomic():
        current = _locked_order(_order_pk(order))
        _check_expected(current, expected_version)
        _ensure_items_editable(current)
        keys = set(current.items.values_list('item_key', flat=True))
        key = line.item_key
        n = len(keys) + 1
        while key in keys:
            key = f'item-{n}'
            n += 1
        last_position = current.items.order_by('-position').values_list('position', flat=True).first() or 0
        OrderItem(
            order=current,
            item_key=key,
            product_name=line.product_name,
            unit_price=line.unit_price,
            quantity=line.quantity,
            options=line.options,
            note=line.note,
            position=last_position + 1,
        ).save()
        fresh = _reprice(current, current.version, 'items')
    logger.info('%s: added %s x %s', fresh.order_number, line.quantity, line.product_name)
    _refresh_caller(order)
    return fresh


def update_item_quantity(order, item_key, quantity, expected_version=None):
    """Set an item's quantity; below 1 removes the item, above the cap is clamped."""
    if int(quantity) < 1:
        return remove_item(order, item_key, expected_version=expected_version)
    if expected_version is None and isinstance(order, Order):
        expected_version = order.version
    with transaction.atomic():
        current = _locked_order(_order_pk(order))
        _check_expected(current, expected_version)
        _ensure_items_editable(current)
        item = current.items.filter(item_key=item_key).first()
        if item is None:
            raise ItemNotFound(f'Item {item_key} not in order {current.order_number}', item_key=item_key)
        item.quantity = clamp_quantity(quantity)
        item.version = item.version + 1
        item.save(update_fields=['quantity', 'version', 'updated_at'])
        fresh = _reprice(current, current.version, 'items')
    _refresh_caller(order)
    return fresh


def remove_item(order, item_key, expected_version=None):
    if expected_version is None and isinstance(order, Order):
        expected_version = order.version
    with transaction.atomic():
        current = _locked_order(_order_pk(order))
        _check_expected(current, expected_version)
        _ensure_items_editable(current)
        item = current.items.filter(item_key=item_key).first()
        if item is None:
            raise ItemNotFound(f'Item {item_key} not in order {current.order_number}', item_key=item_key)
        if current.items.count() == 1:
            raise EmptyCart(f'Removing {item_key} would leave {current.order_number} empty', item_key=item_key)
        item.delete()
        fresh = _reprice(current, current.version, 'items')
    logger.info('%s: removed %s', fresh.order_number, item_key)
    _refresh_caller(order)
    return fresh


def update_pricing_inputs(
    order,
    tip_percent=UNSET,
    tip_amount=UNSET,
    discount=UNSET,
    split_count=UNSET,
    expected_version=None,
):
    """Change tip/discount/split inputs of an open order and recompute the bill."""
    if expected_version is None and isinstance(order, Order):
        expected_version = order.version
    fields = {}
    if tip_percent is not UNSET:
        fields['tip_percent'] = _decimal_or_none(tip_percent, 'tip_percent')
    if tip_amount is not UNSET:
        fields['tip_amount'] = _decimal_or_none(tip_amount, 'tip_amount')
    if discount is not UNSET:
        fields['discount_amount'] = _decimal_or_none(discount, 'discount')
    if split_count is not UNSET:
        if split_count is not None and int(split_count) < 1:
            raise ValidationError('split_count must be at least 1', field='split_count')
        fields['split_count'] = int(split_count) if split_count is not None else None
    with transaction.atomic():
        current = _locked_order(_order_pk(order))
        _check_expected(current, expected_version)
        lifecycle.ensure_open(current.status, current.order_number)
        fresh = _reprice(current, current.version, 'pricing', **fields)
    _refresh_caller(order)
    return fresh
