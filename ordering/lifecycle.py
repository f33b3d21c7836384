"""
Order and item status state machines.

Pure rules only: given the current statuses, decide whether a transition is
allowed and raise the matching StateError when it is not. services.py applies
the accepted transitions to the database.

Order:  pending -> confirmed -> preparing -> ready -> served|delivered
        -> bill_requested -> paid -> completed
        cancelled is reachable from every state up to bill_requested.
Item:   pending -> preparing -> ready -> served
"""
from .exceptions import InvalidTransition, OrderClosed
from .models import FulfillmentType, ItemStatus, OrderStatus

ORDER_TRANSITIONS = {
    OrderStatus.PENDING: (OrderStatus.CONFIRMED,),
    OrderStatus.CONFIRMED: (OrderStatus.PREPARING,),
    OrderStatus.PREPARING: (OrderStatus.READY,),
    OrderStatus.READY: (OrderStatus.SERVED, OrderStatus.DELIVERED),
    OrderStatus.SERVED: (OrderStatus.BILL_REQUESTED,),
    OrderStatus.DELIVERED: (OrderStatus.BILL_REQUESTED,),
    OrderStatus.BILL_REQUESTED: (OrderStatus.PAID,),
    OrderStatus.PAID: (OrderStatus.COMPLETED,),
    OrderStatus.COMPLETED: (),
    OrderStatus.CANCELLED: (),
}

ORDER_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.CONFIRMED: 1,
    OrderStatus.PREPARING: 2,
    OrderStatus.READY: 3,
    OrderStatus.SERVED: 4,
    OrderStatus.DELIVERED: 4,
    OrderStatus.BILL_REQUESTED: 5,
    OrderStatus.PAID: 6,
    OrderStatus.COMPLETED: 7,
}

CANCELLABLE_STATUSES = frozenset(
    s for s, rank in ORDER_RANK.items() if rank <= ORDER_RANK[OrderStatus.BILL_REQUESTED]
)
# paid still allows the close-out edge to completed; nothing else.
CLOSED_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.COMPLETED, OrderStatus.CANCELLED})
PAYABLE_STATUSES = frozenset({OrderStatus.SERVED, OrderStatus.DELIVERED, OrderStatus.BILL_REQUESTED})

ITEM_NEXT = {
    ItemStatus.PENDING: ItemStatus.PREPARING,
    ItemStatus.PREPARING: ItemStatus.READY,
    ItemStatus.READY: ItemStatus.SERVED,
    ItemStatus.SERVED: None,
}

ITEM_RANK = {
    ItemStatus.PENDING: 0,
    ItemStatus.PREPARING: 1,
    ItemStatus.READY: 2,
    ItemStatus.SERVED: 3,
}


def order_rank(status):
    return ORDER_RANK.get(status, -1)


def is_closed(status):
    return status in CLOSED_STATUSES


def ensure_open(order_status, order_label=''):
    """Raise OrderClosed for paid/completed/cancelled orders."""
    if is_closed(order_status):
        raise OrderClosed(
            f'Order {order_label} is {order_status}',
            status=order_status,
        )


def check_order_transition(current, target, fulfillment_type, item_statuses=(), order_label=''):
    """
    Validate current -> target for an order. item_statuses are the statuses of
    the order's items (used by the served/delivered consistency guard).
    """
    if current in (OrderStatus.COMPLETED, OrderStatus.CANCELLED):
        raise OrderClosed(f'Order {order_label} is {current}', status=current)
    if current == OrderStatus.PAID and target != OrderStatus.COMPLETED:
        raise OrderClosed(f'Order {order_label} is paid', status=current)

    if target == OrderStatus.CANCELLED:
        if current not in CANCELLABLE_STATUSES:
            raise InvalidTransition(
                f'Cannot cancel order {order_label} from {current}',
                current=current, target=target,
            )
        return

    if target not in ORDER_TRANSITIONS.get(current, ()):
        raise InvalidTransition(
            f'Invalid transition from {current} to {target}',
            current=current, target=target,
        )

    if target == OrderStatus.SERVED and fulfillment_type == FulfillmentType.DELIVERY:
        raise InvalidTransition(
            'Delivery orders are delivered, not served',
            current=current, target=target,
        )
    if target == OrderStatus.DELIVERED and fulfillment_type != FulfillmentType.DELIVERY:
        raise InvalidTransition(
            'Only delivery orders can be marked delivered',
            current=current, target=target,
        )
    if target in (OrderStatus.SERVED, OrderStatus.DELIVERED):
        if any(s == ItemStatus.PENDING for s in item_statuses):
            raise InvalidTransition(
                f'Order {order_label} still has pending items',
                current=current, target=target,
            )


def check_item_transition(order_status, current, target, sibling_statuses=(), order_label=''):
    """Validate current -> target for one item of an order in order_status."""
    ensure_open(order_status, order_label)
    if ITEM_NEXT.get(current) != target:
        raise InvalidTransition(
            f'Invalid item transition from {current} to {target}',
            current=current, target=target,
        )
    if target == ItemStatus.SERVED and order_status in (OrderStatus.PENDING, OrderStatus.CONFIRMED):
        if not any(s == ItemStatus.PREPARING for s in sibling_statuses):
            raise InvalidTransition(
                f'Order {order_label} is {order_status} with nothing preparing',
                current=current, target=target,
            )


def path_to_paid(current):
    """Steps from a payable status to paid: served/delivered pass through bill_requested."""
    if current in (OrderStatus.SERVED, OrderStatus.DELIVERED):
        return [OrderStatus.BILL_REQUESTED, OrderStatus.PAID]
    if current == OrderStatus.BILL_REQUESTED:
        return [OrderStatus.PAID]
    return None


def least_advanced(statuses):
    """The least-advanced status among live orders (cancelled ignored)."""
    ranked = [s for s in statuses if s in ORDER_RANK]
    if not ranked:
        return None
    return min(ranked, key=order_rank)
