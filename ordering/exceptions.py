"""
Error taxonomy for the order engine.

Every error carries a stable ``code`` (used in API responses and change logs)
and the HTTP status the views translate it to. Only ConcurrencyError is meant
to be retried by callers (see services.retry_on_conflict).
"""


class OrderingError(Exception):
    code = 'ordering_error'
    status_code = 400
    default_message = 'Order operation failed'

    def __init__(self, message=None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def as_dict(self):
        d = {'error': self.message, 'code': self.code}
        if self.context:
            d['context'] = {k: str(v) for k, v in self.context.items()}
        return d


# --- Validation ---

class ValidationError(OrderingError):
    code = 'validation_error'
    status_code = 400


class EmptyCart(ValidationError):
    code = 'empty_cart'
    default_message = 'An order needs at least one item'


class MissingFulfillmentDetails(ValidationError):
    code = 'missing_fulfillment_details'
    default_message = 'Fulfillment details are incomplete'


class MinimumOrderNotMet(ValidationError):
    code = 'minimum_order_not_met'
    default_message = 'Subtotal is below the minimum order amount'


class TableOccupied(ValidationError):
    code = 'table_occupied'
    status_code = 409
    default_message = 'Table already has an active order'


# --- State ---

class StateError(OrderingError):
    code = 'state_error'
    status_code = 409


class InvalidTransition(StateError):
    code = 'invalid_transition'
    default_message = 'Invalid status transition'


class OrderClosed(StateError):
    code = 'order_closed'
    default_message = 'Order is closed'


class ItemNotFound(StateError):
    code = 'item_not_found'
    status_code = 404
    default_message = 'Item not found in order'


# --- Concurrency ---

class ConcurrencyError(OrderingError):
    code = 'concurrency_error'
    status_code = 409


class ConcurrentModification(ConcurrencyError):
    code = 'concurrent_modification'
    default_message = 'Order was modified concurrently; re-read and retry'


# --- Policy ---

class PolicyError(OrderingError):
    code = 'policy_error'
    status_code = 409


class PartialSettlementNotSupported(PolicyError):
    code = 'partial_settlement_not_supported'
    default_message = 'All open orders of a tab must be settled together'


class CurrencyMismatch(OrderingError):
    code = 'currency_mismatch'
    default_message = 'Currencies do not match'
