"""
Shared helpers for API: order serialization (snake_case), request identity and body parsing.

order_to_dict() is the single snapshot shape used by the pull path (order
detail/list views) and the push path (change events), so observers can merge
either source the same way.
"""
import json
from decimal import Decimal
from datetime import date, datetime, timedelta
from functools import wraps

from django.http import JsonResponse


def _serialize_value(v):
    if v is None:
        return None
    if isinstance(v, Decimal):
        return str(v)
    if isinstance(v, (date, datetime)):
        return v.isoformat()
    if isinstance(v, timedelta):
        return int(v.total_seconds())
    if hasattr(v, 'pk'):
        return v.pk
    return v


def item_to_dict(i):
    return {
        'id': i.id,
        'item_key': i.item_key,
        'product_name': i.product_name,
        'unit_price': str(i.unit_price),
        'quantity': i.quantity,
        'options': [
            {
                'option_name': o.get('option_name', ''),
                'choice_name': o.get('choice_name', ''),
                'price_modifier': str(o.get('price_modifier') or '0'),
            }
            for o in (i.options or [])
        ],
        'status': i.status,
        'note': i.note or '',
        'line_total': str(i.line_total),
        'version': i.version,
        'updated_at': _serialize_value(i.updated_at),
    }


def order_to_dict(o, include_items=True):
    d = {
        'id': o.id,
        'order_number': o.order_number,
        'venue_id': o.venue_id,
        'customer_id': o.customer_id,
        'fulfillment_type': o.fulfillment_type,
        'table_number': o.table_number or '',
        'delivery_address': o.delivery_address or '',
        'customer_contact': o.customer_contact or '',
        'status': o.status,
        'payment_status': o.payment_status,
        'payment_method': o.payment_method or '',
        'currency': o.currency,
        'pricing': o.pricing.as_dict(),
        'tip_percent': _serialize_value(o.tip_percent),
        'tip_amount': _serialize_value(o.tip_amount),
        'discount_amount': _serialize_value(o.discount_amount),
        'split_count': o.split_count,
        'notes': o.notes or '',
        'cancel_reason': o.cancel_reason or '',
        'estimated_minutes': o.estimated_minutes,
        'version': o.version,
        'created_at': _serialize_value(o.created_at),
        'updated_at': _serialize_value(o.updated_at),
    }
    if include_items:
        d['items'] = [item_to_dict(i) for i in o.items.all()]
    return d


def open_bill_to_dict(bill):
    return {
        'customer_id': bill.customer_id,
        'venue_id': bill.venue_id,
        'currency': bill.currency,
        'status': bill.status,
        'grand_total': str(bill.grand_total.amount),
        'elapsed_seconds': _serialize_value(bill.elapsed),
        'elapsed_minutes': bill.elapsed_minutes,
        'spending_limit': str(bill.spending_limit.amount) if bill.spending_limit else None,
        'usage_ratio': str(bill.usage_ratio) if bill.usage_ratio is not None else None,
        'near_limit': bill.near_limit,
        'over_limit': bill.over_limit,
        'orders': [order_to_dict(o) for o in bill.orders],
    }


def parse_json_body(request):
    """Return the decoded JSON body (empty dict for no body). Raises ValueError on bad JSON."""
    if not request.body:
        return {}
    try:
        body = json.loads(request.body)
    except json.JSONDecodeError as e:
        raise ValueError('Invalid JSON') from e
    if not isinstance(body, dict):
        raise ValueError('JSON body must be an object')
    return body


def error_response(exc):
    """JsonResponse for an OrderingError."""
    return JsonResponse(exc.as_dict(), status=exc.status_code)


def customer_required(view_func):
    """
    Decorator: set request.customer from the X-Customer-Id header supplied by the
    upstream session layer. Return 401 if missing, 404 if unknown.
    """
    from ordering.models import Customer

    @wraps(view_func)
    def wrapped(request, *args, **kwargs):
        raw = (request.META.get('HTTP_X_CUSTOMER_ID') or '').strip()
        if not raw or not raw.isdigit():
            return JsonResponse({'error': 'Customer identification required'}, status=401)
        customer = Customer.objects.filter(pk=int(raw)).first()
        if customer is None:
            return JsonResponse({'error': 'Unknown customer'}, status=404)
        request.customer = customer
        return view_func(request, *args, **kwargs)
    return wrapped


def auth_required(view_func):
    """Decorator: set request.user from Authorization Bearer token (DRF Token only). Return 401 if invalid."""
    from rest_framework.authtoken.models import Token

    @wraps(view_func)
    def wrapped(request, *args, **kwargs):
        auth_header = request.META.get('HTTP_AUTHORIZATION')
        if not auth_header or not auth_header.startswith('Bearer '):
            return JsonResponse({'error': 'Authentication required'}, status=401)
        key = auth_header[7:].strip()
        try:
            token = Token.objects.select_related('user').get(key=key)
            request.user = token.user
        except Token.DoesNotExist:
            return JsonResponse({'error': 'Invalid token'}, status=401)
        return view_func(request, *args, **kwargs)
    return wrapped
