"""Customer orders: checkout, list, detail, pricing inputs, cancel and bill PDF. Function-based."""
from django.http import HttpResponse, JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from ordering import services
from ordering.exceptions import OrderingError
from ordering.models import Order, OrderStatus, Venue
from ordering.utils import customer_required, error_response, order_to_dict, parse_json_body

PRICING_FIELDS = ('tip_percent', 'tip_amount', 'discount', 'split_count')


def _own_order(request, pk):
    o = get_object_or_404(Order.objects.only('id', 'customer_id'), pk=pk)
    if o.customer_id != request.customer.id:
        return None
    return services.get_order(o.pk)


def _order_create(request):
    try:
        body = parse_json_body(request)
    except ValueError as e:
        return JsonResponse({'error': str(e)}, status=400)
    venue_id = body.get('venue_id')
    if not venue_id:
        return JsonResponse({'error': 'venue_id is required'}, status=400)
    venue = Venue.objects.filter(pk=venue_id).first()
    if venue is None:
        return JsonResponse({'error': 'Venue not found'}, status=404)
    if not venue.is_open:
        return JsonResponse({'error': 'Venue is not accepting orders'}, status=400)
    items = body.get('items')
    if items is not None and not isinstance(items, list):
        return JsonResponse({'error': 'items must be a list'}, status=400)
    fulfillment_type = body.get('fulfillment_type') or ''
    idempotency_key = body.get('idempotency_key') or request.META.get('HTTP_X_IDEMPOTENCY_KEY')
    try:
        cart_items = [services.CartItem.from_dict(i) for i in (items or [])]
    except (TypeError, ValueError, ArithmeticError, AttributeError):
        return JsonResponse({'error': 'Invalid item in cart'}, status=400)
    try:
        o = services.create_order(
            venue,
            request.customer,
            cart_items,
            fulfillment_type,
            payment_method=body.get('payment_method') or 'cash',
            table_number=body.get('table_number'),
            delivery_address=body.get('delivery_address'),
            customer_contact=body.get('customer_contact'),
            tip_percent=body.get('tip_percent'),
            tip_amount=body.get('tip_amount'),
            discount=body.get('discount'),
            split_count=body.get('split_count'),
            notes=body.get('notes') or '',
            idempotency_key=idempotency_key,
        )
    except OrderingError as e:
        return error_response(e)
    except (TypeError, ValueError):
        return JsonResponse({'error': 'Invalid checkout payload'}, status=400)
    return JsonResponse(order_to_dict(o), status=201)


@csrf_exempt
@customer_required
@require_http_methods(['GET', 'POST'])
def customer_order_list(request):
    """GET /api/customer/orders/?venue_id=&active=1 - own orders. POST - checkout."""
    if request.method == 'POST':
        return _order_create(request)
    venue_id = request.GET.get('venue_id')
    if venue_id and not venue_id.isdigit():
        return JsonResponse({'error': 'venue_id must be numeric'}, status=400)
    orders = services.list_orders(
        request.customer.id,
        venue_id=int(venue_id) if venue_id else None,
        active_only=request.GET.get('active') in ('1', 'true'),
    )
    stats = {
        'total': len(orders),
        'active': sum(1 for o in orders if not o.is_terminal),
        'cancelled': sum(1 for o in orders if o.status == OrderStatus.CANCELLED),
    }
    return JsonResponse({'stats': stats, 'results': [order_to_dict(o) for o in orders[:100]]})


@customer_required
@require_http_methods(['GET'])
def customer_order_detail(request, pk):
    o = _own_order(request, pk)
    if o is None:
        return JsonResponse({'error': 'Forbidden'}, status=403)
    return JsonResponse(order_to_dict(o))


@csrf_exempt
@customer_required
@require_http_methods(['PATCH'])
def customer_order_pricing(request, pk):
    """PATCH /api/customer/orders/<id>/pricing/ - tip_percent, tip_amount, discount, split_count (+ version)."""
    o = _own_order(request, pk)
    if o is None:
        return JsonResponse({'error': 'Forbidden'}, status=403)
    try:
        body = parse_json_body(request)
    except ValueError as e:
        return JsonResponse({'error': str(e)}, status=400)
    changes = {k: body[k] for k in PRICING_FIELDS if k in body}
    if not changes:
        return JsonResponse({'error': f'Provide one of: {", ".join(PRICING_FIELDS)}'}, status=400)
    try:
        o = services.update_pricing_inputs(o.pk, expected_version=body.get('version'), **changes)
    except OrderingError as e:
        return error_response(e)
    except (TypeError, ValueError):
        return JsonResponse({'error': 'Invalid pricing input'}, status=400)
    return JsonResponse(order_to_dict(o))


@csrf_exempt
@customer_required
@require_http_methods(['POST'])
def customer_order_cancel(request, pk):
    o = _own_order(request, pk)
    if o is None:
        return JsonResponse({'error': 'Forbidden'}, status=403)
    try:
        body = parse_json_body(request)
    except ValueError as e:
        return JsonResponse({'error': str(e)}, status=400)
    try:
        o = services.cancel_order(o.pk, body.get('reason') or '', expected_version=body.get('version'))
    except OrderingError as e:
        return error_response(e)
    return JsonResponse(order_to_dict(o))


@customer_required
@require_http_methods(['GET'])
def customer_order_bill(request, pk):
    """GET /api/customer/orders/<id>/bill/?format=pdf - returns PDF bill for own order."""
    o = _own_order(request, pk)
    if o is None:
        return JsonResponse({'error': 'Forbidden'}, status=403)
    if request.GET.get('format') != 'pdf':
        return JsonResponse({'error': 'Use ?format=pdf to download bill'}, status=400)
    from ordering.bill_pdf import order_bill_pdf_bytes
    pdf_bytes = order_bill_pdf_bytes(o, 'Order Bill')
    resp = HttpResponse(pdf_bytes, content_type='application/pdf')
    resp['Content-Disposition'] = f'attachment; filename="{o.order_number}-bill.pdf"'
    return resp
