"""Kitchen order board and status updates (order and item level). Staff only."""
from django.db.models import Q
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from ordering import services
from ordering.exceptions import OrderingError
from ordering.models import Order, OrderStatus
from ordering.utils import error_response, order_to_dict, parse_json_body

KITCHEN_STATUSES = (OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY)


@require_http_methods(['GET'])
def kitchen_orders(request):
    """GET /api/kitchen/orders/?venue_id=&status=&search= - orders still in the kitchen, oldest first."""
    qs = (
        Order.objects.filter(status__in=KITCHEN_STATUSES)
        .select_related('venue', 'customer')
        .prefetch_related('items')
        .order_by('created_at', 'id')
    )
    venue_id = request.GET.get('venue_id', '').strip()
    if venue_id:
        if not venue_id.isdigit():
            return JsonResponse({'error': 'venue_id must be numeric'}, status=400)
        qs = qs.filter(venue_id=int(venue_id))
    status = request.GET.get('status', '').strip()
    if status:
        qs = qs.filter(status=status)
    search = request.GET.get('search', '').strip()
    if search:
        search_q = Q(order_number__icontains=search) | Q(table_number__icontains=search)
        search_q |= Q(customer__name__icontains=search)
        if search.isdigit():
            search_q |= Q(id=int(search))
        qs = qs.filter(search_q)
    return JsonResponse({'results': [order_to_dict(o) for o in qs[:200]]})


def _status_body(request):
    body = parse_json_body(request)
    status = (body.get('status') or '').strip()
    if not status:
        raise ValueError('status is required')
    version = body.get('version')
    if version is not None and not str(version).isdigit():
        raise ValueError('version must be an integer')
    return status, int(version) if version is not None else None, body


@csrf_exempt
@require_http_methods(['PATCH'])
def kitchen_order_status(request, pk):
    """
    PATCH /api/kitchen/orders/<id>/status/ {status, version?}
    Without a version the update is retried on conflict against fresh state.
    """
    try:
        target, version, _ = _status_body(request)
    except ValueError as e:
        return JsonResponse({'error': str(e)}, status=400)
    try:
        if version is None:
            o = services.retry_on_conflict(services.advance_order_status, pk, target)
        else:
            o = services.advance_order_status(pk, target, expected_version=version)
    except Order.DoesNotExist:
        return JsonResponse({'error': 'Order not found'}, status=404)
    except OrderingError as e:
        return error_response(e)
    return JsonResponse(order_to_dict(o))


@csrf_exempt
@require_http_methods(['PATCH'])
def kitchen_item_status(request, pk, item_key):
    """PATCH /api/kitchen/orders/<id>/items/<item_key>/status/ {status, version?} - version is the item's."""
    try:
        target, version, _ = _status_body(request)
    except ValueError as e:
        return JsonResponse({'error': str(e)}, status=400)
    try:
        if version is None:
            o = services.retry_on_conflict(services.advance_item_status, pk, item_key, target)
        else:
            o = services.advance_item_status(pk, item_key, target, expected_version=version)
    except Order.DoesNotExist:
        return JsonResponse({'error': 'Order not found'}, status=404)
    except OrderingError as e:
        return error_response(e)
    return JsonResponse(order_to_dict(o))


@csrf_exempt
@require_http_methods(['POST'])
def kitchen_order_cancel(request, pk):
    """POST /api/kitchen/orders/<id>/cancel/ {reason} - reason is required for staff cancellations."""
    try:
        body = parse_json_body(request)
    except ValueError as e:
        return JsonResponse({'error': str(e)}, status=400)
    reason = (body.get('reason') or '').strip()
    if not reason:
        return JsonResponse({'error': 'Cancellation reason is required'}, status=400)
    try:
        o = services.retry_on_conflict(services.cancel_order, pk, reason)
    except Order.DoesNotExist:
        return JsonResponse({'error': 'Order not found'}, status=404)
    except OrderingError as e:
        return error_response(e)
    return JsonResponse(order_to_dict(o))
