"""Waiter: list and update WaiterCall for a venue."""
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from ordering.models import WaiterCall, WaiterCallStatus
from ordering.utils import parse_json_body


def _call_to_dict(c):
    return {
        'id': c.id,
        'venue_id': c.venue_id,
        'table_number': c.table_number or '',
        'customer_id': c.customer_id,
        'customer_name': c.customer.name if c.customer else '',
        'call_type': c.call_type,
        'message': c.message or '',
        'status': c.status,
        'created_at': c.created_at.isoformat() if c.created_at else None,
        'updated_at': c.updated_at.isoformat() if c.updated_at else None,
    }


@require_http_methods(['GET'])
def waiter_call_list(request, venue_id):
    """GET /api/waiter/venues/<venue_id>/calls/?status= - includes pending_count."""
    qs = WaiterCall.objects.filter(venue_id=venue_id).select_related('customer').order_by('-created_at')
    pending_count = qs.filter(status=WaiterCallStatus.PENDING).count()
    status = request.GET.get('status', '').strip()
    if status:
        qs = qs.filter(status=status)
    results = [_call_to_dict(c) for c in qs[:200]]
    return JsonResponse({'results': results, 'pending_count': pending_count})


@csrf_exempt
@require_http_methods(['PATCH', 'PUT'])
def waiter_call_update(request, pk):
    """PATCH /api/waiter/calls/<id>/ {status: completed}"""
    call = get_object_or_404(WaiterCall.objects.select_related('customer'), pk=pk)
    try:
        body = parse_json_body(request)
    except ValueError as e:
        return JsonResponse({'error': str(e)}, status=400)
    status = body.get('status')
    if status is not None and status not in WaiterCallStatus.values:
        return JsonResponse({'error': f'Unknown status {status}'}, status=400)
    if status == WaiterCallStatus.COMPLETED and call.status != WaiterCallStatus.COMPLETED:
        call.status = WaiterCallStatus.COMPLETED
        call.save(update_fields=['status', 'updated_at'])
    return JsonResponse(_call_to_dict(call))
