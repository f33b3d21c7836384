"""Customer open bill (tab) at a venue: view, request bill, settle."""
from django.http import HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from ordering.exceptions import OrderingError
from ordering.models import Venue, WaiterCall, WaiterCallType
from ordering.tabs import get_open_bill
from ordering.utils import customer_required, error_response, open_bill_to_dict, parse_json_body


def _venue_id(value):
    if value is None or not str(value).isdigit():
        return None
    return int(value)


@customer_required
@require_http_methods(['GET'])
def customer_open_bill(request):
    """GET /api/customer/open-bill/?venue_id=&split_count= - running tab; 404 when nothing is open."""
    venue_id = _venue_id(request.GET.get('venue_id'))
    if venue_id is None:
        return JsonResponse({'error': 'venue_id is required'}, status=400)
    split_count = request.GET.get('split_count')
    if split_count and not split_count.isdigit():
        return JsonResponse({'error': 'split_count must be a positive integer'}, status=400)
    bill = get_open_bill(request.customer.id, venue_id, split_count=int(split_count) if split_count else None)
    if bill is None:
        return JsonResponse({'error': 'No open bill'}, status=404)
    d = open_bill_to_dict(bill)
    if bill.per_head is not None:
        d['split_count'] = bill.split_count
        d['per_head'] = str(bill.per_head.amount)
    if request.GET.get('format') == 'pdf':
        from ordering.bill_pdf import open_bill_pdf_bytes
        resp = HttpResponse(open_bill_pdf_bytes(bill), content_type='application/pdf')
        resp['Content-Disposition'] = f'attachment; filename="tab-{venue_id}-{request.customer.id}.pdf"'
        return resp
    return JsonResponse(d)


@csrf_exempt
@customer_required
@require_http_methods(['POST'])
def customer_open_bill_request(request):
    """POST /api/customer/open-bill/request/ {venue_id}"""
    try:
        body = parse_json_body(request)
    except ValueError as e:
        return JsonResponse({'error': str(e)}, status=400)
    venue_id = _venue_id(body.get('venue_id'))
    if venue_id is None:
        return JsonResponse({'error': 'venue_id is required'}, status=400)
    bill = get_open_bill(request.customer.id, venue_id)
    if bill is None:
        return JsonResponse({'error': 'No open bill'}, status=404)
    try:
        bill.request_bill()
    except OrderingError as e:
        return error_response(e)
    return JsonResponse(open_bill_to_dict(get_open_bill(request.customer.id, venue_id)))


@csrf_exempt
@customer_required
@require_http_methods(['POST'])
def customer_open_bill_settle(request):
    """POST /api/customer/open-bill/settle/ {venue_id, payment_method} - pays the whole tab or nothing."""
    try:
        body = parse_json_body(request)
    except ValueError as e:
        return JsonResponse({'error': str(e)}, status=400)
    venue_id = _venue_id(body.get('venue_id'))
    if venue_id is None:
        return JsonResponse({'error': 'venue_id is required'}, status=400)
    method = body.get('payment_method') or ''
    bill = get_open_bill(request.customer.id, venue_id)
    if bill is None:
        return JsonResponse({'error': 'No open bill'}, status=404)
    try:
        settled = bill.settle_payment(method)
    except OrderingError as e:
        return error_response(e)
    return JsonResponse({
        'settled': [o.order_number for o in settled],
        'grand_total': str(bill.grand_total.amount),
        'currency': bill.currency,
        'payment_method': method,
    })


@csrf_exempt
@customer_required
@require_http_methods(['POST'])
def customer_waiter_call(request):
    """POST /api/customer/waiter-calls/ {venue_id, table_number, call_type, message}"""
    try:
        body = parse_json_body(request)
    except ValueError as e:
        return JsonResponse({'error': str(e)}, status=400)
    venue_id = _venue_id(body.get('venue_id'))
    table_number = (body.get('table_number') or '').strip()
    if venue_id is None or not table_number:
        return JsonResponse({'error': 'venue_id and table_number are required'}, status=400)
    if not Venue.objects.filter(pk=venue_id).exists():
        return JsonResponse({'error': 'Venue not found'}, status=404)
    call_type = body.get('call_type') or WaiterCallType.WAITER
    if call_type not in WaiterCallType.values:
        return JsonResponse({'error': f'Unknown call_type {call_type}'}, status=400)
    call = WaiterCall.objects.create(
        venue_id=venue_id,
        customer=request.customer,
        table_number=table_number,
        call_type=call_type,
        message=(body.get('message') or '').strip(),
    )
    return JsonResponse({'id': call.id, 'status': call.status, 'call_type': call.call_type}, status=201)
