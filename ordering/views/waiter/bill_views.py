"""Waiter: open tabs on the floor, bill requests and settlement on behalf of a table, bill PDFs."""
from django.http import HttpResponse, JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from ordering import services
from ordering.bill_pdf import open_bill_pdf_bytes, order_bill_pdf_bytes
from ordering.exceptions import OrderingError
from ordering.models import Order, Venue
from ordering.tabs import get_open_bill, list_open_bills
from ordering.utils import error_response, open_bill_to_dict, parse_json_body


@require_http_methods(['GET'])
def waiter_open_bills(request, venue_id):
    """GET /api/waiter/venues/<venue_id>/open-bills/ - every open tab, longest-running first."""
    get_object_or_404(Venue, pk=venue_id)
    bills = list_open_bills(venue_id)
    return JsonResponse({
        'results': [open_bill_to_dict(b) for b in bills],
        'near_limit_count': sum(1 for b in bills if b.near_limit),
    })


@require_http_methods(['GET'])
def waiter_open_bill_detail(request, venue_id, customer_id):
    """GET /api/waiter/venues/<venue_id>/open-bills/<customer_id>/ - JSON, or ?format=pdf."""
    bill = get_open_bill(customer_id, venue_id)
    if bill is None:
        return JsonResponse({'error': 'No open bill'}, status=404)
    if request.GET.get('format') == 'pdf':
        resp = HttpResponse(open_bill_pdf_bytes(bill), content_type='application/pdf')
        resp['Content-Disposition'] = f'attachment; filename="tab-{venue_id}-{customer_id}.pdf"'
        return resp
    return JsonResponse(open_bill_to_dict(bill))


@csrf_exempt
@require_http_methods(['POST'])
def waiter_open_bill_request(request, venue_id, customer_id):
    bill = get_open_bill(customer_id, venue_id)
    if bill is None:
        return JsonResponse({'error': 'No open bill'}, status=404)
    try:
        bill.request_bill()
    except OrderingError as e:
        return error_response(e)
    return JsonResponse(open_bill_to_dict(get_open_bill(customer_id, venue_id)))


@csrf_exempt
@require_http_methods(['POST'])
def waiter_open_bill_settle(request, venue_id, customer_id):
    """POST {payment_method} - cash/card taken at the table."""
    try:
        body = parse_json_body(request)
    except ValueError as e:
        return JsonResponse({'error': str(e)}, status=400)
    bill = get_open_bill(customer_id, venue_id)
    if bill is None:
        return JsonResponse({'error': 'No open bill'}, status=404)
    method = body.get('payment_method') or ''
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


@require_http_methods(['GET'])
def waiter_order_bill(request, pk):
    """GET /api/waiter/orders/<id>/bill/ - PDF bill of one order."""
    get_object_or_404(Order.objects.only('id'), pk=pk)
    o = services.get_order(pk)
    pdf_bytes = order_bill_pdf_bytes(o, 'Order Bill')
    resp = HttpResponse(pdf_bytes, content_type='application/pdf')
    resp['Content-Disposition'] = f'attachment; filename="{o.order_number}-bill.pdf"'
    return resp
