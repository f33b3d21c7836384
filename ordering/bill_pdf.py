"""
Bill PDF generation for a single order and for an open tab.
Amounts come from the stored pricing columns (BillBreakdown); nothing is recomputed here.
"""
from io import BytesIO

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas as pdf_canvas

LEFT = 50
RIGHT_COL = 350
BOTTOM_MARGIN = 140


def _fmt(money):
    return f'{money.currency} {money.amount}'


def _header(c, venue, y):
    c.setFont('Helvetica-Bold', 14)
    c.drawString(LEFT, y, venue.name if venue else 'Venue')
    y -= 18
    c.setFont('Helvetica', 9)
    if venue and venue.address:
        for line in venue.address.split('\n')[:3]:
            c.drawString(LEFT, y, line[:80])
            y -= 12
    if venue and venue.phone:
        c.drawString(LEFT, y, venue.phone)
        y -= 14
    return y - 10


def _items(c, order, y, height):
    c.setFont('Helvetica-Bold', 9)
    c.drawString(LEFT, y, 'SN')
    c.drawString(LEFT + 30, y, 'Item Name')
    c.drawString(280, y, 'Price')
    c.drawString(340, y, 'Qty')
    c.drawString(400, y, 'Total')
    y -= 14
    c.setFont('Helvetica', 9)
    for sn, item in enumerate(order.items.all(), start=1):
        c.drawString(LEFT, y, str(sn))
        c.drawString(LEFT + 30, y, item.product_name[:35])
        c.drawString(280, y, str(item.unit_price))
        c.drawString(340, y, str(item.quantity))
        c.drawString(400, y, str(item.line_total))
        y -= 12
        for option in item.options or []:
            c.drawString(LEFT + 40, y, f'{option.get("option_name")}: {option.get("choice_name")} (+{option.get("price_modifier")})'[:60])
            y -= 11
        if y < BOTTOM_MARGIN:
            c.showPage()
            y = height - 40
            c.setFont('Helvetica', 9)
    return y - 8


def _totals(c, pricing, y):
    rows = [('Subtotal', pricing.subtotal), ('Tax', pricing.tax)]
    if pricing.service_charge.amount:
        rows.append(('Service charge', pricing.service_charge))
    if pricing.tip.amount:
        rows.append(('Tip', pricing.tip))
    if pricing.delivery_fee.amount:
        rows.append(('Delivery fee', pricing.delivery_fee))
    if pricing.discount.amount:
        rows.append(('Discount', pricing.discount))
    c.setFont('Helvetica', 9)
    for label, money in rows:
        prefix = '-' if label == 'Discount' else ''
        c.drawString(RIGHT_COL, y, f'{label}: {prefix}{_fmt(money)}')
        y -= 12
    c.setFont('Helvetica-Bold', 10)
    c.drawString(RIGHT_COL, y, f'Total: {_fmt(pricing.total)}')
    y -= 12
    c.setFont('Helvetica', 9)
    if pricing.per_head is not None:
        c.drawString(RIGHT_COL, y, f'Per head ({pricing.split_count}): {_fmt(pricing.per_head)}')
        y -= 12
    return y


def _fulfillment_line(order):
    if order.table_number:
        return f'Table: {order.table_number}'
    if order.delivery_address:
        return f'Deliver to: {order.delivery_address[:60]}'
    return f'Contact: {order.customer_contact or "-"}'


def order_bill_pdf_bytes(order, title='Order Bill'):
    """PDF bytes for one order; expects venue/customer selected and items prefetched."""
    buf = BytesIO()
    c = pdf_canvas.Canvas(buf, pagesize=A4)
    width, height = A4
    y = _header(c, order.venue, height - 40)

    c.setFont('Helvetica-Bold', 11)
    c.drawString(RIGHT_COL, height - 40, title)
    c.setFont('Helvetica', 9)
    c.drawString(RIGHT_COL, height - 54, order.order_number)
    c.drawString(RIGHT_COL, height - 66, f'Date: {order.created_at:%Y-%m-%d %H:%M}')

    c.drawString(LEFT, y, f'Customer: {order.customer.name}')
    y -= 12
    c.drawString(LEFT, y, _fulfillment_line(order))
    y -= 12
    c.drawString(LEFT, y, f'Payment: {order.payment_method or "-"}  |  Status: {order.payment_status}')
    y -= 20

    y = _items(c, order, y, height)
    _totals(c, order.pricing, y)

    c.showPage()
    c.save()
    buf.seek(0)
    return buf.getvalue()


def open_bill_pdf_bytes(bill, title='Open Bill'):
    """PDF bytes for a tab: every order with its own totals, then the grand total."""
    buf = BytesIO()
    c = pdf_canvas.Canvas(buf, pagesize=A4)
    width, height = A4
    venue = bill.orders[0].venue if bill.orders else None
    y = _header(c, venue, height - 40)
    c.setFont('Helvetica-Bold', 11)
    c.drawString(RIGHT_COL, height - 40, title)
    c.setFont('Helvetica', 9)
    c.drawString(RIGHT_COL, height - 54, f'Open for {bill.elapsed_minutes} min')

    for order in bill.orders:
        c.setFont('Helvetica-Bold', 10)
        c.drawString(LEFT, y, f'{order.order_number}  ({order.status})')
        y -= 14
        y = _items(c, order, y, height)
        y = _totals(c, order.pricing, y) - 10
        if y < BOTTOM_MARGIN:
            c.showPage()
            y = height - 40

    c.setFont('Helvetica-Bold', 11)
    c.drawString(RIGHT_COL, y, f'Grand Total: {_fmt(bill.grand_total)}')
    y -= 14
    c.setFont('Helvetica', 9)
    if bill.per_head is not None:
        c.drawString(RIGHT_COL, y, f'Per head ({bill.split_count}): {_fmt(bill.per_head)}')
        y -= 12
    if bill.spending_limit is not None:
        c.drawString(RIGHT_COL, y, f'Spending limit: {_fmt(bill.spending_limit)}')

    c.showPage()
    c.save()
    buf.seek(0)
    return buf.getvalue()
