"""
WebSocket consumers for live order tracking and open tabs.

    /ws/orders/<order_id>/?customer_id=<id>           customer owning the order
    /ws/orders/<order_id>/?token=<key>                staff (DRF token)
    /ws/tabs/<venue_id>/?customer_id=<id>             the customer's open tab
    /ws/tabs/<venue_id>/?token=<key>                  every open tab at the venue

On connect the current snapshot is sent (same shape as the HTTP pull path),
then every change event follows. Clients apply events by version and re-fetch
on a gap.
"""
import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from rest_framework.authtoken.models import Token

from ..models import Customer, Order
from ..order_notify import OrderChangeEvent, customer_group, order_group, venue_group

logger = logging.getLogger(__name__)


def _query_params(scope):
    query = scope.get('query_string', b'').decode()
    return {k: v[0] for k, v in parse_qs(query).items() if v}


def _resolve(params):
    """Return ('customer', Customer) / ('staff', User) / (None, error)."""
    token = params.get('token')
    if token:
        try:
            user = Token.objects.select_related('user').get(key=token).user
        except Token.DoesNotExist:
            return None, 'Invalid token'
        if not user.is_staff:
            return None, 'Forbidden'
        return 'staff', user
    raw = params.get('customer_id') or ''
    if raw.isdigit():
        customer = Customer.objects.filter(pk=int(raw)).first()
        if customer is not None:
            return 'customer', customer
    return None, 'Identification required'


@database_sync_to_async
def authorize_order(order_id, params):
    mode, who = _resolve(params)
    if mode is None:
        return False, who, None
    order = Order.objects.filter(pk=order_id).first()
    if order is None:
        return False, 'Not found', None
    if mode == 'customer' and order.customer_id != who.pk:
        return False, 'Forbidden', None
    return True, None, order.pk


@database_sync_to_async
def authorize_tab(venue_id, params):
    mode, who = _resolve(params)
    if mode is None:
        return False, who, None
    return True, None, (mode, who.pk)


@database_sync_to_async
def order_snapshot(order_id):
    from .. import services
    from ..utils import order_to_dict

    try:
        return order_to_dict(services.get_order(order_id))
    except Order.DoesNotExist:
        return None


@database_sync_to_async
def tab_snapshot(venue_id, customer_id=None):
    from ..tabs import get_open_bill, list_open_bills
    from ..utils import open_bill_to_dict

    if customer_id is not None:
        bill = get_open_bill(customer_id, venue_id)
        return {'type': 'tab', 'tab': open_bill_to_dict(bill) if bill else None}
    return {'type': 'tabs', 'tabs': [open_bill_to_dict(b) for b in list_open_bills(venue_id)]}


class OrderTrackingConsumer(AsyncJsonWebsocketConsumer):
    """Streams one order: snapshot on connect, then change events."""

    async def connect(self):
        raw = self.scope['url_route']['kwargs'].get('order_id')
        if not raw:
            await self.close(code=4000)
            return
        params = _query_params(self.scope)
        if not params.get('token') and not params.get('customer_id'):
            await self.close(code=4001)
            return
        ok, err, order_id = await authorize_order(int(raw), params)
        if not ok:
            logger.info('Rejected order stream %s: %s', raw, err)
            await self.close(code=4004 if err == 'Not found' else 4003)
            return
        self.order_id = order_id
        self.group_name = order_group(order_id)
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()
        await self.send_json({'type': 'snapshot', 'order': await order_snapshot(order_id)})

    async def disconnect(self, close_code):
        if hasattr(self, 'group_name'):
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def receive_json(self, content, **kwargs):
        # {"action": "refetch"} after a detected gap
        if content.get('action') == 'refetch':
            await self.send_json({'type': 'snapshot', 'order': await order_snapshot(self.order_id)})

    async def order_change(self, message):
        await self.send_json({'type': 'event', 'event': message['event']})


class TabConsumer(AsyncJsonWebsocketConsumer):
    """
    Streams open tabs at a venue. Every change to a constituent order re-sends
    the recomputed tab(s), so clients never add totals themselves.
    """

    async def connect(self):
        raw = self.scope['url_route']['kwargs'].get('venue_id')
        if not raw:
            await self.close(code=4000)
            return
        params = _query_params(self.scope)
        ok, err, identity = await authorize_tab(int(raw), params)
        if not ok:
            await self.close(code=4001 if err == 'Identification required' else 4003)
            return
        self.venue_id = int(raw)
        mode, pk = identity
        self.customer_id = pk if mode == 'customer' else None
        if self.customer_id is not None:
            self.group_name = customer_group(self.customer_id)
        else:
            self.group_name = venue_group(self.venue_id)
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()
        await self.send_json(await tab_snapshot(self.venue_id, self.customer_id))

    async def disconnect(self, close_code):
        if hasattr(self, 'group_name'):
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def order_change(self, message):
        event = OrderChangeEvent.from_message(message)
        if event.venue_id != self.venue_id:
            return
        payload = await tab_snapshot(self.venue_id, self.customer_id)
        payload['cause'] = {'order_id': event.order_id, 'version': event.version, 'kind': event.kind}
        await self.send_json(payload)
