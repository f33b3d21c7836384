"""
Async subscription to order change events over the Channels layer.

    async for event in subscribe(order_id=42):
        if event is None:  # timed out; re-read through get_order
            ...
"""
import asyncio
import logging

from channels.layers import get_channel_layer

from ..constants import setting
from ..order_notify import MESSAGE_TYPE, OrderChangeEvent, customer_group, order_group, venue_group

logger = logging.getLogger(__name__)


def filter_groups(order_id=None, customer_id=None, venue_id=None):
    groups = []
    if order_id is not None:
        groups.append(order_group(order_id))
    if customer_id is not None:
        groups.append(customer_group(customer_id))
    if venue_id is not None:
        groups.append(venue_group(venue_id))
    if not groups:
        raise ValueError('subscribe() needs order_id, customer_id or venue_id')
    return groups


async def subscribe(order_id=None, customer_id=None, venue_id=None, timeout=None, channel_layer=None):
    """
    Yield OrderChangeEvent for every change matching the filter. Each receive
    waits at most ``timeout`` seconds (VENUETAB['SUBSCRIBE_TIMEOUT'] by default);
    on timeout None is yielded so the caller can re-read state and decide whether
    to keep listening. An event published to several subscribed groups arrives
    once per group; observers drop the repeats by version.
    """
    layer = channel_layer or get_channel_layer()
    if layer is None:
        raise RuntimeError('No channel layer configured')
    timeout = float(timeout if timeout is not None else setting('SUBSCRIBE_TIMEOUT'))
    groups = filter_groups(order_id, customer_id, venue_id)
    channel = await layer.new_channel()
    for group in groups:
        await layer.group_add(group, channel)
    try:
        while True:
            try:
                message = await asyncio.wait_for(layer.receive(channel), timeout)
            except asyncio.TimeoutError:
                yield None
                continue
            if message.get('type') != MESSAGE_TYPE:
                continue
            yield OrderChangeEvent.from_message(message)
    finally:
        for group in groups:
            await layer.group_discard(group, channel)
