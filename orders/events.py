"""
ORDERS App - Real-time Event Broadcasting

Change hints for the order table, sent on the channel layer. A hint
only says "this order changed"; listeners re-read the order before
acting on it.

Groups:
- order_<id>      everyone watching one order
- customer_<id>   the customer's devices
- runner_<id>     the assigned runner's devices
- orders_pending  online runners looking for work
"""

import logging
from typing import List

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.utils import timezone

from orders.models import Order, OrderStatus

logger = logging.getLogger(__name__)


PENDING_GROUP = 'orders_pending'


def _send_group_event(group_name: str, event: dict) -> bool:
    """Send event to a channel group."""
    channel_layer = get_channel_layer()
    if not channel_layer:
        return False

    try:
        async_to_sync(channel_layer.group_send)(group_name, event)
        return True
    except Exception as e:
        logger.error(f"[EVENTS] Failed to send to group {group_name}: {e}")
        return False


def groups_for_order(order: Order, change: str) -> List[str]:
    groups = [f'order_{order.id}', f'customer_{order.customer_id}']
    if order.runner_id:
        groups.append(f'runner_{order.runner_id}')
    # Runners holding an offer need to hear when it leaves PENDING too
    if order.status == OrderStatus.PENDING or change in (
        OrderStatus.RUNNER_ACCEPTED, OrderStatus.CANCELLED,
    ):
        groups.append(PENDING_GROUP)
    return groups


def broadcast_order_change(order: Order, change: str) -> int:
    """
    Broadcast an order change hint to every interested group.

    Returns the number of groups reached.
    """
    event = {
        'type': 'order.changed',
        'order_id': str(order.id),
        'change': change,
        'timestamp': timezone.now().isoformat(),
    }

    sent = 0
    for group in groups_for_order(order, change):
        if _send_group_event(group, event):
            sent += 1

    logger.debug(f"[EVENTS] Order {str(order.id)[:8]} {change} -> {sent} groups")
    return sent
