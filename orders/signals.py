"""
ORDERS App - Django Signals

New orders are created with a regular save(), so post_save is where
runners first hear about them. Later changes go through OrderStore,
which broadcasts on its own.
"""

import logging

from django.db import transaction
from django.db.models.signals import post_save
from django.dispatch import receiver

from orders.events import broadcast_order_change
from orders.models import Order, OrderStatus

logger = logging.getLogger(__name__)


@receiver(post_save, sender=Order)
def on_order_created(sender, instance, created, **kwargs):
    if not created or instance.status != OrderStatus.PENDING:
        return

    logger.info(f"[SIGNAL] New order created: {str(instance.id)[:8]}")
    transaction.on_commit(lambda: broadcast_order_change(instance, OrderStatus.PENDING))
