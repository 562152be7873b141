"""
Rating Service for CASHRUN

Customers rate their runner once, after the order is completed.
"""

import logging
from typing import Optional

from django.utils import timezone

from orders.exceptions import OrderError, StaleState
from orders.models import Order, OrderStatus
from orders.services.store import OrderStore

logger = logging.getLogger(__name__)


def rate_runner(
    order_id,
    customer,
    rating: int,
    comment: str = '',
    store: Optional[OrderStore] = None,
) -> Order:
    """
    Store the customer's 1-5 rating for the runner.

    Raises:
        OrderError: Out of range rating, not the customer, or already rated
        StaleState: The order is not completed
    """
    store = store or OrderStore()

    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise OrderError("Rating must be between 1 and 5")

    order = store.get_order(order_id)
    if order.customer_id != customer.id:
        raise OrderError("Only the customer can rate this order")
    if order.status != OrderStatus.COMPLETED:
        raise StaleState(order_id, OrderStatus.COMPLETED, order.status)
    if order.runner_rating is not None:
        raise OrderError("This order has already been rated")

    updated = store.conditional_update(
        order_id,
        OrderStatus.COMPLETED,
        {
            'runner_rating': rating,
            'runner_rating_comment': comment.strip(),
            'rated_at': timezone.now(),
        },
        extra_filters={'customer_id': customer.id, 'runner_rating__isnull': True},
    )
    if updated is None:
        raise OrderError("This order has already been rated")

    logger.info(f"[RATING] Order {str(order_id)[:8]} rated {rating}/5")
    return updated
