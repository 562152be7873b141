"""
ORDERS App - Acceptance Claim

At-most-one-winner accept. Many runners can hold an offer for the same
PENDING order; the claim is a single conditional UPDATE

    SET runner = :runner, status = RUNNER_ACCEPTED
    WHERE id = :order AND status = PENDING AND runner IS NULL

so the database picks the winner. There is no read-then-write.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from django.db import transaction

from orders.exceptions import AlreadyClaimed, NotAssignedRunner, StaleState
from orders.models import Order, OrderStatus, OfferEventType
from orders.services.notifications import notify
from orders.services.store import OrderStore
from orders.services.transitions import attempt_transition

logger = logging.getLogger(__name__)


@dataclass
class ClaimResult:
    won: bool
    order: Order


class AcceptanceClaim:
    """Runs the claim for one runner against the order store."""

    def __init__(self, store: Optional[OrderStore] = None):
        self.store = store or OrderStore()

    def claim(self, order_id, runner) -> ClaimResult:
        """
        Claim a PENDING order for runner.

        Raises:
            AlreadyClaimed: Someone else won, or the order left PENDING
            NotAssignedRunner: The user cannot take jobs
            OrderNotFound: No such order
        """
        if not getattr(runner, 'is_runner', False):
            raise NotAssignedRunner("Only runners can accept orders")
        if not runner.is_active:
            raise NotAssignedRunner("Your account is disabled")

        try:
            with transaction.atomic():
                order = attempt_transition(
                    order_id,
                    OrderStatus.PENDING,
                    OrderStatus.RUNNER_ACCEPTED,
                    runner,
                    patch={'runner': runner},
                    extra_filters={'runner__isnull': True},
                    store=self.store,
                )
                self.store.record_offer_event(runner.id, order.id, OfferEventType.ACCEPTED)
        except StaleState as e:
            logger.info(
                f"[CLAIM] Runner {str(runner.id)[:8]} lost order {str(order_id)[:8]} "
                f"(now {e.current_status})"
            )
            raise AlreadyClaimed(order_id, e.current_status)

        notify(order.customer_id, 'runner_assigned', {
            'order_id': str(order.id),
            'runner_first_name': runner.first_name,
        })
        logger.info(f"[CLAIM] Order {str(order_id)[:8]} claimed by runner {str(runner.id)[:8]}")
        return ClaimResult(won=True, order=order)
