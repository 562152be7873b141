"""
ORDERS App - Order Store

The only place that writes Order rows. Every write is a single
conditional UPDATE guarded by the expected status, so two actors racing
on the same order can never both succeed.

.update() bypasses post_save, so the store schedules the realtime
broadcast itself once the surrounding transaction commits.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from orders.exceptions import OrderNotFound
from orders.models import (
    Order, OrderEvent, OrderStatus,
    RunnerOfferEvent, OfferEventType,
)

logger = logging.getLogger(__name__)


SKIP_EVENTS = (OfferEventType.SKIPPED, OfferEventType.TIMEOUT)


@dataclass
class PendingCriteria:
    """Filter for the runner-side pending order query."""
    city: Optional[str] = None
    exclude_skipped_by: Optional[Any] = None
    limit: int = field(default_factory=lambda: settings.PENDING_ORDERS_LIMIT)


@dataclass
class AuditEntry:
    order_id: Any
    from_status: str
    to_status: str
    actor_id: Any = None
    actor_role: str = ''
    client_action_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class OrderStore:
    """Django ORM backed order store."""

    # ============================================
    # Reads
    # ============================================

    def get_order(self, order_id) -> Order:
        try:
            return Order.objects.select_related('customer', 'runner').get(pk=order_id)
        except (Order.DoesNotExist, ValidationError):
            raise OrderNotFound(order_id)

    def list_pending_orders_near(self, criteria: Optional[PendingCriteria] = None) -> List[Order]:
        """Unclaimed PENDING orders, oldest first."""
        criteria = criteria or PendingCriteria()
        qs = Order.objects.filter(
            status=OrderStatus.PENDING,
            runner__isnull=True,
        ).select_related('customer')

        if criteria.city:
            qs = qs.filter(address_snapshot__city__iexact=criteria.city)

        if criteria.exclude_skipped_by is not None:
            skipped = RunnerOfferEvent.objects.filter(
                runner_id=criteria.exclude_skipped_by,
                event__in=SKIP_EVENTS,
            ).values('order_id')
            qs = qs.exclude(pk__in=skipped)

        return list(qs.order_by('created_at')[:criteria.limit])

    def find_audit_event(self, order_id, client_action_id: str) -> Optional[OrderEvent]:
        return OrderEvent.objects.filter(
            order_id=order_id,
            client_action_id=client_action_id,
        ).first()

    def list_audit_events(self, order_id) -> List[OrderEvent]:
        return list(
            OrderEvent.objects.filter(order_id=order_id).select_related('actor')
        )

    def has_skipped(self, runner_id, order_id) -> bool:
        return RunnerOfferEvent.objects.filter(
            runner_id=runner_id,
            order_id=order_id,
            event__in=SKIP_EVENTS,
        ).exists()

    # ============================================
    # Writes
    # ============================================

    def conditional_update(
        self,
        order_id,
        expected_status: str,
        patch: Dict[str, Any],
        extra_filters: Optional[Dict[str, Any]] = None,
    ) -> Optional[Order]:
        """
        UPDATE order SET <patch> WHERE id = order_id AND status = expected_status.

        Returns the fresh order, or None when the guard did not match.
        """
        updated = Order.objects.filter(
            pk=order_id,
            status=expected_status,
            **(extra_filters or {}),
        ).update(updated_at=timezone.now(), **patch)

        if not updated:
            return None

        order = self.get_order(order_id)
        self._broadcast_on_commit(order, patch.get('status', order.status))
        return order

    def append_audit_event(self, entry: AuditEntry) -> OrderEvent:
        return OrderEvent.objects.create(
            order_id=entry.order_id,
            from_status=entry.from_status,
            to_status=entry.to_status,
            actor_id=entry.actor_id,
            actor_role=entry.actor_role,
            client_action_id=entry.client_action_id,
            metadata=entry.metadata,
        )

    def record_offer_event(self, runner_id, order_id, event: str, reason: str = '') -> RunnerOfferEvent:
        return RunnerOfferEvent.objects.create(
            runner_id=runner_id,
            order_id=order_id,
            event=event,
            reason=reason,
        )

    def record_skip_event(self, runner_id, order_id, reason: str) -> RunnerOfferEvent:
        event = OfferEventType.TIMEOUT if reason == 'timeout' else OfferEventType.SKIPPED
        logger.info(
            f"[STORE] Runner {str(runner_id)[:8]} {event.lower()} order {str(order_id)[:8]}"
        )
        return self.record_offer_event(runner_id, order_id, event, reason)

    def increment_handoff_attempts(self, order_id) -> int:
        """Atomically bump the handoff attempt counter and return the new value."""
        with transaction.atomic():
            Order.objects.filter(
                pk=order_id,
                status=OrderStatus.PENDING_HANDOFF,
            ).update(handoff_attempts=F('handoff_attempts') + 1)
            return Order.objects.values_list('handoff_attempts', flat=True).get(pk=order_id)

    # ============================================
    # Notifications
    # ============================================

    def _broadcast_on_commit(self, order: Order, change: str):
        from orders.events import broadcast_order_change

        transaction.on_commit(lambda: broadcast_order_change(order, change))
