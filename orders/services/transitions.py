"""
ORDERS App - Status Transition Table for CASHRUN

Defines the legal order lifecycle and the only write path for status:

    PENDING -> RUNNER_ACCEPTED -> RUNNER_AT_PICKUP -> CASH_SECURED
            -> PENDING_HANDOFF -> COMPLETED

CANCELLED is reachable from every non-terminal status. COMPLETED and
CANCELLED are terminal.

Every transition is an optimistic-concurrency write: it only lands if
the persisted status still equals the status the caller expected.
"""

import logging
from typing import Any, Dict, FrozenSet, List, Optional

from django.db import transaction
from django.utils import timezone

from core.models import UserRole
from orders.exceptions import (
    CancellationNotAllowed, IllegalTransition,
    NotAssignedRunner, StaleState,
)
from orders.models import Order, OrderEvent, OrderStatus
from orders.services.notifications import notify
from orders.services.store import AuditEntry, OrderStore

logger = logging.getLogger(__name__)


# ============================================
# TRANSITION TABLE
# ============================================

LIFECYCLE: List[str] = [
    OrderStatus.PENDING,
    OrderStatus.RUNNER_ACCEPTED,
    OrderStatus.RUNNER_AT_PICKUP,
    OrderStatus.CASH_SECURED,
    OrderStatus.PENDING_HANDOFF,
    OrderStatus.COMPLETED,
]

TERMINAL_STATUSES: FrozenSet[str] = frozenset({
    OrderStatus.COMPLETED,
    OrderStatus.CANCELLED,
})

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.RUNNER_ACCEPTED, OrderStatus.CANCELLED}),
    OrderStatus.RUNNER_ACCEPTED: frozenset({OrderStatus.RUNNER_AT_PICKUP, OrderStatus.CANCELLED}),
    OrderStatus.RUNNER_AT_PICKUP: frozenset({OrderStatus.CASH_SECURED, OrderStatus.CANCELLED}),
    OrderStatus.CASH_SECURED: frozenset({OrderStatus.PENDING_HANDOFF, OrderStatus.CANCELLED}),
    OrderStatus.PENDING_HANDOFF: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Lifecycle timestamp stamped in the same write as the status
STATUS_TIMESTAMP_FIELD: Dict[str, str] = {
    OrderStatus.RUNNER_ACCEPTED: 'runner_accepted_at',
    OrderStatus.RUNNER_AT_PICKUP: 'runner_at_pickup_at',
    OrderStatus.CASH_SECURED: 'cash_secured_at',
    OrderStatus.PENDING_HANDOFF: 'handoff_ready_at',
    OrderStatus.COMPLETED: 'handoff_completed_at',
    OrderStatus.CANCELLED: 'cancelled_at',
}

# Customers may only back out before the runner reaches the pickup point
CUSTOMER_CANCELLABLE: FrozenSet[str] = frozenset({
    OrderStatus.PENDING,
    OrderStatus.RUNNER_ACCEPTED,
})

# Steps the assigned runner drives directly: target -> expected current status
RUNNER_STEPS: Dict[str, str] = {
    OrderStatus.RUNNER_AT_PICKUP: OrderStatus.RUNNER_ACCEPTED,
    OrderStatus.CASH_SECURED: OrderStatus.RUNNER_AT_PICKUP,
}

# Customer notification sent when a runner step lands
RUNNER_STEP_EVENTS: Dict[str, str] = {
    OrderStatus.RUNNER_AT_PICKUP: 'runner_at_pickup',
    OrderStatus.CASH_SECURED: 'runner_on_the_way',
}


def is_legal_transition(from_status: str, to_status: str) -> bool:
    return to_status in TRANSITIONS.get(from_status, frozenset())


def valid_next_statuses(status: str) -> List[str]:
    """Successors of status, in lifecycle order with CANCELLED last."""
    successors = TRANSITIONS.get(status, frozenset())
    ordered = [s for s in LIFECYCLE if s in successors]
    if OrderStatus.CANCELLED in successors:
        ordered.append(OrderStatus.CANCELLED)
    return ordered


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def status_rank(status: str) -> Optional[int]:
    """Position in the lifecycle, None for CANCELLED."""
    try:
        return LIFECYCLE.index(status)
    except ValueError:
        return None


def _actor_role(actor) -> str:
    if actor is None:
        return 'SYSTEM'
    return getattr(actor, 'role', '') or ''


# ============================================
# TRANSITION OPERATIONS
# ============================================

def attempt_transition(
    order_id,
    expected_status: str,
    to_status: str,
    actor=None,
    *,
    actor_role: Optional[str] = None,
    patch: Optional[Dict[str, Any]] = None,
    extra_filters: Optional[Dict[str, Any]] = None,
    client_action_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    store: Optional[OrderStore] = None,
) -> Order:
    """
    Move an order from expected_status to to_status.

    Args:
        order_id: UUID of the order
        expected_status: Status the caller believes the order is in
        to_status: Target status (must be a successor of expected_status)
        actor: User performing the change (None for system actions)
        patch: Extra fields written in the same UPDATE
        extra_filters: Extra guard conditions for the UPDATE
        client_action_id: Idempotency key, a replay returns the current order

    Returns:
        The updated Order

    Raises:
        IllegalTransition: No edge in the table (never retry)
        StaleState: The persisted status no longer matches expected_status
        OrderNotFound: No such order
    """
    if not is_legal_transition(expected_status, to_status):
        raise IllegalTransition(expected_status, to_status)

    store = store or OrderStore()

    if client_action_id and store.find_audit_event(order_id, client_action_id):
        logger.info(
            f"[TRANSITION] Replayed action {client_action_id} on order {str(order_id)[:8]}"
        )
        return store.get_order(order_id)

    fields = {'status': to_status}
    timestamp_field = STATUS_TIMESTAMP_FIELD.get(to_status)
    if timestamp_field:
        fields[timestamp_field] = timezone.now()
    fields.update(patch or {})

    with transaction.atomic():
        order = store.conditional_update(order_id, expected_status, fields, extra_filters)
        if order is None:
            current = store.get_order(order_id)
            raise StaleState(order_id, expected_status, current.status)

        store.append_audit_event(AuditEntry(
            order_id=order.id,
            from_status=expected_status,
            to_status=to_status,
            actor_id=getattr(actor, 'id', None),
            actor_role=actor_role or _actor_role(actor),
            client_action_id=client_action_id,
            metadata=metadata or {},
        ))

    logger.info(
        f"[TRANSITION] Order {str(order_id)[:8]}: {expected_status} -> {to_status}"
    )
    return order


def advance_runner_step(
    order_id,
    runner,
    to_status: str,
    client_action_id: Optional[str] = None,
    store: Optional[OrderStore] = None,
) -> Order:
    """
    Runner-driven step (arrived at pickup, cash secured).

    A StaleState whose current status already equals to_status is a
    duplicate submission and resolves to the current order.
    """
    store = store or OrderStore()
    expected = RUNNER_STEPS.get(to_status)
    order = store.get_order(order_id)

    if expected is None:
        raise IllegalTransition(order.status, to_status)

    if order.runner_id != runner.id:
        raise NotAssignedRunner("You are not the runner assigned to this order")

    try:
        order = attempt_transition(
            order_id,
            expected,
            to_status,
            runner,
            extra_filters={'runner_id': runner.id},
            client_action_id=client_action_id,
            store=store,
        )
    except StaleState as e:
        if e.current_status == to_status:
            return store.get_order(order_id)
        raise

    notify(order.customer_id, RUNNER_STEP_EVENTS[to_status], {
        'order_id': str(order.id),
        'status': order.status,
    })
    return order


def cancel_order(
    order_id,
    actor,
    reason: str = '',
    client_action_id: Optional[str] = None,
    store: Optional[OrderStore] = None,
) -> Order:
    """
    Cancel an order on behalf of a customer or an admin.

    Customers may cancel their own order while PENDING or RUNNER_ACCEPTED.
    Admins may cancel any non-terminal order. Runner cancellations go
    through operations, not this path.
    """
    store = store or OrderStore()
    order = store.get_order(order_id)

    if client_action_id and store.find_audit_event(order.id, client_action_id):
        return order

    if is_terminal(order.status):
        raise IllegalTransition(order.status, OrderStatus.CANCELLED)

    role = _actor_role(actor)
    is_admin = role == UserRole.ADMIN or getattr(actor, 'is_superuser', False)

    if not is_admin:
        if role == UserRole.RUNNER:
            raise CancellationNotAllowed("Runners cannot cancel orders, contact support")
        if order.customer_id != getattr(actor, 'id', None):
            raise CancellationNotAllowed("You can only cancel your own orders")
        if order.status not in CUSTOMER_CANCELLABLE:
            raise CancellationNotAllowed(
                "This order can no longer be cancelled, the runner is already at the pickup point"
            )

    order = attempt_transition(
        order_id,
        order.status,
        OrderStatus.CANCELLED,
        actor,
        patch={
            'cancelled_by': actor,
            'cancelled_by_role': role,
            'cancellation_reason': reason,
        },
        client_action_id=client_action_id,
        metadata={'reason': reason} if reason else None,
        store=store,
    )

    payload = {'order_id': str(order.id), 'cancelled_by_role': role, 'reason': reason}
    for user_id in (order.customer_id, order.runner_id):
        if user_id and user_id != getattr(actor, 'id', None):
            notify(user_id, 'order_cancelled', payload)

    logger.info(f"[TRANSITION] Order {str(order_id)[:8]} cancelled by {role}")
    return order


def order_history(order_id, store: Optional[OrderStore] = None) -> List[OrderEvent]:
    """Audit trail, oldest first."""
    store = store or OrderStore()
    store.get_order(order_id)
    return store.list_audit_events(order_id)
