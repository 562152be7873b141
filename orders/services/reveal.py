"""
ORDERS App - Progressive Disclosure for CASHRUN

Neither party learns the other's precise location or full identity
before the cash is physically with the runner (CASH_SECURED).

    Customer viewing the runner:
      RUNNER_ACCEPTED, RUNNER_AT_PICKUP  first name + blurred avatar, no position
      >= CASH_SECURED                    live position, full name/photo, route

    Runner viewing the order:
      PENDING                            own payout + coarse area only
      >= RUNNER_ACCEPTED                 customer first initial
      >= RUNNER_AT_PICKUP                exact cash amount
      handoff code exists / COMPLETED    exact address, customer first name

Everything here is a pure function of (status, has_handoff_code, viewer
role). Nothing is cached: callers re-derive on every read so a status
change can never leave a stale disclosure behind.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Optional

from core.models import UserRole
from orders.models import OrderStatus


class DisclosureTier(IntEnum):
    NONE = 0
    IDENTITY_MASKED = 1
    AMOUNT_REVEALED = 2
    FULL = 3


@dataclass(frozen=True)
class Disclosure:
    """Which order fields the viewer may see right now."""
    tier: DisclosureTier
    viewer_role: str

    # Customer looking at the runner
    runner_first_name: bool = False
    runner_avatar_blurred: bool = False
    runner_full_identity: bool = False
    runner_position: bool = False
    route: bool = False

    # Runner looking at the customer / order
    payout: bool = False
    coarse_area: bool = False
    customer_initial: bool = False
    cash_amount: bool = False
    exact_address: bool = False
    customer_first_name: bool = False


_LIFECYCLE = (
    OrderStatus.PENDING,
    OrderStatus.RUNNER_ACCEPTED,
    OrderStatus.RUNNER_AT_PICKUP,
    OrderStatus.CASH_SECURED,
    OrderStatus.PENDING_HANDOFF,
    OrderStatus.COMPLETED,
)


def _at_least(status: str, threshold: str) -> bool:
    if status not in _LIFECYCLE:
        return False
    return _LIFECYCLE.index(status) >= _LIFECYCLE.index(threshold)


# ============================================
# TIER COMPUTATION
# ============================================

def customer_tier(status: str) -> DisclosureTier:
    if _at_least(status, OrderStatus.CASH_SECURED):
        return DisclosureTier.FULL
    if _at_least(status, OrderStatus.RUNNER_ACCEPTED):
        return DisclosureTier.IDENTITY_MASKED
    return DisclosureTier.NONE


def runner_tier(status: str, has_handoff_code: bool) -> DisclosureTier:
    if status == OrderStatus.COMPLETED:
        return DisclosureTier.FULL
    if has_handoff_code and _at_least(status, OrderStatus.CASH_SECURED):
        return DisclosureTier.FULL
    if _at_least(status, OrderStatus.RUNNER_AT_PICKUP):
        return DisclosureTier.AMOUNT_REVEALED
    if _at_least(status, OrderStatus.RUNNER_ACCEPTED):
        return DisclosureTier.IDENTITY_MASKED
    return DisclosureTier.NONE


def reveal(status: str, has_handoff_code: bool, viewer_role: str) -> Disclosure:
    """
    Disclosure for one viewer.

    CANCELLED orders disclose nothing. Admins see everything.
    """
    if viewer_role == UserRole.ADMIN:
        return Disclosure(
            tier=DisclosureTier.FULL,
            viewer_role=viewer_role,
            runner_first_name=True,
            runner_full_identity=True,
            runner_position=True,
            route=True,
            payout=True,
            coarse_area=True,
            customer_initial=True,
            cash_amount=True,
            exact_address=True,
            customer_first_name=True,
        )

    if status == OrderStatus.CANCELLED:
        return Disclosure(tier=DisclosureTier.NONE, viewer_role=viewer_role)

    if viewer_role == UserRole.RUNNER:
        tier = runner_tier(status, has_handoff_code)
        return Disclosure(
            tier=tier,
            viewer_role=viewer_role,
            payout=True,
            coarse_area=True,
            customer_initial=tier >= DisclosureTier.IDENTITY_MASKED,
            cash_amount=tier >= DisclosureTier.AMOUNT_REVEALED,
            exact_address=tier >= DisclosureTier.FULL,
            customer_first_name=tier >= DisclosureTier.FULL,
        )

    tier = customer_tier(status)
    full = tier >= DisclosureTier.FULL
    return Disclosure(
        tier=tier,
        viewer_role=viewer_role,
        runner_first_name=tier >= DisclosureTier.IDENTITY_MASKED,
        runner_avatar_blurred=tier == DisclosureTier.IDENTITY_MASKED,
        runner_full_identity=full,
        runner_position=full,
        route=full,
    )


# ============================================
# DISPLAY HELPERS
# ============================================

def coarse_area(address: Optional[Dict[str, Any]]) -> str:
    """'Near Miami, FL' from an address snapshot, never the street line."""
    address = address or {}
    city = (address.get('city') or '').strip()
    state = (address.get('state') or '').strip()

    if city and state:
        return f"Near {city}, {state}"
    if city:
        return f"Near {city}"
    return "Nearby"


def exact_address(address: Optional[Dict[str, Any]]) -> str:
    address = address or {}
    parts = [
        address.get('line1', ''),
        address.get('line2', ''),
        address.get('city', ''),
        f"{address.get('state', '')} {address.get('postal_code', '')}".strip(),
    ]
    return ', '.join(p.strip() for p in parts if p and p.strip())


def customer_display_name(customer, disclosure: Disclosure) -> str:
    """Initial ('J.') until the handoff code exists, then the first name."""
    if customer is None:
        return 'Customer'
    if disclosure.customer_first_name and customer.first_name:
        return customer.first_name
    if disclosure.customer_initial and customer.first_initial:
        return f"{customer.first_initial}."
    return 'Customer'


def runner_display_name(runner, disclosure: Disclosure) -> str:
    """First name until cash is secured, then the full name."""
    if runner is None:
        return 'Runner'
    first = runner.first_name or 'Runner'
    if disclosure.runner_full_identity and runner.last_name:
        return f"{first} {runner.last_name}"
    if disclosure.runner_first_name:
        return first
    return 'Runner'


# ============================================
# DERIVED CUSTOMER-FACING STAGE
# ============================================

@dataclass(frozen=True)
class Stage:
    """Customer-facing stage derived from status, never persisted."""
    step: str
    label: str
    description: str


STAGES = {
    'REQUESTED': Stage('REQUESTED', 'Request received', "Request received, we're finding a runner."),
    'ASSIGNED': Stage('ASSIGNED', 'Runner assigned', 'Your request has been assigned to a vetted runner.'),
    'PREPARING': Stage('PREPARING', 'Preparing your cash', 'Your runner is preparing your cash.'),
    'ON_THE_WAY': Stage('ON_THE_WAY', 'On the way', 'Your runner has your cash and is on the way.'),
    'ARRIVED': Stage('ARRIVED', 'Arrived', 'Your runner has arrived. Please meet to receive your cash.'),
    'COMPLETED': Stage('COMPLETED', 'Completed', 'All set. Thanks for using CASHRUN.'),
    'CANCELLED': Stage('CANCELLED', 'Cancelled', 'This request has been cancelled.'),
}

TIMELINE = ['REQUESTED', 'ASSIGNED', 'PREPARING', 'ON_THE_WAY', 'ARRIVED', 'COMPLETED']


def derive_stage(status: str, has_handoff_code: bool) -> Stage:
    if status == OrderStatus.PENDING:
        return STAGES['REQUESTED']
    if status == OrderStatus.RUNNER_ACCEPTED:
        return STAGES['ASSIGNED']
    if status == OrderStatus.RUNNER_AT_PICKUP:
        return STAGES['PREPARING']
    if status == OrderStatus.CASH_SECURED:
        return STAGES['ON_THE_WAY']
    if status == OrderStatus.PENDING_HANDOFF:
        # Without a live code the runner cannot complete the handoff yet
        return STAGES['ARRIVED'] if has_handoff_code else STAGES['ON_THE_WAY']
    if status == OrderStatus.COMPLETED:
        return STAGES['COMPLETED']
    return STAGES['CANCELLED']


# ============================================
# ORDER PROJECTION
# ============================================

def viewer_role_for(order, user) -> Optional[str]:
    """Role the user plays on this order, None when unrelated."""
    if user is None or not getattr(user, 'is_authenticated', False):
        return None
    if user.role == UserRole.ADMIN or user.is_superuser:
        return UserRole.ADMIN
    if order.customer_id == user.id:
        return UserRole.CUSTOMER
    if user.role == UserRole.RUNNER:
        if order.runner_id == user.id:
            return UserRole.RUNNER
        if order.runner_id is None and order.status == OrderStatus.PENDING:
            return UserRole.RUNNER
    return None


def project_order(order, viewer_role: str) -> Dict[str, Any]:
    """
    The order as the viewer is allowed to see it.

    Withheld fields are left out entirely rather than nulled.
    """
    disclosure = reveal(order.status, order.has_handoff_code, viewer_role)
    stage = derive_stage(order.status, order.has_handoff_code)

    data: Dict[str, Any] = {
        'id': str(order.id),
        'status': order.status,
        'stage': {'step': stage.step, 'label': stage.label, 'description': stage.description},
        'disclosure_tier': disclosure.tier.name,
        'created_at': order.created_at.isoformat() if order.created_at else None,
    }

    if viewer_role in (UserRole.CUSTOMER, UserRole.ADMIN):
        data.update({
            'requested_amount': str(order.requested_amount),
            'total_service_fee': str(order.total_service_fee),
            'total_payment': str(order.total_payment),
            'address': exact_address(order.address_snapshot),
        })
        if order.runner_id:
            runner = order.runner
            runner_view: Dict[str, Any] = {
                'display_name': runner_display_name(runner, disclosure),
            }
            if disclosure.runner_full_identity:
                runner_view['avatar_url'] = runner.avatar_url or None
                runner_view['avatar_blurred'] = False
            elif disclosure.runner_avatar_blurred:
                runner_view['avatar_url'] = runner.avatar_url or None
                runner_view['avatar_blurred'] = True
            data['runner'] = runner_view
        data['can_track_runner'] = disclosure.runner_position
        data['can_show_route'] = disclosure.route

    if viewer_role in (UserRole.RUNNER, UserRole.ADMIN):
        data['payout'] = str(order.delivery_fee)
        data['pickup_name'] = order.pickup_name
        data['area'] = coarse_area(order.address_snapshot)
        if disclosure.cash_amount:
            data['cash_amount'] = str(order.requested_amount)
        if disclosure.exact_address:
            data['dropoff_address'] = exact_address(order.address_snapshot)
            data['customer_notes'] = order.customer_notes
        if disclosure.customer_initial or disclosure.customer_first_name:
            data['customer'] = {
                'display_name': customer_display_name(order.customer, disclosure),
            }

    if order.status == OrderStatus.CANCELLED:
        data['cancellation_reason'] = order.cancellation_reason

    return data
