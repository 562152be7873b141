"""
Shared fixtures for the orders and dispatch tests.
"""

import itertools
from decimal import Decimal

from core.models import User, UserRole
from orders.models import Order, OrderStatus

_phone_numbers = itertools.count(15550100000)


def make_user(role=UserRole.CUSTOMER, **extra):
    extra.setdefault('first_name', 'Test')
    return User.objects.create_user(
        phone_number=f'+{next(_phone_numbers)}',
        role=role,
        **extra
    )


def make_customer(**extra):
    extra.setdefault('first_name', 'Jane')
    extra.setdefault('last_name', 'Doe')
    return make_user(UserRole.CUSTOMER, **extra)


def make_runner(**extra):
    extra.setdefault('first_name', 'Marcus')
    extra.setdefault('last_name', 'Reed')
    return make_user(UserRole.RUNNER, **extra)


def make_admin(**extra):
    extra.setdefault('first_name', 'Ada')
    return make_user(UserRole.ADMIN, **extra)


def make_order(customer, **extra):
    """A PENDING order in Miami unless told otherwise."""
    defaults = {
        'requested_amount': Decimal('200.00'),
        'platform_fee': Decimal('4.00'),
        'compliance_fee': Decimal('1.00'),
        'delivery_fee': Decimal('12.50'),
        'total_service_fee': Decimal('17.50'),
        'total_payment': Decimal('217.50'),
        'pickup_name': 'Chase ATM - Brickell',
        'address_snapshot': {
            'line1': '1200 Brickell Ave',
            'line2': 'Apt 1504',
            'city': 'Miami',
            'state': 'FL',
            'postal_code': '33131',
        },
        'customer_notes': 'Call on arrival',
    }
    defaults.update(extra)
    return Order.objects.create(customer=customer, **defaults)


def force_status(order, status, runner=None, **fields):
    """Put an order straight into a status for test setup, skipping the state machine."""
    if runner is not None:
        fields['runner'] = runner
    Order.objects.filter(pk=order.pk).update(status=status, **fields)
    order.refresh_from_db()
    return order


def order_at(customer, runner, status=OrderStatus.RUNNER_ACCEPTED, **extra):
    return force_status(make_order(customer, **extra), status, runner=runner)
