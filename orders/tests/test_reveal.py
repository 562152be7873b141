"""
CASHRUN Progressive Disclosure Tests
====================================

Tests for:
1. Tier computation per viewer role
2. Monotonic disclosure along the lifecycle
3. Display helpers and derived stages
4. project_order() leaves withheld fields out
"""

from types import SimpleNamespace

from django.test import SimpleTestCase, TestCase

from core.models import UserRole
from orders.models import OrderStatus
from orders.services.reveal import (
    DisclosureTier, coarse_area, customer_display_name, derive_stage,
    exact_address, project_order, reveal, runner_display_name, viewer_role_for,
)
from orders.services.transitions import LIFECYCLE
from orders.tests.helpers import (
    force_status, make_admin, make_customer, make_order, make_runner, order_at,
)


def _flags(disclosure):
    return {
        name for name, value in vars(disclosure).items()
        if value is True
    }


class TestRevealPolicy(SimpleTestCase):

    # ==========================================
    # Runner viewing the order
    # ==========================================

    def test_runner_offer_shows_payout_and_area_only(self):
        d = reveal(OrderStatus.PENDING, False, UserRole.RUNNER)
        self.assertEqual(d.tier, DisclosureTier.NONE)
        self.assertTrue(d.payout)
        self.assertTrue(d.coarse_area)
        self.assertFalse(d.customer_initial)
        self.assertFalse(d.cash_amount)
        self.assertFalse(d.exact_address)

    def test_runner_sees_initial_after_accepting(self):
        d = reveal(OrderStatus.RUNNER_ACCEPTED, False, UserRole.RUNNER)
        self.assertTrue(d.customer_initial)
        self.assertFalse(d.cash_amount)

    def test_runner_sees_amount_at_pickup_but_not_address(self):
        d = reveal(OrderStatus.RUNNER_AT_PICKUP, False, UserRole.RUNNER)
        self.assertTrue(d.cash_amount)
        self.assertFalse(d.exact_address)
        self.assertFalse(d.customer_first_name)

    def test_cash_secured_without_code_keeps_address_hidden(self):
        d = reveal(OrderStatus.CASH_SECURED, False, UserRole.RUNNER)
        self.assertEqual(d.tier, DisclosureTier.AMOUNT_REVEALED)
        self.assertFalse(d.exact_address)

    def test_handoff_code_reveals_address_to_runner(self):
        d = reveal(OrderStatus.PENDING_HANDOFF, True, UserRole.RUNNER)
        self.assertEqual(d.tier, DisclosureTier.FULL)
        self.assertTrue(d.exact_address)
        self.assertTrue(d.customer_first_name)

    def test_completed_is_full_for_runner(self):
        self.assertEqual(reveal(OrderStatus.COMPLETED, False, UserRole.RUNNER).tier, DisclosureTier.FULL)

    # ==========================================
    # Customer viewing the runner
    # ==========================================

    def test_customer_sees_blurred_runner_before_cash_secured(self):
        for status in (OrderStatus.RUNNER_ACCEPTED, OrderStatus.RUNNER_AT_PICKUP):
            d = reveal(status, False, UserRole.CUSTOMER)
            self.assertTrue(d.runner_first_name, status)
            self.assertTrue(d.runner_avatar_blurred, status)
            self.assertFalse(d.runner_position, status)
            self.assertFalse(d.runner_full_identity, status)

    def test_runner_position_flips_with_cash_secured(self):
        """No status before CASH_SECURED exposes the position; CASH_SECURED itself does."""
        before = reveal(OrderStatus.RUNNER_AT_PICKUP, False, UserRole.CUSTOMER)
        after = reveal(OrderStatus.CASH_SECURED, False, UserRole.CUSTOMER)

        self.assertFalse(before.runner_position)
        self.assertTrue(after.runner_position)
        self.assertTrue(after.route)
        self.assertTrue(after.runner_full_identity)
        self.assertFalse(after.runner_avatar_blurred)

    # ==========================================
    # Monotonicity and special roles
    # ==========================================

    def test_disclosure_never_shrinks_along_the_lifecycle(self):
        for role in (UserRole.RUNNER, UserRole.CUSTOMER):
            for has_code in (False, True):
                previous = None
                for status in LIFECYCLE:
                    current = reveal(status, has_code, role)
                    if previous is not None:
                        self.assertGreaterEqual(current.tier, previous.tier, (role, status))
                        # blurred avatar is replaced by the full identity, not lost
                        lost = _flags(previous) - _flags(current) - {'runner_avatar_blurred'}
                        self.assertEqual(lost, set(), (role, status))
                    previous = current

    def test_generating_the_code_only_adds_disclosure(self):
        without = reveal(OrderStatus.PENDING_HANDOFF, False, UserRole.RUNNER)
        with_code = reveal(OrderStatus.PENDING_HANDOFF, True, UserRole.RUNNER)
        self.assertGreater(with_code.tier, without.tier)
        self.assertTrue(_flags(without) <= _flags(with_code))

    def test_cancelled_discloses_nothing(self):
        for role in (UserRole.RUNNER, UserRole.CUSTOMER):
            d = reveal(OrderStatus.CANCELLED, True, role)
            self.assertEqual(d.tier, DisclosureTier.NONE)
            self.assertEqual(_flags(d), set())

    def test_admin_sees_everything(self):
        d = reveal(OrderStatus.PENDING, False, UserRole.ADMIN)
        self.assertEqual(d.tier, DisclosureTier.FULL)
        self.assertTrue(d.exact_address)
        self.assertTrue(d.runner_position)


class TestDisplayHelpers(SimpleTestCase):

    def test_coarse_area(self):
        self.assertEqual(coarse_area({'city': 'Miami', 'state': 'FL', 'line1': '1 Main'}), 'Near Miami, FL')
        self.assertEqual(coarse_area({'city': 'Miami'}), 'Near Miami')
        self.assertEqual(coarse_area({}), 'Nearby')
        self.assertEqual(coarse_area(None), 'Nearby')

    def test_exact_address(self):
        address = {'line1': '1 Main St', 'city': 'Miami', 'state': 'FL', 'postal_code': '33131'}
        self.assertEqual(exact_address(address), '1 Main St, Miami, FL 33131')

    def test_customer_display_name(self):
        customer = SimpleNamespace(first_name='Jane', first_initial='J')
        masked = reveal(OrderStatus.RUNNER_ACCEPTED, False, UserRole.RUNNER)
        full = reveal(OrderStatus.PENDING_HANDOFF, True, UserRole.RUNNER)
        offer = reveal(OrderStatus.PENDING, False, UserRole.RUNNER)

        self.assertEqual(customer_display_name(customer, offer), 'Customer')
        self.assertEqual(customer_display_name(customer, masked), 'J.')
        self.assertEqual(customer_display_name(customer, full), 'Jane')

    def test_runner_display_name(self):
        runner = SimpleNamespace(first_name='Marcus', last_name='Reed')
        masked = reveal(OrderStatus.RUNNER_ACCEPTED, False, UserRole.CUSTOMER)
        full = reveal(OrderStatus.CASH_SECURED, False, UserRole.CUSTOMER)

        self.assertEqual(runner_display_name(runner, masked), 'Marcus')
        self.assertEqual(runner_display_name(runner, full), 'Marcus Reed')

    def test_derived_stage_uses_handoff_code(self):
        self.assertEqual(derive_stage(OrderStatus.PENDING_HANDOFF, True).step, 'ARRIVED')
        self.assertEqual(derive_stage(OrderStatus.PENDING_HANDOFF, False).step, 'ON_THE_WAY')
        self.assertEqual(derive_stage(OrderStatus.PENDING, False).step, 'REQUESTED')
        self.assertEqual(derive_stage(OrderStatus.CANCELLED, False).step, 'CANCELLED')


class TestProjectOrder(TestCase):

    def setUp(self):
        self.customer = make_customer()
        self.runner = make_runner()

    def test_offer_projection_withholds_customer_data(self):
        order = make_order(self.customer)
        data = project_order(order, UserRole.RUNNER)

        self.assertEqual(data['payout'], '12.50')
        self.assertEqual(data['area'], 'Near Miami, FL')
        for withheld in ('cash_amount', 'dropoff_address', 'customer', 'customer_notes', 'requested_amount'):
            self.assertNotIn(withheld, data)

    def test_runner_projection_after_handoff_code(self):
        order = order_at(
            self.customer, self.runner, OrderStatus.PENDING_HANDOFF,
            handoff_code_hash='abc',
        )
        data = project_order(order, UserRole.RUNNER)

        self.assertEqual(data['cash_amount'], '200.00')
        self.assertIn('1200 Brickell Ave', data['dropoff_address'])
        self.assertEqual(data['customer']['display_name'], 'Jane')
        self.assertEqual(data['stage']['step'], 'ARRIVED')

    def test_customer_projection_before_cash_secured(self):
        order = order_at(self.customer, self.runner, OrderStatus.RUNNER_AT_PICKUP)
        data = project_order(order, UserRole.CUSTOMER)

        self.assertEqual(data['runner']['display_name'], 'Marcus')
        self.assertTrue(data['runner']['avatar_blurred'])
        self.assertFalse(data['can_track_runner'])

    def test_customer_projection_after_cash_secured(self):
        order = order_at(self.customer, self.runner, OrderStatus.CASH_SECURED)
        data = project_order(order, UserRole.CUSTOMER)

        self.assertEqual(data['runner']['display_name'], 'Marcus Reed')
        self.assertFalse(data['runner']['avatar_blurred'])
        self.assertTrue(data['can_track_runner'])

    def test_viewer_role_for(self):
        order = make_order(self.customer)
        self.assertEqual(viewer_role_for(order, self.customer), UserRole.CUSTOMER)
        self.assertEqual(viewer_role_for(order, self.runner), UserRole.RUNNER)
        self.assertEqual(viewer_role_for(order, make_admin()), UserRole.ADMIN)

        force_status(order, OrderStatus.RUNNER_ACCEPTED, runner=make_runner())
        self.assertIsNone(viewer_role_for(order, self.runner))
        self.assertIsNone(viewer_role_for(order, make_customer()))
