"""
CASHRUN Handoff Verification Tests
==================================

Tests for:
1. Code generation (hash only, plaintext to the customer)
2. Verification (attempt counting, lockout, expiry, format)
3. Code reissue by the customer
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

from django.test import TestCase
from django.utils import timezone

from orders.exceptions import NotAssignedRunner, OrderError, StaleState, VerificationFailed
from orders.models import Order, OrderEvent, OrderStatus
from orders.services.handoff import HandoffVerifier, hash_handoff_code
from orders.tests.helpers import make_customer, make_runner, order_at


@patch('orders.services.handoff.notify')
@patch.object(HandoffVerifier, '_new_code', return_value='4821')
class TestHandoffVerifier(TestCase):

    def setUp(self):
        self.customer = make_customer()
        self.runner = make_runner()
        self.order = order_at(self.customer, self.runner, OrderStatus.CASH_SECURED)
        self.verifier = HandoffVerifier(max_attempts=3, code_length=4)

    # ==========================================
    # Generation
    # ==========================================

    def test_generate_moves_to_pending_handoff(self, mock_code, mock_notify):
        order = self.verifier.generate_code(self.order.id, self.runner)

        self.assertEqual(order.status, OrderStatus.PENDING_HANDOFF)
        self.assertEqual(order.handoff_attempts, 0)
        self.assertIsNotNone(order.handoff_ready_at)
        self.assertGreater(order.handoff_code_expires_at, timezone.now())

    def test_only_the_hash_is_stored(self, mock_code, mock_notify):
        order = self.verifier.generate_code(self.order.id, self.runner)

        self.assertNotEqual(order.handoff_code_hash, '4821')
        self.assertEqual(order.handoff_code_hash, hash_handoff_code(order.id, '4821'))

    def test_code_goes_to_the_customer_only(self, mock_code, mock_notify):
        self.verifier.generate_code(self.order.id, self.runner)

        mock_notify.assert_called_once()
        user_id, event_type, payload = mock_notify.call_args[0]
        self.assertEqual(user_id, self.customer.id)
        self.assertEqual(event_type, 'handoff_code_ready')
        self.assertEqual(payload['code'], '4821')

    def test_other_runner_cannot_generate(self, mock_code, mock_notify):
        with self.assertRaises(NotAssignedRunner):
            self.verifier.generate_code(self.order.id, make_runner())
        mock_notify.assert_not_called()

    def test_generate_requires_cash_secured(self, mock_code, mock_notify):
        order = order_at(self.customer, self.runner, OrderStatus.RUNNER_AT_PICKUP)
        with self.assertRaises(StaleState):
            self.verifier.generate_code(order.id, self.runner)

    # ==========================================
    # Verification
    # ==========================================

    def test_correct_code_completes_order(self, mock_code, mock_notify):
        self.verifier.generate_code(self.order.id, self.runner)
        order = self.verifier.verify_code(self.order.id, self.runner, '4821')

        self.assertEqual(order.status, OrderStatus.COMPLETED)
        self.assertIsNotNone(order.handoff_verified_at)
        self.assertIsNotNone(order.handoff_completed_at)
        self.assertIsNone(order.handoff_code_hash)
        self.assertEqual(mock_notify.call_args[0][1], 'handoff_verified')

    def test_wrong_code_counts_an_attempt(self, mock_code, mock_notify):
        self.verifier.generate_code(self.order.id, self.runner)

        with self.assertRaises(VerificationFailed) as ctx:
            self.verifier.verify_code(self.order.id, self.runner, '1234')

        self.assertEqual(ctx.exception.attempts_remaining, 2)
        self.assertFalse(ctx.exception.locked)
        self.order.refresh_from_db()
        self.assertEqual(self.order.handoff_attempts, 1)
        self.assertEqual(self.order.status, OrderStatus.PENDING_HANDOFF)

    def test_three_wrong_codes_lock_the_order(self, mock_code, mock_notify):
        """Third wrong code exhausts the attempts; a fourth never reaches the store."""
        self.verifier.generate_code(self.order.id, self.runner)

        for expected_remaining in (2, 1):
            with self.assertRaises(VerificationFailed) as ctx:
                self.verifier.verify_code(self.order.id, self.runner, '1234')
            self.assertEqual(ctx.exception.attempts_remaining, expected_remaining)

        with self.assertRaises(VerificationFailed) as ctx:
            self.verifier.verify_code(self.order.id, self.runner, '1234')
        self.assertTrue(ctx.exception.locked)
        self.assertEqual(ctx.exception.attempts_remaining, 0)

        self.verifier.store = MagicMock()
        with self.assertRaises(VerificationFailed) as ctx:
            self.verifier.verify_code(self.order.id, self.runner, '4821')
        self.assertTrue(ctx.exception.locked)
        self.verifier.store.get_order.assert_not_called()

    def test_locked_order_stays_locked_for_a_fresh_verifier(self, mock_code, mock_notify):
        self.verifier.generate_code(self.order.id, self.runner)
        Order.objects.filter(pk=self.order.pk).update(handoff_attempts=3)

        other = HandoffVerifier(max_attempts=3, code_length=4)
        with self.assertRaises(VerificationFailed) as ctx:
            other.verify_code(self.order.id, self.runner, '4821')
        self.assertTrue(ctx.exception.locked)
        self.assertTrue(other.is_locked(self.order.id))

    def test_lock_memory_is_bounded(self, mock_code, mock_notify):
        verifier = HandoffVerifier(max_attempts=3, code_length=4, lock_memory=1)
        first, second = (
            order_at(
                self.customer, self.runner, OrderStatus.PENDING_HANDOFF,
                handoff_code_hash='x', handoff_attempts=3,
            )
            for _ in range(2)
        )

        for order in (first, second):
            with self.assertRaises(VerificationFailed):
                verifier.verify_code(order.id, self.runner, '4821')

        self.assertFalse(verifier.is_locked(first.id))
        self.assertTrue(verifier.is_locked(second.id))

        # evicted orders are still refused, from the stored attempt count
        with self.assertRaises(VerificationFailed) as ctx:
            verifier.verify_code(first.id, self.runner, '4821')
        self.assertTrue(ctx.exception.locked)

    def test_expired_code_does_not_consume_an_attempt(self, mock_code, mock_notify):
        self.verifier.generate_code(self.order.id, self.runner)
        Order.objects.filter(pk=self.order.pk).update(
            handoff_code_expires_at=timezone.now() - timedelta(minutes=1)
        )

        with self.assertRaises(VerificationFailed) as ctx:
            self.verifier.verify_code(self.order.id, self.runner, '4821')

        self.assertTrue(ctx.exception.expired)
        self.order.refresh_from_db()
        self.assertEqual(self.order.handoff_attempts, 0)

    def test_malformed_code_does_not_consume_an_attempt(self, mock_code, mock_notify):
        self.verifier.generate_code(self.order.id, self.runner)

        for submitted in ('', '12', '12345', 'abcd'):
            with self.assertRaises(VerificationFailed):
                self.verifier.verify_code(self.order.id, self.runner, submitted)

        self.order.refresh_from_db()
        self.assertEqual(self.order.handoff_attempts, 0)

    def test_other_runner_cannot_verify(self, mock_code, mock_notify):
        self.verifier.generate_code(self.order.id, self.runner)
        with self.assertRaises(NotAssignedRunner):
            self.verifier.verify_code(self.order.id, make_runner(), '4821')

    def test_verify_before_code_is_stale(self, mock_code, mock_notify):
        with self.assertRaises(StaleState):
            self.verifier.verify_code(self.order.id, self.runner, '4821')

    def test_completion_is_audited(self, mock_code, mock_notify):
        self.verifier.generate_code(self.order.id, self.runner)
        self.verifier.verify_code(self.order.id, self.runner, '4821')

        self.assertEqual(
            list(OrderEvent.objects.filter(order=self.order).values_list('to_status', flat=True)),
            [OrderStatus.PENDING_HANDOFF, OrderStatus.COMPLETED],
        )

    # ==========================================
    # Reissue
    # ==========================================

    def test_reissue_replaces_code_and_keeps_attempts(self, mock_code, mock_notify):
        self.verifier.generate_code(self.order.id, self.runner)
        with self.assertRaises(VerificationFailed):
            self.verifier.verify_code(self.order.id, self.runner, '1234')

        mock_code.return_value = '5930'
        order = self.verifier.reissue_code(self.order.id, self.customer)

        self.assertEqual(order.handoff_attempts, 1)
        self.assertEqual(order.handoff_code_hash, hash_handoff_code(order.id, '5930'))
        self.assertEqual(mock_notify.call_args[0][2]['code'], '5930')

        completed = self.verifier.verify_code(self.order.id, self.runner, '5930')
        self.assertEqual(completed.status, OrderStatus.COMPLETED)

    def test_only_customer_can_reissue(self, mock_code, mock_notify):
        self.verifier.generate_code(self.order.id, self.runner)
        with self.assertRaises(OrderError):
            self.verifier.reissue_code(self.order.id, self.runner)

    def test_locked_order_cannot_be_reissued(self, mock_code, mock_notify):
        self.verifier.generate_code(self.order.id, self.runner)
        Order.objects.filter(pk=self.order.pk).update(handoff_attempts=3)

        with self.assertRaises(VerificationFailed) as ctx:
            self.verifier.reissue_code(self.order.id, self.customer)
        self.assertTrue(ctx.exception.locked)
