"""
CASHRUN Orders API Tests
========================

Tests for:
1. Access control and projected order bodies
2. Claim race mapping (409 no_longer_available)
3. Runner steps, handoff, cancellation and rating endpoints
"""

import uuid
from unittest.mock import patch

from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from orders.models import OrderStatus
from orders.services.handoff import HandoffVerifier
from orders.tests.helpers import (
    make_admin, make_customer, make_order, make_runner, order_at,
)


class OrdersAPITestCase(APITestCase):

    def setUp(self):
        self.customer = make_customer()
        self.runner = make_runner()
        self.order = make_order(self.customer)

    def url(self, name, order=None):
        return reverse(f'orders:{name}', kwargs={'order_id': (order or self.order).id})


class TestOrderDetailAPI(OrdersAPITestCase):

    def test_requires_authentication(self):
        response = self.client.get(self.url('detail'))
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_customer_gets_own_order(self):
        self.client.force_authenticate(self.customer)
        response = self.client.get(self.url('detail'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], OrderStatus.PENDING)
        self.assertEqual(response.data['requested_amount'], '200.00')

    def test_runner_sees_offer_projection(self):
        self.client.force_authenticate(self.runner)
        response = self.client.get(self.url('detail'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['area'], 'Near Miami, FL')
        self.assertNotIn('cash_amount', response.data)
        self.assertNotIn('dropoff_address', response.data)

    def test_unrelated_customer_gets_404(self):
        self.client.force_authenticate(make_customer())
        response = self.client.get(self.url('detail'))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_unknown_order_gets_404(self):
        self.client.force_authenticate(self.customer)
        response = self.client.get(reverse('orders:detail', kwargs={'order_id': uuid.uuid4()}))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class TestClaimAPI(OrdersAPITestCase):

    def test_runner_claims(self):
        self.client.force_authenticate(self.runner)
        response = self.client.post(self.url('claim'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], OrderStatus.RUNNER_ACCEPTED)
        self.assertEqual(response.data['customer']['display_name'], 'J.')

    def test_losing_runner_gets_409(self):
        self.client.force_authenticate(self.runner)
        self.client.post(self.url('claim'))

        self.client.force_authenticate(make_runner())
        response = self.client.post(self.url('claim'))

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'no_longer_available')

    def test_customer_cannot_claim(self):
        self.client.force_authenticate(self.customer)
        response = self.client.post(self.url('claim'))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class TestRunnerStepsAPI(OrdersAPITestCase):

    def setUp(self):
        super().setUp()
        self.order = order_at(self.customer, self.runner, OrderStatus.RUNNER_ACCEPTED)
        self.client.force_authenticate(self.runner)

    def test_advance_to_pickup(self):
        response = self.client.post(self.url('advance'), {'to_status': OrderStatus.RUNNER_AT_PICKUP})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], OrderStatus.RUNNER_AT_PICKUP)
        self.assertEqual(response.data['cash_amount'], '200.00')
        self.assertNotIn('dropoff_address', response.data)

    def test_skipping_a_step_is_409(self):
        response = self.client.post(self.url('advance'), {'to_status': OrderStatus.CASH_SECURED})

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'stale_state')
        self.assertEqual(response.data['current_status'], OrderStatus.RUNNER_ACCEPTED)

    def test_unknown_step_is_400(self):
        response = self.client.post(self.url('advance'), {'to_status': OrderStatus.COMPLETED})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_other_runner_is_403(self):
        self.client.force_authenticate(make_runner())
        response = self.client.post(self.url('advance'), {'to_status': OrderStatus.RUNNER_AT_PICKUP})
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_history_lists_steps(self):
        self.client.post(self.url('advance'), {'to_status': OrderStatus.RUNNER_AT_PICKUP})
        response = self.client.get(self.url('history'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['events'][0]['to_status'], OrderStatus.RUNNER_AT_PICKUP)


@patch('orders.services.handoff.notify')
@patch.object(HandoffVerifier, '_new_code', return_value='4821')
class TestHandoffAPI(OrdersAPITestCase):

    def setUp(self):
        super().setUp()
        self.order = order_at(self.customer, self.runner, OrderStatus.CASH_SECURED)
        self.client.force_authenticate(self.runner)

    def test_generate_code_reveals_address_to_runner(self, mock_code, mock_notify):
        response = self.client.post(self.url('handoff-code'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], OrderStatus.PENDING_HANDOFF)
        self.assertIn('dropoff_address', response.data)
        self.assertNotIn('code', response.data)

    def test_verify_flow(self, mock_code, mock_notify):
        self.client.post(self.url('handoff-code'))

        wrong = self.client.post(self.url('verify'), {'code': '1234'})
        self.assertEqual(wrong.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(wrong.data['attempts_remaining'], 2)

        right = self.client.post(self.url('verify'), {'code': '4821'})
        self.assertEqual(right.status_code, status.HTTP_200_OK)
        self.assertEqual(right.data['status'], OrderStatus.COMPLETED)

    def test_lockout_is_423(self, mock_code, mock_notify):
        self.client.post(self.url('handoff-code'))
        for _ in range(2):
            self.client.post(self.url('verify'), {'code': '1234'})

        response = self.client.post(self.url('verify'), {'code': '1234'})
        self.assertEqual(response.status_code, status.HTTP_423_LOCKED)
        self.assertTrue(response.data['locked'])

    def test_customer_reissues_code(self, mock_code, mock_notify):
        self.client.post(self.url('handoff-code'))

        self.client.force_authenticate(self.customer)
        response = self.client.post(self.url('handoff-code-reissue'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(mock_notify.call_count, 2)


class TestCancelAndRateAPI(OrdersAPITestCase):

    def test_customer_cancels(self):
        self.client.force_authenticate(self.customer)
        response = self.client.post(self.url('cancel'), {'reason': 'No longer needed'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], OrderStatus.CANCELLED)
        self.assertEqual(response.data['cancellation_reason'], 'No longer needed')

    def test_late_customer_cancel_is_403(self):
        order = order_at(self.customer, self.runner, OrderStatus.CASH_SECURED)
        self.client.force_authenticate(self.customer)
        response = self.client.post(self.url('cancel', order))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_cancels_late(self):
        order = order_at(self.customer, self.runner, OrderStatus.CASH_SECURED)
        self.client.force_authenticate(make_admin())
        response = self.client.post(self.url('cancel', order), {'reason': 'Fraud check'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_cancel_completed_is_400(self):
        order = order_at(self.customer, self.runner, OrderStatus.COMPLETED)
        self.client.force_authenticate(make_admin())
        response = self.client.post(self.url('cancel', order))
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'illegal_transition')

    def test_rate(self):
        order = order_at(self.customer, self.runner, OrderStatus.COMPLETED)
        self.client.force_authenticate(self.customer)
        response = self.client.post(self.url('rate', order), {'rating': 5, 'comment': 'Great'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        again = self.client.post(self.url('rate', order), {'rating': 1})
        self.assertEqual(again.status_code, status.HTTP_400_BAD_REQUEST)
