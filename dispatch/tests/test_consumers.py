"""
CASHRUN Runner WebSocket Tests
==============================

Runs the RunnerConsumer against the in-memory channel layer and the
test database.
"""

from channels.layers import get_channel_layer
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser
from django.test import TransactionTestCase

from dispatch.routing import websocket_urlpatterns
from orders.models import Order, OrderStatus
from orders.tests.helpers import make_customer, make_order, make_runner


class TestRunnerConsumer(TransactionTestCase):

    def setUp(self):
        self.customer = make_customer()
        self.runner = make_runner()
        self.order = make_order(self.customer)

    def communicator(self, user):
        communicator = WebsocketCommunicator(URLRouter(websocket_urlpatterns), '/ws/runner/')
        communicator.scope['user'] = user
        return communicator

    async def test_anonymous_is_rejected(self):
        connected, code = await self.communicator(AnonymousUser()).connect()
        self.assertFalse(connected)
        self.assertEqual(code, 4001)

    async def test_customer_is_rejected(self):
        connected, code = await self.communicator(self.customer).connect()
        self.assertFalse(connected)
        self.assertEqual(code, 4001)

    async def test_go_online_and_accept(self):
        communicator = self.communicator(self.runner)
        connected, _ = await communicator.connect()
        self.assertTrue(connected)

        hello = await communicator.receive_json_from()
        self.assertEqual(hello['type'], 'connection_established')
        self.assertIsNone(hello['active_job'])

        await communicator.send_json_to({'type': 'go_online', 'city': 'Miami'})
        self.assertEqual((await communicator.receive_json_from())['type'], 'online')

        offer = await communicator.receive_json_from(timeout=2)
        self.assertEqual(offer['type'], 'offer_presented')
        self.assertEqual(offer['order_id'], str(self.order.id))
        self.assertEqual(offer['area'], 'Near Miami, FL')

        await communicator.send_json_to({'type': 'accept_offer', 'order_id': str(self.order.id)})
        accepted = await communicator.receive_json_from(timeout=2)
        self.assertEqual(accepted['type'], 'job_accepted')
        result = await communicator.receive_json_from(timeout=2)
        self.assertEqual(result['type'], 'accept_result')
        self.assertTrue(result['won'])

        await communicator.disconnect()

        order = await Order.objects.aget(pk=self.order.pk)
        self.assertEqual(order.status, OrderStatus.RUNNER_ACCEPTED)
        self.assertEqual(order.runner_id, self.runner.id)

    async def test_accept_for_stale_offer_id(self):
        communicator = self.communicator(self.runner)
        await communicator.connect()
        await communicator.receive_json_from()

        await communicator.send_json_to({'type': 'accept_offer', 'order_id': str(self.order.id)})
        result = await communicator.receive_json_from()

        self.assertFalse(result['won'])
        self.assertEqual(result['reason'], 'no_offer')
        await communicator.disconnect()

    async def test_user_notifications_are_forwarded(self):
        communicator = self.communicator(self.runner)
        await communicator.connect()
        await communicator.receive_json_from()

        await get_channel_layer().group_send(f'user_{self.runner.id}', {
            'type': 'user.notification',
            'event': 'handoff_verified',
            'payload': {'order_id': str(self.order.id)},
        })
        message = await communicator.receive_json_from()

        self.assertEqual(message['type'], 'notification')
        self.assertEqual(message['event'], 'handoff_verified')
        await communicator.disconnect()

    async def test_ping(self):
        communicator = self.communicator(self.runner)
        await communicator.connect()
        await communicator.receive_json_from()

        await communicator.send_json_to({'type': 'ping'})
        self.assertEqual(await communicator.receive_json_from(), {'type': 'pong'})
        await communicator.disconnect()
