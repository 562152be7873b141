"""
ORDERS App - Order Tracking WebSocket Consumer

Clients connect to: ws://host/ws/orders/<order_id>/

Every change hint on order_<id> triggers a re-read of the order, and the
projected order (see services.reveal) is pushed as 'order_state'. While
the channel layer is unhealthy the state is polled instead.

Customers also get the count guardrail:
- confirm_count
- flag_incorrect {description}
- dismiss_guardrail
"""

import logging
from typing import Any, Dict, Optional

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.utils import timezone

from core.models import UserRole
from dispatch.realtime import ChannelLayerNotifier, RealtimeSync
from orders.exceptions import OrderError
from orders.services.guardrail import GuardrailManager
from orders.services.reveal import project_order, viewer_role_for
from orders.services.store import OrderStore

logger = logging.getLogger(__name__)


class OrderTrackingConsumer(AsyncJsonWebsocketConsumer):
    """Live view of one order for its customer, runner or an admin."""

    sync: Optional[RealtimeSync] = None
    user_group: Optional[str] = None

    async def connect(self):
        user = self.scope.get('user')
        if not user or user.is_anonymous:
            await self.close(code=4001)
            return

        self.user = user
        self.order_id = self.scope['url_route']['kwargs']['order_id']
        self.store = OrderStore()
        self.guardrail = GuardrailManager()

        self.role = await self.get_viewer_role()
        if self.role is None:
            await self.close(code=4004)
            return

        self.user_group = f'user_{user.id}'
        await self.channel_layer.group_add(self.user_group, self.channel_name)
        await self.accept()

        self.sync = RealtimeSync(
            ChannelLayerNotifier(),
            [f'order_{self.order_id}'],
            fetch=self.fetch_state,
            on_reconcile=self.push_state,
            name=f'order {self.order_id[:8]}',
        )
        await self.sync.start()

        logger.info(f"[WS] {self.role} connected to order {self.order_id[:8]}")

    async def disconnect(self, close_code):
        if self.sync is not None:
            await self.sync.stop()
        if self.user_group:
            await self.channel_layer.group_discard(self.user_group, self.channel_name)
            logger.info(f"[WS] Client disconnected from order {self.order_id[:8]}")

    async def receive_json(self, content):
        """Handle incoming WebSocket messages from clients."""
        message_type = content.get('type')

        if message_type == 'refresh':
            await self.sync.reconcile()

        elif message_type == 'ping':
            await self.send_json({'type': 'pong'})

        elif message_type in ('confirm_count', 'flag_incorrect', 'dismiss_guardrail'):
            if self.role != UserRole.CUSTOMER:
                await self.send_json({
                    'type': 'error',
                    'message': 'Only the customer can answer the count check',
                })
                return

            try:
                window = await self.resolve_guardrail(message_type, content.get('description', ''))
            except OrderError as e:
                await self.send_json({'type': 'error', 'message': str(e)})
                return

            await self.send_json({
                'type': 'guardrail',
                'guardrail': window.to_dict(timezone.now()) if window else None,
            })

        else:
            await self.send_json({
                'type': 'error',
                'message': f'Unknown message type: {message_type}',
            })

    # ============================================
    # Sync callbacks
    # ============================================

    async def push_state(self, snapshot: Optional[Dict[str, Any]]):
        if snapshot is None:
            await self.send_json({'type': 'order_unavailable', 'order_id': self.order_id})
            return
        await self.send_json({'type': 'order_state', 'order': snapshot})

    # ============================================
    # Event Handlers (called via channel_layer.group_send)
    # ============================================

    async def user_notification(self, event):
        """Forward a notification queued by orders.tasks.send_user_notification."""
        await self.send_json({
            'type': 'notification',
            'event': event['event'],
            'payload': event['payload'],
        })

    # ============================================
    # Database helpers
    # ============================================

    @database_sync_to_async
    def get_viewer_role(self) -> Optional[str]:
        try:
            order = self.store.get_order(self.order_id)
        except OrderError:
            return None
        return viewer_role_for(order, self.user)

    @database_sync_to_async
    def fetch_state(self) -> Optional[Dict[str, Any]]:
        """Projected order for this viewer, with the guardrail for customers."""
        try:
            order = self.store.get_order(self.order_id)
        except OrderError:
            return None

        role = viewer_role_for(order, self.user)
        if role is None:
            return None
        self.role = role

        data = project_order(order, role)
        if role == UserRole.CUSTOMER:
            window = self.guardrail.open_window(order)
            data['guardrail'] = window.to_dict(timezone.now()) if window else None
        return data

    @database_sync_to_async
    def resolve_guardrail(self, action: str, description: str = ''):
        if action == 'confirm_count':
            return self.guardrail.confirm_count(self.order_id)
        if action == 'dismiss_guardrail':
            return self.guardrail.dismiss(self.order_id)

        order = self.store.get_order(self.order_id)
        return self.guardrail.flag_incorrect(order, self.user, description)
