"""
DISPATCH App - Runner WebSocket Consumer

Clients connect to: ws://host/ws/runner/

Messages sent by the runner app:
- go_online {city?}: start receiving offers
- go_offline: stop receiving offers
- accept_offer: claim the offer on screen
- skip_offer: pass on the offer on screen
- job_finished: the active job is over, offers may resume
- ping

Messages pushed to the runner app:
- offer_presented, offer_retracted, job_accepted (from the DispatchEngine)
- accept_result
- notification (from the user_<id> group)
"""

import logging
from typing import Any, Dict, Optional

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from core.models import UserRole
from dispatch.engine import DispatchEngine, RunnerSession, SkipReason
from dispatch.realtime import ChannelLayerNotifier, RealtimeSync
from orders.events import PENDING_GROUP

logger = logging.getLogger(__name__)


class RunnerConsumer(AsyncJsonWebsocketConsumer):
    """One connection of the runner app; owns a DispatchEngine for its lifetime."""

    engine: Optional[DispatchEngine] = None
    sync: Optional[RealtimeSync] = None
    user_group: Optional[str] = None

    async def connect(self):
        user = self.scope.get('user')
        if not user or user.is_anonymous or user.role != UserRole.RUNNER or not user.is_active:
            await self.close(code=4001)
            return

        self.runner = user
        self.user_group = f'user_{user.id}'
        await self.channel_layer.group_add(self.user_group, self.channel_name)
        await self.accept()

        session = RunnerSession(runner=user, active_job=await self.get_active_job())
        self.engine = DispatchEngine(session, listener=self.push_engine_event)
        self.sync = RealtimeSync(
            ChannelLayerNotifier(),
            [PENDING_GROUP, f'runner_{user.id}'],
            fetch=self.engine.fetch_pending,
            on_reconcile=self.engine.reconcile,
            name=f'runner {str(user.id)[:8]}',
        )

        await self.send_json({
            'type': 'connection_established',
            'runner_id': str(user.id),
            'active_job': str(session.active_job.id) if session.active_job else None,
        })
        logger.info(f"[WS] Runner {str(user.id)[:8]} connected")

    async def disconnect(self, close_code):
        if self.sync is not None:
            await self.sync.stop()
        if self.engine is not None:
            await self.engine.go_offline()
        if self.user_group:
            await self.channel_layer.group_discard(self.user_group, self.channel_name)
            logger.info(f"[WS] Runner {str(self.runner.id)[:8]} disconnected ({close_code})")

    async def receive_json(self, content):
        """Handle incoming messages from the runner app."""
        message_type = content.get('type')

        if message_type == 'go_online':
            self.engine.session.city = content.get('city') or None
            await self.engine.go_online()
            self.engine.start_timer()
            await self.send_json({'type': 'online', 'city': self.engine.session.city})
            await self.sync.start()

        elif message_type == 'go_offline':
            await self.sync.stop()
            await self.engine.go_offline()
            await self.send_json({'type': 'offline'})

        elif message_type == 'accept_offer':
            current = self.engine.current
            order_id = content.get('order_id')
            if order_id and (current is None or current.order_id != order_id):
                await self.send_json({
                    'type': 'accept_result',
                    'won': False,
                    'reason': 'no_offer',
                    'order_id': order_id,
                })
                return

            outcome = await self.engine.accept()
            await self.send_json({
                'type': 'accept_result',
                'won': outcome.won,
                'reason': outcome.reason,
                'order_id': outcome.order_id,
            })

        elif message_type == 'skip_offer':
            await self.engine.skip(SkipReason.MANUAL)

        elif message_type == 'job_finished':
            self.engine.finish_active_job()
            await self.sync.reconcile()

        elif message_type == 'ping':
            await self.send_json({'type': 'pong'})

        else:
            await self.send_json({
                'type': 'error',
                'message': f'Unknown message type: {message_type}',
            })

    # ============================================
    # Engine events
    # ============================================

    async def push_engine_event(self, event_type: str, payload: Dict[str, Any]):
        await self.send_json({'type': event_type, **payload})

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
    def get_active_job(self):
        """The runner's order that is accepted but not finished yet, if any."""
        from orders.models import Order
        from orders.services.transitions import TERMINAL_STATUSES

        return (
            Order.objects
            .filter(runner=self.runner)
            .exclude(status__in=TERMINAL_STATUSES)
            .order_by('-runner_accepted_at')
            .first()
        )
