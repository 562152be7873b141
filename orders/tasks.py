"""
ORDERS App - Celery Tasks

Pushes user notifications onto the channel layer. Every connected
device of the user listens on the group user_<id>.
"""

import logging

from asgiref.sync import async_to_sync
from celery import shared_task
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(ConnectionError,),
    retry_backoff=True
)
def send_user_notification(self, user_id: str, event_type: str, payload: dict):
    """
    Send a notification event to one user's WebSocket group.

    Args:
        user_id: UUID string of the recipient
        event_type: notification kind (runner_assigned, handoff_code_ready, ...)
        payload: event data (never logged, it may hold a handoff code)
    """
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.warning("[NOTIFY] No channel layer configured")
        return False

    async_to_sync(channel_layer.group_send)(
        f'user_{user_id}',
        {
            'type': 'user.notification',
            'event': event_type,
            'payload': payload,
        }
    )
    logger.info(f"[NOTIFY] Sent {event_type} to user {user_id[:8]}")
    return True
