"""
ORDERS App - Notification hand-off

notify() is the single entry point for user-facing notifications:
runner_assigned, runner_at_pickup, runner_on_the_way, handoff_code_ready,
handoff_verified and order_cancelled. New offers reach runners over the
runner socket instead. Delivery runs in a Celery task so the caller never
waits on the transport.
"""

import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


def notify(user_id, event_type: str, payload: Dict[str, Any]) -> None:
    """Queue a notification for one user. Payload must be JSON-serializable."""
    from orders.tasks import send_user_notification

    try:
        send_user_notification.delay(str(user_id), event_type, payload)
    except Exception as e:
        # Broker down: the order state is already committed, only the push is lost
        logger.error(f"[NOTIFY] Could not queue {event_type} for user {str(user_id)[:8]}: {e}")
