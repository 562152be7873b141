"""
ORDERS App - Count Guardrail Window

For a short window after the handoff is verified, the customer can
confirm the cash count or flag a wrong amount. The window:
- starts at handoff_verified_at, never at the time the screen loaded
- is stored per order so leaving and coming back neither resets nor
  extends it
- closes once; confirm/flag/dismiss after that are no-ops
- expiring with no action counts as a confirmation

Flagging creates an OrderIssue. What happens to the issue afterwards is
handled by support.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from django.conf import settings
from django.core.cache import caches
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from orders.exceptions import OrderError
from orders.models import IssueCategory, Order, OrderIssue, OrderStatus

logger = logging.getLogger(__name__)


CACHE_ALIAS = 'guardrail'
KEY_PREFIX = 'cashrun:count-guardrail'

# Windows are kept this long past their duration
RETENTION = timedelta(days=1)


class Resolution:
    CONFIRMED = 'confirmed'
    FLAGGED = 'flagged'
    DISMISSED = 'dismissed'


@dataclass
class GuardrailWindow:
    order_id: str
    expires_at: datetime
    dismissed: bool = False
    resolution: Optional[str] = None
    issue_id: Optional[str] = None

    def is_active(self, now: datetime) -> bool:
        return not self.dismissed and now < self.expires_at

    def remaining_seconds(self, now: datetime) -> int:
        if not self.is_active(now):
            return 0
        return max(0, int((self.expires_at - now).total_seconds()))

    def to_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        data = asdict(self)
        data['expires_at'] = self.expires_at.isoformat()
        if now is not None:
            data['active'] = self.is_active(now)
            data['remaining_seconds'] = self.remaining_seconds(now)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GuardrailWindow':
        return cls(
            order_id=data['order_id'],
            expires_at=parse_datetime(data['expires_at']),
            dismissed=data.get('dismissed', False),
            resolution=data.get('resolution'),
            issue_id=data.get('issue_id'),
        )


class GuardrailManager:
    """Owns the guardrail windows of one device/process."""

    def __init__(
        self,
        storage=None,
        clock: Callable[[], datetime] = timezone.now,
        duration: Optional[timedelta] = None,
    ):
        self.storage = storage if storage is not None else caches[CACHE_ALIAS]
        self.clock = clock
        self.duration = duration or timedelta(seconds=settings.GUARDRAIL_WINDOW_SECONDS)

    @staticmethod
    def _key(order_id) -> str:
        return f'{KEY_PREFIX}:{order_id}'

    def _save(self, window: GuardrailWindow):
        timeout = int((self.duration + RETENTION).total_seconds())
        self.storage.set(self._key(window.order_id), window.to_dict(), timeout=timeout)

    def get_window(self, order_id) -> Optional[GuardrailWindow]:
        data = self.storage.get(self._key(order_id))
        return GuardrailWindow.from_dict(data) if data else None

    def open_window(self, order: Order) -> Optional[GuardrailWindow]:
        """
        Window for a verified order, creating it on first sight.

        Returns None until the handoff has been verified.
        """
        if order.status != OrderStatus.COMPLETED or not order.handoff_verified_at:
            return None

        existing = self.get_window(order.id)
        if existing:
            return existing

        window = GuardrailWindow(
            order_id=str(order.id),
            expires_at=order.handoff_verified_at + self.duration,
        )
        self._save(window)
        logger.info(
            f"[GUARDRAIL] Window opened for order {str(order.id)[:8]} "
            f"until {window.expires_at.isoformat()}"
        )
        return window

    def _close(self, order_id, resolution: str, issue_id: Optional[str] = None) -> tuple:
        """Close the window if still active. Returns (window, closed_now)."""
        window = self.get_window(order_id)
        if window is None or not window.is_active(self.clock()):
            return window, False

        window.dismissed = True
        window.resolution = resolution
        window.issue_id = issue_id
        self._save(window)
        logger.info(f"[GUARDRAIL] Order {str(order_id)[:8]} window closed: {resolution}")
        return window, True

    def confirm_count(self, order_id) -> Optional[GuardrailWindow]:
        window, _ = self._close(order_id, Resolution.CONFIRMED)
        return window

    def dismiss(self, order_id) -> Optional[GuardrailWindow]:
        window, _ = self._close(order_id, Resolution.DISMISSED)
        return window

    def flag_incorrect(self, order: Order, customer, description: str = '') -> Optional[GuardrailWindow]:
        """Close the window and open a CASH_AMOUNT issue. Order status is untouched."""
        if order.customer_id != customer.id:
            raise OrderError("Only the customer can flag the cash amount")

        window = self.get_window(order.id)
        if window is None or not window.is_active(self.clock()):
            return window

        # The issue is written first so a closed FLAGGED window always has one
        issue = OrderIssue.objects.create(
            order=order,
            customer=customer,
            category=IssueCategory.CASH_AMOUNT,
            description=description,
        )
        window, _ = self._close(order.id, Resolution.FLAGGED, issue_id=str(issue.id))
        logger.warning(f"[GUARDRAIL] Cash amount flagged on order {str(order.id)[:8]}")
        return window
