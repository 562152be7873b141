"""
DISPATCH App - Realtime Sync with Polling Fallback

Change notifications are hints, not data: delivery order is not
guaranteed and events can be lost. Every hint therefore triggers a
re-fetch of authoritative state, and the re-fetched snapshot is what
gets applied.

When the channel reports an error, timeout or close, RealtimeSync polls
the same query every REALTIME_POLL_INTERVAL_SECONDS until the channel is
healthy again, then does one catch-up reconcile and stops polling.
Degradation is logged once per episode.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

from channels.layers import get_channel_layer
from django.conf import settings

from orders.exceptions import ChannelDegraded

logger = logging.getLogger(__name__)


class ChannelStatus:
    SUBSCRIBED = 'SUBSCRIBED'
    CHANNEL_ERROR = 'CHANNEL_ERROR'
    TIMED_OUT = 'TIMED_OUT'
    CLOSED = 'CLOSED'

    DEGRADED = (CHANNEL_ERROR, TIMED_OUT, CLOSED)


EventCallback = Callable[[dict], Awaitable[None]]
StatusCallback = Callable[[str], Awaitable[None]]


# ============================================
# CHANNEL LAYER NOTIFIER
# ============================================

@dataclass
class Subscription:
    channel_name: str
    groups: List[str]
    task: Optional[asyncio.Task] = None


class ChannelLayerNotifier:
    """
    Subscribes to order change hints on the Channels layer.

    Each subscription gets its own channel, joins the requested groups
    and pumps 'order.changed' messages to the callback.
    """

    event_types = ('order.changed',)

    def __init__(self, channel_layer=None, retry_delay: float = 1.0):
        self._channel_layer = channel_layer
        self.retry_delay = retry_delay

    @property
    def channel_layer(self):
        return self._channel_layer or get_channel_layer()

    async def subscribe(
        self,
        groups: List[str],
        on_event: EventCallback,
        on_status: StatusCallback,
    ) -> Subscription:
        layer = self.channel_layer
        if layer is None:
            raise ChannelDegraded("No channel layer configured")

        try:
            channel_name = await layer.new_channel()
            for group in groups:
                await layer.group_add(group, channel_name)
        except Exception as e:
            raise ChannelDegraded(str(e))

        subscription = Subscription(channel_name=channel_name, groups=list(groups))
        subscription.task = asyncio.ensure_future(
            self._pump(layer, subscription, on_event, on_status)
        )
        return subscription

    async def _pump(self, layer, subscription: Subscription, on_event, on_status):
        healthy = True
        while True:
            try:
                message = await layer.receive(subscription.channel_name)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if healthy:
                    healthy = False
                    await on_status(ChannelStatus.CHANNEL_ERROR)
                logger.debug(f"[REALTIME] Receive failed on {subscription.channel_name}: {e}")
                await asyncio.sleep(self.retry_delay)
                continue

            if not healthy:
                healthy = True
                await on_status(ChannelStatus.SUBSCRIBED)

            if message.get('type') not in self.event_types:
                continue
            try:
                await on_event(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"[REALTIME] Handler failed on {subscription.channel_name}: {e}")

    async def unsubscribe(self, subscription: Subscription):
        if subscription.task is not None:
            subscription.task.cancel()
            try:
                await subscription.task
            except asyncio.CancelledError:
                pass
            subscription.task = None

        layer = self.channel_layer
        if layer is None:
            return
        for group in subscription.groups:
            try:
                await layer.group_discard(group, subscription.channel_name)
            except Exception as e:
                logger.warning(f"[REALTIME] Could not leave {group}: {e}")


# ============================================
# REALTIME SYNC
# ============================================

class RealtimeSync:
    """
    Keeps one consumer in line with the store.

    Args:
        notifier: object with async subscribe(filter, on_event, on_status)
                  and async unsubscribe(handle)
        subscription_filter: what to subscribe to (group names for Channels)
        fetch: async callable returning the authoritative snapshot
        on_reconcile: async callable applying a snapshot
        poll_interval: seconds between polls while degraded
    """

    def __init__(
        self,
        notifier,
        subscription_filter: Any,
        fetch: Callable[[], Awaitable[Any]],
        on_reconcile: Callable[[Any], Awaitable[None]],
        poll_interval: Optional[float] = None,
        name: str = '',
    ):
        self.notifier = notifier
        self.subscription_filter = subscription_filter
        self.fetch = fetch
        self.on_reconcile = on_reconcile
        self.poll_interval = poll_interval or settings.REALTIME_POLL_INTERVAL_SECONDS
        self.name = name or 'sync'

        self.is_degraded = False
        self.running = False
        self._handle = None
        self._poll_task: Optional[asyncio.Task] = None
        self._reconciling = False
        self._reconcile_again = False

    async def start(self):
        """Subscribe and do the initial reconcile."""
        if self.running:
            return
        self.running = True

        try:
            self._handle = await self.notifier.subscribe(
                self.subscription_filter, self._on_event, self._on_status
            )
        except ChannelDegraded as e:
            await self._degrade(e.reason or ChannelStatus.CHANNEL_ERROR)

        await self.reconcile()

    async def stop(self):
        self.running = False
        self._stop_polling()
        if self._handle is not None:
            await self.notifier.unsubscribe(self._handle)
            self._handle = None

    # ============================================
    # Channel callbacks
    # ============================================

    async def _on_event(self, event: dict):
        await self.reconcile()

    async def _on_status(self, status: str):
        if status == ChannelStatus.SUBSCRIBED:
            await self._recover()
        elif status in ChannelStatus.DEGRADED:
            await self._degrade(status)

    async def _degrade(self, reason: str):
        if self.is_degraded:
            return
        self.is_degraded = True
        logger.warning(
            f"[REALTIME] {self.name}: channel degraded ({reason}), "
            f"polling every {self.poll_interval}s"
        )
        if self.running:
            self._start_polling()

    async def _recover(self):
        if not self.is_degraded:
            return
        self.is_degraded = False
        self._stop_polling()
        logger.info(f"[REALTIME] {self.name}: channel healthy again")
        await self.reconcile()

    # ============================================
    # Polling
    # ============================================

    def _start_polling(self):
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.ensure_future(self._poll_loop())

    def _stop_polling(self):
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

    async def _poll_loop(self):
        while self.is_degraded and self.running:
            await asyncio.sleep(self.poll_interval)
            await self.reconcile()

    # ============================================
    # Reconcile
    # ============================================

    async def reconcile(self):
        """
        Fetch and apply authoritative state.

        Calls arriving while a reconcile is running are folded into one
        follow-up pass.
        """
        if self._reconciling:
            self._reconcile_again = True
            return

        self._reconciling = True
        try:
            while True:
                self._reconcile_again = False
                try:
                    snapshot = await self.fetch()
                except Exception as e:
                    logger.warning(f"[REALTIME] {self.name}: fetch failed: {e}")
                    break
                try:
                    await self.on_reconcile(snapshot)
                except Exception as e:
                    logger.warning(f"[REALTIME] {self.name}: apply failed: {e}")
                    break
                if not self._reconcile_again:
                    break
        finally:
            self._reconciling = False
