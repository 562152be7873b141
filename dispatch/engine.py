"""
DISPATCH App - Runner Offer Engine for CASHRUN

One DispatchEngine per connected runner session. It turns PENDING
orders into timed offers, one at a time:

    Offline -> Online(no offer) -> Online(offer pending) -> Online(no offer) ...

Orders that show up while an offer is on screen wait in a FIFO queue.
An offer ends in exactly one way: accepted, skipped (manual), timed
out, retracted (the order left PENDING) or dropped because the runner
went offline (recorded as a timeout).

Countdowns are always expires_at - now, never a decremented counter,
so they stay correct when the process is suspended.

All store access is async (sync_to_async around the ORM).
"""

import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from asgiref.sync import sync_to_async
from django.conf import settings
from django.utils import timezone

from orders.exceptions import AlreadyClaimed, OrderError
from orders.models import Order, OrderStatus, OfferEventType
from orders.services.claim import AcceptanceClaim
from orders.services.reveal import coarse_area
from orders.services.store import OrderStore, PendingCriteria

logger = logging.getLogger(__name__)


class SkipReason:
    MANUAL = 'manual'
    TIMEOUT = 'timeout'

    ALL = (MANUAL, TIMEOUT)


# ============================================
# SESSION & OFFER
# ============================================

@dataclass
class RunnerSession:
    """
    Online state of one runner connection.

    Kept per connection so two devices of the same runner never
    overwrite each other's online flag.
    """
    runner: Any
    online: bool = False
    city: Optional[str] = None
    active_job: Optional[Order] = None

    @property
    def runner_id(self):
        return self.runner.id


@dataclass
class Offer:
    """What the runner sees before accepting: payout and a coarse area only."""
    order_id: str
    payout: str
    pickup_description: str
    dropoff_area: str
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_order(cls, order: Order, now: datetime, window: timedelta) -> 'Offer':
        return cls(
            order_id=str(order.id),
            payout=str(order.delivery_fee),
            pickup_description=order.pickup_name,
            dropoff_area=coarse_area(order.address_snapshot),
            created_at=now,
            expires_at=now + window,
        )

    def remaining(self, now: datetime) -> timedelta:
        return max(timedelta(0), self.expires_at - now)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self, now: datetime) -> Dict[str, Any]:
        return {
            'order_id': self.order_id,
            'payout': self.payout,
            'pickup': self.pickup_description,
            'area': self.dropoff_area,
            'expires_at': self.expires_at.isoformat(),
            'remaining_seconds': int(self.remaining(now).total_seconds()),
        }


@dataclass
class AcceptOutcome:
    won: bool
    order: Optional[Order] = None
    # already_claimed | unavailable | network_error | no_offer | in_flight | expired
    reason: Optional[str] = None
    order_id: Optional[str] = None


Listener = Callable[[str, Dict[str, Any]], Optional[Awaitable[None]]]


# ============================================
# DISPATCH ENGINE
# ============================================

class DispatchEngine:
    """Offer lifecycle for one runner session."""

    def __init__(
        self,
        session: RunnerSession,
        store: Optional[OrderStore] = None,
        claimer: Optional[AcceptanceClaim] = None,
        clock: Callable[[], datetime] = timezone.now,
        offer_window: Optional[timedelta] = None,
        listener: Optional[Listener] = None,
    ):
        self.session = session
        self.store = store or OrderStore()
        self.claimer = claimer or AcceptanceClaim(store=self.store)
        self.clock = clock
        self.offer_window = offer_window or timedelta(seconds=settings.OFFER_WINDOW_SECONDS)
        self.listener = listener

        self.current: Optional[Offer] = None
        self.queue: Deque[Order] = deque()
        self.accept_in_flight = False
        self._skipped: Set[str] = set()
        self._timer_task: Optional[asyncio.Task] = None

    @property
    def runner_id(self):
        return self.session.runner_id

    def _tag(self) -> str:
        return f"runner {str(self.runner_id)[:8]}"

    async def _emit(self, event_type: str, payload: Dict[str, Any]):
        if self.listener is None:
            return
        result = self.listener(event_type, payload)
        if inspect.isawaitable(result):
            await result

    # ============================================
    # Online / offline
    # ============================================

    async def go_online(self):
        if self.session.online:
            return
        self.session.online = True
        logger.info(f"[DISPATCH] {self._tag()} online")

    async def go_offline(self):
        """Drop the current offer as a timeout and discard the queue unseen."""
        if not self.session.online:
            return
        self.session.online = False

        if self.current is not None:
            await self.skip(SkipReason.TIMEOUT)
        self.queue.clear()
        self.stop_timer()
        logger.info(f"[DISPATCH] {self._tag()} offline")

    # ============================================
    # Incoming orders
    # ============================================

    def _is_known(self, order_id: str) -> bool:
        if self.current is not None and self.current.order_id == order_id:
            return True
        if self.session.active_job is not None and str(self.session.active_job.id) == order_id:
            return True
        return any(str(o.id) == order_id for o in self.queue)

    async def _has_skipped(self, order_id: str) -> bool:
        if order_id in self._skipped:
            return True
        try:
            return await sync_to_async(self.store.has_skipped)(self.runner_id, order_id)
        except Exception as e:
            # Unknown skip history shows the offer
            logger.warning(f"[DISPATCH] Skip check failed for {order_id[:8]}: {e}")
            return False

    async def on_order_became_pending(self, order: Order) -> Optional[Offer]:
        """
        A PENDING order was observed.

        Returns the new Offer when it was presented right away, None when
        it was queued or ignored.
        """
        if not self.session.online:
            return None
        if order.status != OrderStatus.PENDING or order.runner_id is not None:
            return None

        order_id = str(order.id)
        if self._is_known(order_id):
            return None
        if await self._has_skipped(order_id):
            return None

        if self.current is None:
            return await self._present(order)

        self.queue.append(order)
        return None

    async def _present(self, order: Order) -> Offer:
        now = self.clock()
        offer = Offer.from_order(order, now, self.offer_window)
        self.current = offer

        try:
            await sync_to_async(self.store.record_offer_event)(
                self.runner_id, order.id, OfferEventType.RECEIVED
            )
        except Exception as e:
            logger.warning(f"[DISPATCH] Could not log offer receipt for {offer.order_id[:8]}: {e}")

        logger.info(f"[DISPATCH] Offer {offer.order_id[:8]} presented to {self._tag()}")
        await self._emit('offer_presented', offer.to_dict(now))
        return offer

    async def _still_available(self, order_id: str) -> Optional[Order]:
        """Fresh order if it can still be offered to this runner."""
        try:
            order = await sync_to_async(self.store.get_order)(order_id)
            if order.status != OrderStatus.PENDING or order.runner_id is not None:
                return None
            if await self._has_skipped(order_id):
                return None
            return order
        except OrderError:
            return None
        except Exception as e:
            logger.warning(f"[DISPATCH] Could not re-check order {order_id[:8]}: {e}")
            return None

    async def _advance(self):
        """Present the next still-available queued order, if any."""
        while self.current is None and self.queue and self.session.online:
            candidate = self.queue.popleft()
            order = await self._still_available(str(candidate.id))
            if order is not None:
                await self._present(order)

    # ============================================
    # Runner actions
    # ============================================

    async def accept(self) -> AcceptOutcome:
        """
        Claim the current offer.

        Never raises for a lost race or a network failure: the offer is
        dropped (no skip event) and the next queued offer is presented.
        """
        if self.accept_in_flight:
            return AcceptOutcome(won=False, reason='in_flight')

        offer = self.current
        if offer is None:
            return AcceptOutcome(won=False, reason='no_offer')

        if offer.is_expired(self.clock()):
            await self.skip(SkipReason.TIMEOUT)
            return AcceptOutcome(won=False, reason='expired', order_id=offer.order_id)

        self.accept_in_flight = True
        try:
            result = await sync_to_async(self.claimer.claim)(offer.order_id, self.session.runner)
        except AlreadyClaimed:
            outcome = AcceptOutcome(won=False, reason='already_claimed', order_id=offer.order_id)
        except OrderError as e:
            logger.info(f"[DISPATCH] Offer {offer.order_id[:8]} unavailable: {e}")
            outcome = AcceptOutcome(won=False, reason='unavailable', order_id=offer.order_id)
        except Exception as e:
            logger.warning(f"[DISPATCH] Claim for {offer.order_id[:8]} failed: {e}")
            outcome = AcceptOutcome(won=False, reason='network_error', order_id=offer.order_id)
        else:
            outcome = AcceptOutcome(won=True, order=result.order, order_id=offer.order_id)
        finally:
            self.accept_in_flight = False

        if self.current is offer:
            self.current = None
        self.queue = deque(o for o in self.queue if str(o.id) != offer.order_id)

        if outcome.won:
            self.session.active_job = outcome.order
            logger.info(f"[DISPATCH] {self._tag()} won order {offer.order_id[:8]}")
            await self._emit('job_accepted', {'order_id': offer.order_id})
        else:
            await self._emit('offer_retracted', {
                'order_id': offer.order_id,
                'reason': outcome.reason,
                'message': 'This order is no longer available',
            })

        await self._advance()
        return outcome

    async def skip(self, reason: str = SkipReason.MANUAL) -> Optional[Offer]:
        """Record the skip, then move on to the next queued offer."""
        if reason not in SkipReason.ALL:
            raise ValueError(f"Unknown skip reason: {reason}")

        offer = self.current
        if offer is None or self.accept_in_flight:
            return None

        self._skipped.add(offer.order_id)
        try:
            await sync_to_async(self.store.record_skip_event)(
                self.runner_id, offer.order_id, reason
            )
        except Exception as e:
            logger.error(f"[DISPATCH] Could not record skip of {offer.order_id[:8]}: {e}")

        if self.current is offer:
            self.current = None
        await self._emit('offer_retracted', {'order_id': offer.order_id, 'reason': reason})

        await self._advance()
        return offer

    def finish_active_job(self):
        self.session.active_job = None

    # ============================================
    # Timer
    # ============================================

    def remaining_time(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        if self.current is None:
            return None
        return self.current.remaining(now or self.clock())

    async def tick(self, now: Optional[datetime] = None) -> bool:
        """Expire the current offer if its time is up. True when it expired."""
        if self.current is None or self.accept_in_flight:
            return False
        if not self.current.is_expired(now or self.clock()):
            return False

        logger.info(f"[DISPATCH] Offer {self.current.order_id[:8]} timed out for {self._tag()}")
        await self.skip(SkipReason.TIMEOUT)
        return True

    async def run_timer(self, interval: Optional[float] = None):
        interval = interval or settings.OFFER_TICK_SECONDS
        while True:
            await self.tick()
            await asyncio.sleep(interval)

    def start_timer(self):
        if self._timer_task is None or self._timer_task.done():
            self._timer_task = asyncio.ensure_future(self.run_timer())

    def stop_timer(self):
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None

    # ============================================
    # Reconciliation
    # ============================================

    async def fetch_pending(self) -> List[Order]:
        """Authoritative pending orders for this runner (skipped ones excluded)."""
        criteria = PendingCriteria(city=self.session.city, exclude_skipped_by=self.runner_id)
        return await sync_to_async(self.store.list_pending_orders_near)(criteria)

    async def reconcile(self, pending_orders: List[Order]):
        """
        Line local offers up with the store.

        Retracts the current offer if its order left PENDING, then feeds
        every pending order through on_order_became_pending.
        """
        if not self.session.online:
            return

        if self.current is not None and not self.accept_in_flight:
            offer = self.current
            if await self._still_available(offer.order_id) is None and self.current is offer:
                self.current = None
                logger.info(f"[DISPATCH] Offer {offer.order_id[:8]} retracted, order no longer pending")
                await self._emit('offer_retracted', {
                    'order_id': offer.order_id,
                    'reason': 'unavailable',
                    'message': 'This order is no longer available',
                })

        for order in pending_orders:
            await self.on_order_became_pending(order)

        await self._advance()
