"""
ORDERS App - Handoff Verification

The runner hands the cash over in person and types the code the
customer reads out. The code:
- is generated on CASH_SECURED -> PENDING_HANDOFF
- is stored only as an HMAC keyed per order
- goes to the customer only (never logged, never sent to the runner)
- locks the order after HANDOFF_MAX_ATTEMPTS wrong submissions; an
  operator has to step in from there

A verifier remembers which orders it saw locked and rejects them
without another store round trip.
"""

import logging
import secrets
import string
from collections import OrderedDict
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.utils import timezone
from django.utils.crypto import constant_time_compare, salted_hmac

from orders.exceptions import (
    NotAssignedRunner, OrderError, StaleState, VerificationFailed,
)
from orders.models import Order, OrderStatus
from orders.services.notifications import notify
from orders.services.store import OrderStore
from orders.services.transitions import attempt_transition

logger = logging.getLogger(__name__)


def hash_handoff_code(order_id, code: str) -> str:
    return salted_hmac(f'cashrun.handoff.{order_id}', code).hexdigest()


class HandoffVerifier:
    """Generates and checks handoff codes for orders."""

    def __init__(
        self,
        store: Optional[OrderStore] = None,
        max_attempts: Optional[int] = None,
        code_length: Optional[int] = None,
        code_ttl: Optional[timedelta] = None,
        lock_memory: int = 1000,
    ):
        self.store = store or OrderStore()
        self._max_attempts = max_attempts
        self._code_length = code_length
        self._code_ttl = code_ttl
        # Most recently locked orders; an evicted order is re-locked from the store
        self._locked: OrderedDict = OrderedDict()
        self.lock_memory = lock_memory

    @property
    def max_attempts(self) -> int:
        return self._max_attempts or settings.HANDOFF_MAX_ATTEMPTS

    @property
    def code_length(self) -> int:
        return self._code_length or settings.HANDOFF_CODE_LENGTH

    @property
    def code_ttl(self) -> timedelta:
        return self._code_ttl or timedelta(minutes=settings.HANDOFF_CODE_TTL_MINUTES)

    def _new_code(self) -> str:
        return ''.join(secrets.choice(string.digits) for _ in range(self.code_length))

    # ============================================
    # Code generation
    # ============================================

    def generate_code(self, order_id, runner) -> Order:
        """
        CASH_SECURED -> PENDING_HANDOFF with a fresh code.

        The plaintext is pushed to the customer and never returned.
        """
        order = self.store.get_order(order_id)
        if order.runner_id != runner.id:
            raise NotAssignedRunner("You are not the runner assigned to this order")

        code = self._new_code()
        order = attempt_transition(
            order_id,
            OrderStatus.CASH_SECURED,
            OrderStatus.PENDING_HANDOFF,
            runner,
            patch={
                'handoff_code_hash': hash_handoff_code(order.id, code),
                'handoff_code_expires_at': timezone.now() + self.code_ttl,
                'handoff_attempts': 0,
            },
            extra_filters={'runner_id': runner.id},
            store=self.store,
        )
        self._locked.pop(str(order.id), None)

        self._send_code_to_customer(order, code)
        logger.info(f"[HANDOFF] Code generated for order {str(order.id)[:8]}")
        return order

    def reissue_code(self, order_id, customer) -> Order:
        """New code and expiry for the customer; the attempt counter is kept."""
        order = self.store.get_order(order_id)
        if order.customer_id != customer.id:
            raise OrderError("Only the customer can request a new handoff code")
        if order.status != OrderStatus.PENDING_HANDOFF:
            raise StaleState(order_id, OrderStatus.PENDING_HANDOFF, order.status)
        if order.handoff_attempts >= self.max_attempts:
            raise VerificationFailed(
                "Handoff is locked, please contact support",
                attempts_remaining=0,
                locked=True,
            )

        code = self._new_code()
        updated = self.store.conditional_update(
            order_id,
            OrderStatus.PENDING_HANDOFF,
            {
                'handoff_code_hash': hash_handoff_code(order.id, code),
                'handoff_code_expires_at': timezone.now() + self.code_ttl,
            },
            extra_filters={
                'customer_id': customer.id,
                'handoff_attempts__lt': self.max_attempts,
            },
        )
        if updated is None:
            current = self.store.get_order(order_id)
            raise StaleState(order_id, OrderStatus.PENDING_HANDOFF, current.status)

        self._send_code_to_customer(updated, code)
        logger.info(f"[HANDOFF] Code reissued for order {str(order.id)[:8]}")
        return updated

    def _send_code_to_customer(self, order: Order, code: str):
        notify(order.customer_id, 'handoff_code_ready', {
            'order_id': str(order.id),
            'code': code,
            'expires_at': order.handoff_code_expires_at.isoformat(),
        })

    # ============================================
    # Verification
    # ============================================

    def is_locked(self, order_id) -> bool:
        return str(order_id) in self._locked

    def verify_code(self, order_id, runner, submitted: str) -> Order:
        """
        Check the code the runner typed in.

        Returns:
            The COMPLETED order

        Raises:
            VerificationFailed: Wrong, malformed, expired or locked code
            NotAssignedRunner: Someone other than the assigned runner
            StaleState: The order is not awaiting a handoff
        """
        if self.is_locked(order_id):
            raise VerificationFailed(
                "Too many incorrect attempts, please contact support",
                attempts_remaining=0,
                locked=True,
            )

        order = self.store.get_order(order_id)
        if order.runner_id != runner.id:
            raise NotAssignedRunner("You are not the runner assigned to this order")
        if order.status != OrderStatus.PENDING_HANDOFF or not order.handoff_code_hash:
            raise StaleState(order_id, OrderStatus.PENDING_HANDOFF, order.status)

        if order.handoff_attempts >= self.max_attempts:
            self._lock(order.id)
            raise VerificationFailed(
                "Too many incorrect attempts, please contact support",
                attempts_remaining=0,
                locked=True,
            )

        remaining = self.max_attempts - order.handoff_attempts
        if order.handoff_code_expires_at and order.handoff_code_expires_at <= timezone.now():
            raise VerificationFailed(
                "This code has expired, ask the customer to request a new one",
                attempts_remaining=remaining,
                expired=True,
            )

        submitted = (submitted or '').strip()
        if len(submitted) != self.code_length or not submitted.isdigit():
            raise VerificationFailed(
                f"Enter the {self.code_length}-digit code",
                attempts_remaining=remaining,
            )

        if not constant_time_compare(hash_handoff_code(order.id, submitted), order.handoff_code_hash):
            attempts = self.store.increment_handoff_attempts(order.id)
            remaining = max(0, self.max_attempts - attempts)
            if remaining == 0:
                self._lock(order.id)
                raise VerificationFailed(
                    "Too many incorrect attempts, please contact support",
                    attempts_remaining=0,
                    locked=True,
                )
            logger.info(
                f"[HANDOFF] Wrong code for order {str(order.id)[:8]} ({remaining} attempts left)"
            )
            raise VerificationFailed("Incorrect code", attempts_remaining=remaining)

        order = attempt_transition(
            order.id,
            OrderStatus.PENDING_HANDOFF,
            OrderStatus.COMPLETED,
            runner,
            patch={
                'handoff_verified_at': timezone.now(),
                'handoff_code_hash': None,
                'handoff_code_expires_at': None,
            },
            extra_filters={
                'runner_id': runner.id,
                'handoff_code_hash': order.handoff_code_hash,
                'handoff_attempts__lt': self.max_attempts,
            },
            store=self.store,
        )

        notify(order.customer_id, 'handoff_verified', {
            'order_id': str(order.id),
            'verified_at': order.handoff_verified_at.isoformat(),
        })
        logger.info(f"[HANDOFF] Order {str(order.id)[:8]} verified and completed")
        return order

    def _lock(self, order_id):
        if str(order_id) not in self._locked:
            logger.warning(f"[HANDOFF] Order {str(order_id)[:8]} locked after failed attempts")
        self._locked[str(order_id)] = True
        self._locked.move_to_end(str(order_id))
        while len(self._locked) > self.lock_memory:
            self._locked.popitem(last=False)
