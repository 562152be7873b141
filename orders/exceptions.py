"""
ORDERS App - Domain Errors

Races (StaleState, AlreadyClaimed) are expected under concurrent use and
are resolved by the caller as a state reset. IllegalTransition is a bug
in the caller. VerificationFailed is a user-actionable outcome.
"""

from typing import Optional


class OrderError(ValueError):
    """Base class for order workflow errors."""


class OrderNotFound(OrderError):
    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class IllegalTransition(OrderError):
    """The status table has no edge from_status -> to_status."""

    def __init__(self, from_status, to_status):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Illegal transition {from_status} -> {to_status}")


class StaleState(OrderError):
    """The persisted status no longer matches what the caller expected."""

    def __init__(self, order_id, expected_status, current_status):
        self.order_id = order_id
        self.expected_status = expected_status
        self.current_status = current_status
        super().__init__(
            f"Order {str(order_id)[:8]} is {current_status}, expected {expected_status}"
        )


class AlreadyClaimed(StaleState):
    """Another runner won the claim (or the order left PENDING)."""

    def __init__(self, order_id, current_status=None):
        super().__init__(order_id, 'PENDING', current_status)
        self.args = ("This order is no longer available",)


class NotAssignedRunner(OrderError):
    """The acting user is not the runner (or not a runner) for this order."""


class CancellationNotAllowed(OrderError):
    pass


class VerificationFailed(OrderError):
    """
    Wrong, expired or locked handoff code.

    attempts_remaining is 0 once locked; locked attempts need an operator.
    """

    def __init__(
        self,
        message: str,
        attempts_remaining: int = 0,
        locked: bool = False,
        expired: bool = False,
    ):
        self.attempts_remaining = attempts_remaining
        self.locked = locked
        self.expired = expired
        super().__init__(message)


class ChannelDegraded(Exception):
    """The change-notification channel cannot be used right now."""

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(reason or "Change notification channel degraded")
