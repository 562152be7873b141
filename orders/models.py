"""
ORDERS App - Cash Delivery Orders for CASHRUN

Handles: Orders, Audit Trail, Runner Offer Events, Order Issues
"""

import uuid
from decimal import Decimal
from django.db import models
from django.conf import settings
from django.core.validators import MinValueValidator, MaxValueValidator


class OrderStatus(models.TextChoices):
    """
    Order status enumeration.

    Declaration order is the lifecycle order; CANCELLED sits outside it.
    """
    PENDING = 'PENDING', 'Pending'
    RUNNER_ACCEPTED = 'RUNNER_ACCEPTED', 'Runner accepted'
    RUNNER_AT_PICKUP = 'RUNNER_AT_PICKUP', 'Runner at pickup'
    CASH_SECURED = 'CASH_SECURED', 'Cash secured'
    PENDING_HANDOFF = 'PENDING_HANDOFF', 'Pending handoff'
    COMPLETED = 'COMPLETED', 'Completed'
    CANCELLED = 'CANCELLED', 'Cancelled'


class Order(models.Model):
    """
    Core cash delivery order.

    Fees are frozen at creation time. Every status change goes through
    orders.services.transitions so that the status guard, the lifecycle
    timestamp and the audit event are written together.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Actors
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='customer_orders',
        verbose_name="Customer"
    )
    runner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='runner_orders',
        verbose_name="Runner"
    )

    # Status
    status = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
        db_index=True,
        verbose_name="Status"
    )

    # Amounts (frozen at creation)
    requested_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('1.00'))],
        verbose_name="Requested cash amount"
    )
    platform_fee = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    compliance_fee = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    delivery_fee = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00'),
        verbose_name="Runner payout"
    )
    total_service_fee = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    total_payment = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))

    # Pickup snapshot
    pickup_name = models.CharField(max_length=150, blank=True, verbose_name="Pickup location")
    pickup_address = models.CharField(max_length=255, blank=True)

    # Delivery address snapshot: line1, city, state, postal_code, latitude, longitude
    address_snapshot = models.JSONField(default=dict, blank=True)
    customer_notes = models.TextField(blank=True)

    # Handoff code (hash only, plaintext goes to the customer)
    handoff_code_hash = models.CharField(max_length=128, null=True, blank=True)
    handoff_code_expires_at = models.DateTimeField(null=True, blank=True)
    handoff_attempts = models.PositiveSmallIntegerField(default=0)
    handoff_verified_at = models.DateTimeField(null=True, blank=True)

    # Lifecycle timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    runner_accepted_at = models.DateTimeField(null=True, blank=True)
    runner_at_pickup_at = models.DateTimeField(null=True, blank=True)
    cash_secured_at = models.DateTimeField(null=True, blank=True)
    handoff_ready_at = models.DateTimeField(null=True, blank=True)
    handoff_completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    # Cancellation
    cancelled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='cancelled_orders'
    )
    cancelled_by_role = models.CharField(max_length=20, blank=True)
    cancellation_reason = models.TextField(blank=True)

    # Post-delivery rating
    runner_rating = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1), MaxValueValidator(5)],
        verbose_name="Runner rating (1-5)"
    )
    runner_rating_comment = models.TextField(blank=True)
    rated_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = "Order"
        verbose_name_plural = "Orders"
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'runner'], name='order_status_runner_idx'),
            models.Index(fields=['customer', 'status'], name='order_customer_status_idx'),
        ]

    def __str__(self):
        return f"Order #{str(self.id)[:8]} - {self.get_status_display()}"

    @property
    def has_handoff_code(self) -> bool:
        return bool(self.handoff_code_hash)

    @property
    def city(self) -> str:
        return (self.address_snapshot or {}).get('city', '')


class OrderEvent(models.Model):
    """
    Append-only audit trail of status changes.

    (order, client_action_id) is unique so a retried client action
    cannot produce a second transition.
    """

    id = models.BigAutoField(primary_key=True)
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='events')
    from_status = models.CharField(max_length=20, choices=OrderStatus.choices, blank=True)
    to_status = models.CharField(max_length=20, choices=OrderStatus.choices)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='order_events'
    )
    actor_role = models.CharField(max_length=20, blank=True)
    client_action_id = models.CharField(max_length=64, null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Order event"
        verbose_name_plural = "Order events"
        ordering = ['created_at', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['order', 'client_action_id'],
                name='unique_order_client_action',
            ),
        ]

    def __str__(self):
        return f"{str(self.order_id)[:8]}: {self.from_status or '-'} -> {self.to_status}"


class OfferEventType(models.TextChoices):
    RECEIVED = 'RECEIVED', 'Received'
    ACCEPTED = 'ACCEPTED', 'Accepted'
    SKIPPED = 'SKIPPED', 'Skipped'
    TIMEOUT = 'TIMEOUT', 'Timed out'


class RunnerOfferEvent(models.Model):
    """
    Immutable log of what happened to an offer on a runner's device.

    SKIPPED and TIMEOUT rows keep an order from being offered again to
    the same runner.
    """

    id = models.BigAutoField(primary_key=True)
    runner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='offer_events'
    )
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='offer_events')
    event = models.CharField(max_length=10, choices=OfferEventType.choices)
    reason = models.CharField(max_length=20, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Runner offer event"
        verbose_name_plural = "Runner offer events"
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['runner', 'order', 'event'], name='offer_runner_order_event_idx'),
        ]

    def __str__(self):
        return f"{self.event} {str(self.order_id)[:8]} by {str(self.runner_id)[:8]}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Runner offer events are immutable")
        super().save(*args, **kwargs)


class IssueCategory(models.TextChoices):
    CASH_AMOUNT = 'CASH_AMOUNT', 'Cash amount incorrect'
    LATE_ARRIVAL = 'LATE_ARRIVAL', 'Late arrival'
    SAFETY_CONCERN = 'SAFETY_CONCERN', 'Safety concern'
    UNPROFESSIONAL = 'UNPROFESSIONAL', 'Unprofessional behavior'
    OTHER = 'OTHER', 'Other'


class OrderIssue(models.Model):
    """Customer-reported problem on an order. Resolution happens outside CASHRUN."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='issues')
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='reported_issues'
    )
    category = models.CharField(max_length=20, choices=IssueCategory.choices)
    description = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Order issue"
        verbose_name_plural = "Order issues"
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.get_category_display()} on #{str(self.order_id)[:8]}"
