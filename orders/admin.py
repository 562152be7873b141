"""
Django Admin configuration for ORDERS app.

Status is read-only here: admins change it through the cancel action,
which goes through the transition table like every other write.
"""

from django.contrib import admin, messages

from orders.exceptions import OrderError
from orders.models import Order, OrderEvent, OrderIssue, RunnerOfferEvent
from orders.services.transitions import cancel_order, is_terminal


class OrderEventInline(admin.TabularInline):
    model = OrderEvent
    extra = 0
    can_delete = False
    fields = ('created_at', 'from_status', 'to_status', 'actor', 'actor_role')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """Order supervision."""

    list_display = (
        'short_id', 'status', 'customer', 'runner',
        'requested_amount', 'delivery_fee', 'handoff_attempts', 'created_at',
    )
    list_filter = ('status', 'created_at')
    search_fields = ('id', 'customer__phone_number', 'runner__phone_number', 'pickup_name')
    ordering = ('-created_at',)
    inlines = [OrderEventInline]

    readonly_fields = (
        'id', 'status', 'runner', 'handoff_code_hash', 'handoff_code_expires_at',
        'handoff_attempts', 'handoff_verified_at',
        'created_at', 'updated_at', 'runner_accepted_at', 'runner_at_pickup_at',
        'cash_secured_at', 'handoff_ready_at', 'handoff_completed_at', 'cancelled_at',
        'cancelled_by', 'cancelled_by_role', 'cancellation_reason',
        'runner_rating', 'runner_rating_comment', 'rated_at',
    )

    fieldsets = (
        ('Order', {
            'fields': ('id', 'status', 'customer', 'runner')
        }),
        ('Amounts', {
            'fields': (
                'requested_amount', 'platform_fee', 'compliance_fee',
                'delivery_fee', 'total_service_fee', 'total_payment',
            )
        }),
        ('Pickup & Delivery', {
            'fields': ('pickup_name', 'pickup_address', 'address_snapshot', 'customer_notes')
        }),
        ('Handoff', {
            'fields': (
                'handoff_code_hash', 'handoff_code_expires_at',
                'handoff_attempts', 'handoff_verified_at',
            ),
            'classes': ('collapse',)
        }),
        ('Timeline', {
            'fields': (
                'created_at', 'runner_accepted_at', 'runner_at_pickup_at',
                'cash_secured_at', 'handoff_ready_at', 'handoff_completed_at',
                'cancelled_at', 'updated_at',
            ),
            'classes': ('collapse',)
        }),
        ('Cancellation & Rating', {
            'fields': (
                'cancelled_by', 'cancelled_by_role', 'cancellation_reason',
                'runner_rating', 'runner_rating_comment', 'rated_at',
            ),
            'classes': ('collapse',)
        }),
    )

    actions = ['cancel_orders']

    @admin.display(description='Order')
    def short_id(self, obj):
        return f"#{str(obj.id)[:8]}"

    @admin.action(description="Cancel selected orders")
    def cancel_orders(self, request, queryset):
        cancelled = 0
        for order in queryset:
            if is_terminal(order.status):
                continue
            try:
                cancel_order(order.id, request.user, reason='Cancelled by operations')
                cancelled += 1
            except OrderError as e:
                self.message_user(request, f"#{str(order.id)[:8]}: {e}", level=messages.WARNING)
        self.message_user(request, f"{cancelled} order(s) cancelled.")


@admin.register(RunnerOfferEvent)
class RunnerOfferEventAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'event', 'reason', 'runner', 'order')
    list_filter = ('event', 'reason')
    search_fields = ('runner__phone_number', 'order__id')

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(OrderIssue)
class OrderIssueAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'category', 'order', 'customer')
    list_filter = ('category',)
    search_fields = ('order__id', 'customer__phone_number', 'description')
    readonly_fields = ('created_at',)
