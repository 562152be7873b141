import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


STATUS_CHOICES = [
    ('PENDING', 'Pending'),
    ('RUNNER_ACCEPTED', 'Runner accepted'),
    ('RUNNER_AT_PICKUP', 'Runner at pickup'),
    ('CASH_SECURED', 'Cash secured'),
    ('PENDING_HANDOFF', 'Pending handoff'),
    ('COMPLETED', 'Completed'),
    ('CANCELLED', 'Cancelled'),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Order',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('status', models.CharField(choices=STATUS_CHOICES, db_index=True, default='PENDING', max_length=20, verbose_name='Status')),
                ('requested_amount', models.DecimalField(decimal_places=2, max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('1.00'))], verbose_name='Requested cash amount')),
                ('platform_fee', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10)),
                ('compliance_fee', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10)),
                ('delivery_fee', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10, verbose_name='Runner payout')),
                ('total_service_fee', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10)),
                ('total_payment', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10)),
                ('pickup_name', models.CharField(blank=True, max_length=150, verbose_name='Pickup location')),
                ('pickup_address', models.CharField(blank=True, max_length=255)),
                ('address_snapshot', models.JSONField(blank=True, default=dict)),
                ('customer_notes', models.TextField(blank=True)),
                ('handoff_code_hash', models.CharField(blank=True, max_length=128, null=True)),
                ('handoff_code_expires_at', models.DateTimeField(blank=True, null=True)),
                ('handoff_attempts', models.PositiveSmallIntegerField(default=0)),
                ('handoff_verified_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('runner_accepted_at', models.DateTimeField(blank=True, null=True)),
                ('runner_at_pickup_at', models.DateTimeField(blank=True, null=True)),
                ('cash_secured_at', models.DateTimeField(blank=True, null=True)),
                ('handoff_ready_at', models.DateTimeField(blank=True, null=True)),
                ('handoff_completed_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_by_role', models.CharField(blank=True, max_length=20)),
                ('cancellation_reason', models.TextField(blank=True)),
                ('runner_rating', models.PositiveSmallIntegerField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(5)], verbose_name='Runner rating (1-5)')),
                ('runner_rating_comment', models.TextField(blank=True)),
                ('rated_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='cancelled_orders', to=settings.AUTH_USER_MODEL)),
                ('customer', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='customer_orders', to=settings.AUTH_USER_MODEL, verbose_name='Customer')),
                ('runner', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='runner_orders', to=settings.AUTH_USER_MODEL, verbose_name='Runner')),
            ],
            options={
                'verbose_name': 'Order',
                'verbose_name_plural': 'Orders',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status', 'runner'], name='order_status_runner_idx'),
                    models.Index(fields=['customer', 'status'], name='order_customer_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='OrderEvent',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('from_status', models.CharField(blank=True, choices=STATUS_CHOICES, max_length=20)),
                ('to_status', models.CharField(choices=STATUS_CHOICES, max_length=20)),
                ('actor_role', models.CharField(blank=True, max_length=20)),
                ('client_action_id', models.CharField(blank=True, max_length=64, null=True)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('actor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='order_events', to=settings.AUTH_USER_MODEL)),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='events', to='orders.order')),
            ],
            options={
                'verbose_name': 'Order event',
                'verbose_name_plural': 'Order events',
                'ordering': ['created_at', 'id'],
                'constraints': [
                    models.UniqueConstraint(fields=('order', 'client_action_id'), name='unique_order_client_action'),
                ],
            },
        ),
        migrations.CreateModel(
            name='RunnerOfferEvent',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('event', models.CharField(choices=[('RECEIVED', 'Received'), ('ACCEPTED', 'Accepted'), ('SKIPPED', 'Skipped'), ('TIMEOUT', 'Timed out')], max_length=10)),
                ('reason', models.CharField(blank=True, max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='offer_events', to='orders.order')),
                ('runner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='offer_events', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Runner offer event',
                'verbose_name_plural': 'Runner offer events',
                'ordering': ['created_at', 'id'],
                'indexes': [
                    models.Index(fields=['runner', 'order', 'event'], name='offer_runner_order_event_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='OrderIssue',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('category', models.CharField(choices=[('CASH_AMOUNT', 'Cash amount incorrect'), ('LATE_ARRIVAL', 'Late arrival'), ('SAFETY_CONCERN', 'Safety concern'), ('UNPROFESSIONAL', 'Unprofessional behavior'), ('OTHER', 'Other')], max_length=20)),
                ('description', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('customer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='reported_issues', to=settings.AUTH_USER_MODEL)),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='issues', to='orders.order')),
            ],
            options={
                'verbose_name': 'Order issue',
                'verbose_name_plural': 'Order issues',
                'ordering': ['-created_at'],
            },
        ),
    ]
