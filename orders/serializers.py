"""
Orders App Serializers

Order bodies are never serialized field-by-field here: the detail view
returns reveal.project_order() so withheld fields cannot leak through a
serializer. These serializers cover request bodies and the audit trail.
"""

from rest_framework import serializers

from orders.models import OrderEvent, OrderStatus
from orders.services.transitions import RUNNER_STEPS


class ClientActionSerializer(serializers.Serializer):
    """Optional idempotency key sent by the app with every mutation."""
    client_action_id = serializers.CharField(max_length=64, required=False, allow_blank=False)


class AdvanceSerializer(ClientActionSerializer):
    to_status = serializers.ChoiceField(choices=[
        (status, OrderStatus(status).label) for status in RUNNER_STEPS
    ])


class VerifyCodeSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=12, trim_whitespace=True)


class CancelSerializer(ClientActionSerializer):
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, default='')


class RateSerializer(serializers.Serializer):
    rating = serializers.IntegerField(min_value=1, max_value=5)
    comment = serializers.CharField(max_length=1000, required=False, allow_blank=True, default='')


class OrderEventSerializer(serializers.ModelSerializer):
    """Audit trail entry."""

    actor_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = OrderEvent
        fields = ['id', 'from_status', 'to_status', 'actor_id', 'actor_role', 'created_at']
        read_only_fields = fields
