"""
ORDERS App - API Views

Every order body returned here comes from reveal.project_order() for
the requesting party.

Endpoints:
- GET  /api/orders/<id>/                       Projected order
- GET  /api/orders/<id>/history/               Audit trail
- POST /api/orders/<id>/claim/                 Runner claims a pending order
- POST /api/orders/<id>/advance/               Runner step (at pickup, cash secured)
- POST /api/orders/<id>/handoff-code/          Runner generates the handoff code
- POST /api/orders/<id>/handoff-code/reissue/  Customer requests a new code
- POST /api/orders/<id>/verify/                Runner submits the code
- POST /api/orders/<id>/cancel/                Customer / admin cancellation
- POST /api/orders/<id>/rate/                  Customer rates the runner
"""

import logging

from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.models import UserRole
from orders.exceptions import (
    AlreadyClaimed, CancellationNotAllowed, IllegalTransition,
    NotAssignedRunner, OrderError, OrderNotFound, StaleState,
    VerificationFailed,
)
from orders.serializers import (
    AdvanceSerializer, CancelSerializer, OrderEventSerializer,
    RateSerializer, VerifyCodeSerializer,
)
from orders.services.claim import AcceptanceClaim
from orders.services.handoff import HandoffVerifier
from orders.services.rating import rate_runner
from orders.services.reveal import project_order, viewer_role_for
from orders.services.store import OrderStore
from orders.services.transitions import advance_runner_step, cancel_order, order_history

logger = logging.getLogger(__name__)


# Shared across requests: remembers which orders are locked in this process
handoff_verifier = HandoffVerifier()


class IsRunner(permissions.BasePermission):
    """Allow only authenticated runners."""

    def has_permission(self, request, view):
        return (
            request.user and
            request.user.is_authenticated and
            request.user.role == UserRole.RUNNER
        )


class IsCustomer(permissions.BasePermission):
    """Allow only authenticated customers."""

    def has_permission(self, request, view):
        return (
            request.user and
            request.user.is_authenticated and
            request.user.role == UserRole.CUSTOMER
        )


def error_response(exc: Exception) -> Response:
    """Map a domain error to an API response."""
    if isinstance(exc, OrderNotFound):
        return Response({'error': 'Order not found'}, status=status.HTTP_404_NOT_FOUND)

    if isinstance(exc, AlreadyClaimed):
        return Response(
            {'error': 'no_longer_available', 'message': str(exc)},
            status=status.HTTP_409_CONFLICT
        )

    if isinstance(exc, StaleState):
        return Response(
            {
                'error': 'stale_state',
                'message': 'This order has changed, refresh and try again',
                'current_status': exc.current_status,
            },
            status=status.HTTP_409_CONFLICT
        )

    if isinstance(exc, IllegalTransition):
        return Response(
            {'error': 'illegal_transition', 'message': str(exc)},
            status=status.HTTP_400_BAD_REQUEST
        )

    if isinstance(exc, VerificationFailed):
        return Response(
            {
                'error': 'verification_failed',
                'message': str(exc),
                'attempts_remaining': exc.attempts_remaining,
                'locked': exc.locked,
                'expired': exc.expired,
            },
            status=status.HTTP_423_LOCKED if exc.locked else status.HTTP_400_BAD_REQUEST
        )

    if isinstance(exc, (NotAssignedRunner, CancellationNotAllowed)):
        return Response({'error': str(exc)}, status=status.HTTP_403_FORBIDDEN)

    return Response({'error': str(exc)}, status=status.HTTP_400_BAD_REQUEST)


class OrderBaseView(APIView):
    """Loads the order and checks the user has a role on it."""

    store_class = OrderStore

    def get_store(self) -> OrderStore:
        return self.store_class()

    def load(self, request, order_id):
        """Returns (order, viewer_role); raises OrderNotFound when the user has no access."""
        order = self.get_store().get_order(order_id)
        role = viewer_role_for(order, request.user)
        if role is None:
            raise OrderNotFound(order_id)
        return order, role

    def projected(self, order, role, http_status=status.HTTP_200_OK) -> Response:
        return Response(project_order(order, role), status=http_status)


class OrderDetailView(OrderBaseView):
    """GET /api/orders/<id>/"""

    def get(self, request, order_id):
        try:
            order, role = self.load(request, order_id)
        except OrderError as e:
            return error_response(e)
        return self.projected(order, role)


class OrderHistoryView(OrderBaseView):
    """GET /api/orders/<id>/history/"""

    def get(self, request, order_id):
        try:
            order, role = self.load(request, order_id)
            if role == UserRole.RUNNER and order.runner_id != request.user.id:
                raise OrderNotFound(order_id)
            events = order_history(order.id, store=self.get_store())
        except OrderError as e:
            return error_response(e)
        return Response({'events': OrderEventSerializer(events, many=True).data})


class ClaimOrderView(OrderBaseView):
    """POST /api/orders/<id>/claim/"""
    permission_classes = [IsRunner]

    def post(self, request, order_id):
        try:
            result = AcceptanceClaim(store=self.get_store()).claim(order_id, request.user)
        except OrderError as e:
            return error_response(e)
        return self.projected(result.order, UserRole.RUNNER)


class AdvanceOrderView(OrderBaseView):
    """POST /api/orders/<id>/advance/ {to_status, client_action_id?}"""
    permission_classes = [IsRunner]

    def post(self, request, order_id):
        serializer = AdvanceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order = advance_runner_step(
                order_id,
                request.user,
                serializer.validated_data['to_status'],
                client_action_id=serializer.validated_data.get('client_action_id'),
                store=self.get_store(),
            )
        except OrderError as e:
            return error_response(e)
        return self.projected(order, UserRole.RUNNER)


class GenerateHandoffCodeView(OrderBaseView):
    """POST /api/orders/<id>/handoff-code/"""
    permission_classes = [IsRunner]

    def post(self, request, order_id):
        try:
            order = handoff_verifier.generate_code(order_id, request.user)
        except OrderError as e:
            return error_response(e)
        return self.projected(order, UserRole.RUNNER)


class ReissueHandoffCodeView(OrderBaseView):
    """POST /api/orders/<id>/handoff-code/reissue/"""
    permission_classes = [IsCustomer]

    def post(self, request, order_id):
        try:
            order = handoff_verifier.reissue_code(order_id, request.user)
        except OrderError as e:
            return error_response(e)
        return self.projected(order, UserRole.CUSTOMER)


class VerifyHandoffCodeView(OrderBaseView):
    """POST /api/orders/<id>/verify/ {code}"""
    permission_classes = [IsRunner]

    def post(self, request, order_id):
        serializer = VerifyCodeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order = handoff_verifier.verify_code(
                order_id,
                request.user,
                serializer.validated_data['code'],
            )
        except OrderError as e:
            return error_response(e)
        return self.projected(order, UserRole.RUNNER)


class CancelOrderView(OrderBaseView):
    """POST /api/orders/<id>/cancel/ {reason, client_action_id?}"""

    def post(self, request, order_id):
        serializer = CancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order, role = self.load(request, order_id)
            order = cancel_order(
                order.id,
                request.user,
                reason=serializer.validated_data['reason'],
                client_action_id=serializer.validated_data.get('client_action_id'),
                store=self.get_store(),
            )
        except OrderError as e:
            return error_response(e)
        return self.projected(order, role)


class RateOrderView(OrderBaseView):
    """POST /api/orders/<id>/rate/ {rating, comment}"""
    permission_classes = [IsCustomer]

    def post(self, request, order_id):
        serializer = RateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            order = rate_runner(
                order_id,
                request.user,
                serializer.validated_data['rating'],
                serializer.validated_data['comment'],
                store=self.get_store(),
            )
        except OrderError as e:
            return error_response(e)
        return self.projected(order, UserRole.CUSTOMER)
