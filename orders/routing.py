"""
ORDERS App - WebSocket Routing Configuration
"""

from django.urls import re_path

from . import consumers


websocket_urlpatterns = [
    # Customer tracking of one order
    # ws://localhost:8000/ws/orders/<uuid>/
    re_path(
        r'ws/orders/(?P<order_id>[0-9a-f-]+)/$',
        consumers.OrderTrackingConsumer.as_asgi()
    ),
]
