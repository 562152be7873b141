"""
DISPATCH App - WebSocket Routing Configuration
"""

from django.urls import re_path

from . import consumers


websocket_urlpatterns = [
    # Runner app - offers, accept/skip, notifications
    # ws://localhost:8000/ws/runner/
    re_path(
        r'ws/runner/$',
        consumers.RunnerConsumer.as_asgi()
    ),
]
