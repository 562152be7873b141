"""
ASGI config for CASHRUN

Routes HTTP to Django and WebSocket connections to the Channels consumers:
- ws/orders/<order_id>/ : customer order tracking
- ws/runner/            : runner offer feed
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'cashrun_core.settings')

# Initialize Django before importing consumers (they import models)
django_asgi_app = get_asgi_application()

from channels.auth import AuthMiddlewareStack  # noqa: E402
from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402
from channels.security.websocket import AllowedHostsOriginValidator  # noqa: E402

from orders.routing import websocket_urlpatterns as order_ws_urlpatterns  # noqa: E402
from dispatch.routing import websocket_urlpatterns as runner_ws_urlpatterns  # noqa: E402


application = ProtocolTypeRouter({
    'http': django_asgi_app,
    'websocket': AllowedHostsOriginValidator(
        AuthMiddlewareStack(
            URLRouter(order_ws_urlpatterns + runner_ws_urlpatterns)
        )
    ),
})
