"""
ASGI config for venuetab project.

HTTP goes to Django; websockets (order tracking, open tabs) go to Channels.
"""

import os

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'venuetab.settings')

from django.core.asgi import get_asgi_application
from channels.routing import ProtocolTypeRouter, URLRouter
from channels.auth import AuthMiddlewareStack

django_asgi_app = get_asgi_application()

from ordering.tracking.routing import websocket_urlpatterns  # noqa: E402

application = ProtocolTypeRouter({
    'http': django_asgi_app,
    'websocket': AuthMiddlewareStack(URLRouter(websocket_urlpatterns)),
})
