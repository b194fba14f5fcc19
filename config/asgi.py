# ASGI configuration
#
# Serves both protocols from one process:
# - 'http': the JSON API (including the notification SSE stream)
# - 'websocket': real-time notification push (ws/notifications/)
#
# Run: daphne config.asgi:application --bind 0.0.0.0 --port 8000
# ==============================================================================

import os
from django.core.asgi import get_asgi_application
from channels.routing import ProtocolTypeRouter, URLRouter
from channels.auth import AuthMiddlewareStack
from channels.security.websocket import AllowedHostsOriginValidator

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

# Initialize Django ASGI application early
# This ensures the AppRegistry is populated before importing code that may import ORM models
django_asgi_app = get_asgi_application()

# Import routing after Django setup
from apps.notifications.routing import websocket_urlpatterns  # noqa: E402


application = ProtocolTypeRouter({
    'http': django_asgi_app,

    # AuthMiddlewareStack gives consumers access to the session user
    'websocket': AllowedHostsOriginValidator(
        AuthMiddlewareStack(
            URLRouter(websocket_urlpatterns)
        )
    ),
})
