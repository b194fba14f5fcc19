# WSGI configuration for HTTP-only deployments
#
# Gunicorn: gunicorn config.wsgi:application --bind 0.0.0.0:8000 --workers 4
#
# The notification WebSocket and long-lived SSE streams need the ASGI
# entry point instead (see asgi.py)
# ==============================================================================

import os
from django.core.wsgi import get_wsgi_application

# Points to config/settings.py
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

application = get_wsgi_application()
