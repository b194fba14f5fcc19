from django.apps import AppConfig


class NotificationsConfig(AppConfig):
    """
    In-app notifications

    Delivery paths:
        - WebSocket push (consumers.py, routing.py)
        - Server-Sent Events stream and polling fallback (views.py)
        - Email / SMS / WhatsApp fan-out (tasks.py)
    """
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.notifications'
    verbose_name = 'Notifications'
