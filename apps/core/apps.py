from django.apps import AppConfig


class CoreConfig(AppConfig):
    """
    Configuration for Core application

    This app contains:
        - Institution model (multi-tenancy)
        - Super admin institution management
        - Institution settings and admin dashboard
        - Shared JSON API helpers (utils.py)
    """
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'
