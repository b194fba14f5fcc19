from django.apps import AppConfig


class CommunicationsConfig(AppConfig):
    """Message templates and the email / SMS / WhatsApp communication log"""
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.communications'
    verbose_name = 'Communications'
