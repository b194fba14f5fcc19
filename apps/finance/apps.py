from django.apps import AppConfig


class FinanceConfig(AppConfig):
    """Payments with platform fee split, refund requests and revenue metrics"""
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.finance'
    verbose_name = 'Finance'
