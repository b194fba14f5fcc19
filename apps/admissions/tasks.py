import logging

from celery import shared_task

from .services import expire_overdue_offers

logger = logging.getLogger(__name__)


@shared_task
def expire_offer_letters():
    """
    Periodic task to expire unanswered offer letters
    Scheduled in config/celery.py
    """
    count = expire_overdue_offers()
    return f'{count} offer letters expired.'
