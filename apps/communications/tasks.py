import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from .models import Communication
from .services import deliver_communication

logger = logging.getLogger(__name__)


@shared_task
def send_communication(communication_id):
    try:
        communication = Communication.objects.select_related('institution', 'lead', 'sender').get(pk=communication_id)
    except Communication.DoesNotExist:
        logger.warning("Communication %s not found", communication_id)
        return 'missing'

    if communication.status == Communication.STATUS_SENT:
        return 'already sent'

    return 'sent' if deliver_communication(communication) else 'failed'


@shared_task
def retry_failed_communications():
    """
    Periodic task: retry failed messages

    Messages still queued after COMMUNICATION_STALE_QUEUE_MINUTES lost their
    dispatch (broker down or worker killed mid-task) and are sent here too.
    Scheduled in config/celery.py
    """
    stale_before = timezone.now() - timedelta(minutes=settings.COMMUNICATION_STALE_QUEUE_MINUTES)
    failed = Communication.objects.filter(
        Q(status=Communication.STATUS_FAILED) |
        Q(status=Communication.STATUS_QUEUED, created_at__lt=stale_before),
        retry_count__lt=settings.COMMUNICATION_MAX_RETRIES,
    ).select_related('institution', 'lead', 'sender')[:200]

    retried = 0
    recovered = 0
    for communication in failed:
        communication.retry_count += 1
        communication.save(update_fields=['retry_count', 'updated_at'])
        retried += 1
        if deliver_communication(communication):
            recovered += 1

    logger.info("Retried %d failed or stale communications, %d delivered", retried, recovered)
    return f'{recovered}/{retried} communications delivered on retry.'
