import logging

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail

from apps.communications.clients import get_client, MessagingError
from .models import Notification

logger = logging.getLogger(__name__)


@shared_task
def deliver_notification(notification_id):
    """
    Deliver a stored notification outside the app

    Channels come from the recipient's profile (email / sms / whatsapp);
    muted categories and digest frequencies skip immediate delivery.
    """
    try:
        notification = Notification.objects.select_related('user__profile').get(pk=notification_id)
    except Notification.DoesNotExist:
        logger.warning("Notification %s vanished before delivery", notification_id)
        return 'missing'

    user = notification.user
    profile = getattr(user, 'profile', None)
    if profile is None or not user.is_active:
        return 'skipped'

    if profile.notification_frequency != profile.FREQUENCY_IMMEDIATE:
        return 'digest'

    delivered = []

    if profile.wants_channel('email', notification.category) and user.email:
        sent = send_mail(
            subject=notification.title,
            message=notification.message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[user.email],
            fail_silently=True,
        )
        if sent:
            delivered.append('email')

    for channel in ('sms', 'whatsapp'):
        if not profile.wants_channel(channel, notification.category) or not user.phone:
            continue
        try:
            client = get_client(channel)
        except MessagingError as e:
            logger.info("Skipping %s delivery of notification %s: %s", channel, notification.pk, e)
            continue

        success, _message_id, error = client.send_message(user.phone, f'{notification.title}\n{notification.message}')
        if success:
            delivered.append(channel)
        else:
            logger.warning("%s delivery of notification %s failed: %s", channel, notification.pk, error)

    logger.info("Notification %s delivered via %s", notification.pk, ', '.join(delivered) or 'app only')
    return ','.join(delivered)
