import logging
from datetime import timedelta

from celery import shared_task
from django.utils import timezone

from apps.notifications.services import send_notification
from .models import FollowUp

logger = logging.getLogger(__name__)


@shared_task
def mark_overdue_follow_ups():
    """
    Periodic task: pending follow-ups whose time has passed become overdue
    Scheduled in config/celery.py
    """
    count = FollowUp.objects.filter(
        status=FollowUp.STATUS_PENDING,
        scheduled_at__lt=timezone.now(),
    ).update(status=FollowUp.STATUS_OVERDUE, updated_at=timezone.now())

    if count:
        logger.info("Marked %d follow-ups overdue", count)
    return f'{count} follow-ups marked overdue.'


@shared_task
def send_follow_up_reminders(minutes_ahead=30):
    """
    Periodic task: remind the assignee of follow-ups due soon

    Each follow-up is reminded once, ``minutes_ahead`` before it is due.
    """
    now = timezone.now()
    follow_ups = FollowUp.objects.filter(
        status__in=[FollowUp.STATUS_PENDING, FollowUp.STATUS_OVERDUE],
        reminder_sent=False,
        assigned_to__isnull=False,
        scheduled_at__lte=now + timedelta(minutes=minutes_ahead),
    ).select_related('lead', 'assigned_to', 'institution')

    reminders_sent = 0
    for follow_up in follow_ups:
        lead = follow_up.lead
        overdue = follow_up.scheduled_at < now
        when = timezone.localtime(follow_up.scheduled_at)

        send_notification(
            follow_up.assigned_to,
            'Overdue follow-up' if overdue else 'Follow-up due soon',
            f'{follow_up.get_follow_up_type_display()} with {lead.name} '
            f'{"was due" if overdue else "is due"} at {when:%H:%M}',
            notification_type='warning' if overdue else 'info',
            priority='high' if overdue or follow_up.priority in ('high', 'urgent') else 'medium',
            category='lead',
            institution=follow_up.institution,
            lead=lead,
            action_type='follow_up_reminder',
            data={'follow_up_id': follow_up.pk, 'lead_id': lead.pk},
        )
        lead.log_activity(
            'follow_up_reminder',
            f'Follow-up reminder sent to {follow_up.assigned_to.get_full_name()}',
            metadata={'follow_up_id': follow_up.pk},
        )

        follow_up.reminder_sent = True
        follow_up.save(update_fields=['reminder_sent', 'updated_at'])
        reminders_sent += 1

    logger.info("Sent %d follow-up reminders", reminders_sent)
    return f'{reminders_sent} follow-up reminders sent.'
