import logging
from datetime import timedelta

from celery import shared_task
from django.utils import timezone

from apps.notifications.services import send_notification
from .models import Appointment

logger = logging.getLogger(__name__)


@shared_task
def send_reminders():
    """
    Periodic task to send appointment reminders

    Counselor and student are reminded once for every session starting
    within the next hour.
    Scheduled in config/celery.py
    """
    now = timezone.now()
    appointments = Appointment.objects.filter(
        status__in=Appointment.UPCOMING_STATUSES,
        reminder_sent=False,
        scheduled_at__gte=now,
        scheduled_at__lte=now + timedelta(hours=1),
    ).select_related('institution', 'application__student', 'counselor')

    reminded = 0
    for appointment in appointments:
        application = appointment.application
        starts = timezone.localtime(appointment.scheduled_at)

        if appointment.counselor:
            send_notification(
                appointment.counselor,
                'Upcoming counselling session',
                f'Session with {application.student_name} at {starts:%H:%M}',
                priority='high',
                category='admission',
                institution=appointment.institution,
                lead=application.lead,
                action_type='appointment_reminder',
                data={'appointment_id': appointment.pk, 'application_id': application.pk},
            )
        if application.student:
            send_notification(
                application.student,
                'Counselling session reminder',
                f'Your counselling session starts at {starts:%H:%M}.',
                priority='high',
                category='admission',
                institution=appointment.institution,
                action_type='appointment_reminder',
                data={'appointment_id': appointment.pk},
            )

        appointment.reminder_sent = True
        appointment.save(update_fields=['reminder_sent', 'updated_at'])
        reminded += 1

    logger.info("Sent reminders for %d appointments", reminded)
    return f'{reminded} appointment reminders sent.'
