# Celery runs the background jobs of the CRM:
# - Deliver notifications over email / SMS / WhatsApp
# - Send queued communications (and retry failed ones)
# - Follow-up and appointment reminders
# - Expire offer letters past their validity
#
# Start worker: celery -A config worker -l info
# Start beat: celery -A config beat -l info
# ==============================================================================

import os
from celery import Celery
from celery.schedules import crontab

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

# 'admissions_crm' is the app name (appears in logs and monitoring)
app = Celery('admissions_crm')

# All settings prefixed with 'CELERY_' will be used
app.config_from_object('django.conf:settings', namespace='CELERY')

# Looks for tasks.py file in each app
app.autodiscover_tasks()


# CELERY BEAT SCHEDULE (Periodic Tasks)
app.conf.beat_schedule = {
    # Flag pending follow-ups whose time has passed
    'mark-overdue-follow-ups': {
        'task': 'apps.leads.tasks.mark_overdue_follow_ups',
        'schedule': crontab(minute='*/10'),
    },

    # Remind telecallers about follow-ups due soon
    'send-follow-up-reminders': {
        'task': 'apps.leads.tasks.send_follow_up_reminders',
        'schedule': crontab(minute='*/15'),
    },

    # Counseling appointments starting within the hour
    'send-appointment-reminders': {
        'task': 'apps.appointments.tasks.send_reminders',
        'schedule': crontab(minute='*/15'),
    },

    # Offer letters past their validity date
    'expire-offer-letters': {
        'task': 'apps.admissions.tasks.expire_offer_letters',
        'schedule': crontab(hour=1, minute=0),  # Every day at 1:00 AM
    },

    # Failed communications, retried up to COMMUNICATION_MAX_RETRIES
    'retry-failed-communications': {
        'task': 'apps.communications.tasks.retry_failed_communications',
        'schedule': crontab(minute='*/30'),
    },
}


# CELERY TASK ANNOTATIONS

app.conf.task_annotations = {
    # Prevent overwhelming external messaging APIs
    'apps.communications.tasks.send_communication': {
        'rate_limit': '30/m',
    },
}


@app.task(bind=True, ignore_result=True)
def debug_task(self):
    """
    Debug task to test Celery is working

    Usage:
        from config.celery import debug_task
        debug_task.delay()
    """
    print(f'Request: {self.request!r}')
