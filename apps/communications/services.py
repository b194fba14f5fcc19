"""
Outbound messaging

Every message is stored as a Communication row first (status "queued")
and handed to the ``send_communication`` Celery task after the
transaction commits. The task calls ``deliver_communication`` which
talks to the mail backend or the SMS / WhatsApp APIs. Failed messages are
retried by the beat task up to COMMUNICATION_MAX_RETRIES.
"""

import logging
import smtplib
from datetime import timedelta

from django.conf import settings
from django.core.mail import send_mail
from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone

from .clients import get_client, MessagingError
from .models import Communication, MessageTemplate, CHANNEL_EMAIL, CHANNELS
from .templating import render_template

logger = logging.getLogger(__name__)


# CONTEXT
def institution_context(institution):
    return {
        'institution_name': institution.name,
        'institution_phone': institution.phone,
        'institution_email': institution.email,
        'institution_website': institution.website,
        'institution': institution,
    }


def application_context(application):
    """Template variables describing an application and its institution"""
    context = institution_context(application.institution)
    context.update({
        'student_name': application.student_name,
        'student_email': application.student_email,
        'student_phone': application.student_phone,
        'course': application.course,
        'academic_year': application.academic_year,
        'fee_amount': application.fee_amount,
        'program_start_date': application.program_start_date,
        'application_id': application.pk,
        'application_status': application.get_status_display(),
        'application': application,
    })
    return {key: value for key, value in context.items() if value not in (None, '')}


def lead_context(lead):
    context = institution_context(lead.institution)
    context.update({
        'student_name': lead.name,
        'lead_name': lead.name,
        'student_email': lead.email,
        'student_phone': lead.phone,
        'course': lead.course_interest,
        'lead': lead,
    })
    return {key: value for key, value in context.items() if value not in (None, '')}


def recipient_for(channel, application=None, lead=None):
    """Email address (email channel) or phone number of the applicant"""
    if application is not None:
        return application.student_email if channel == CHANNEL_EMAIL else application.student_phone
    if lead is not None:
        return lead.email if channel == CHANNEL_EMAIL else lead.phone
    return ''


# QUEUEING
def queue_communication(institution, channel, recipient, content, subject='', application=None, lead=None,
                        sender=None, template=None):
    """
    Store a message and send it in the background

    Raises:
        MessagingError: Unknown channel or no recipient
    """
    if channel not in CHANNELS:
        raise MessagingError(f'Unknown channel "{channel}"')
    if not recipient:
        raise MessagingError(f'No {"email address" if channel == CHANNEL_EMAIL else "phone number"} to send to')

    if lead is None and application is not None:
        lead = application.lead

    communication = Communication.objects.create(
        institution=institution,
        application=application,
        lead=lead,
        sender=sender,
        template=template,
        channel=channel,
        recipient=recipient,
        subject=subject[:200],
        content=content,
    )

    from .tasks import send_communication
    transaction.on_commit(lambda: send_communication.delay(communication.pk))

    logger.info("Queued %s communication %s to %s", channel, communication.pk, recipient)
    return communication


def send_template_message(template, sender=None, application=None, lead=None, to=None, variables=None):
    """
    Render a MessageTemplate for an application or lead and queue it

    Returns:
        tuple: (Communication, missing placeholder names)
    """
    if application is not None:
        context = application_context(application)
    elif lead is not None:
        context = lead_context(lead)
    else:
        context = institution_context(template.institution)
    context.update(variables or {})

    subject = render_template(template.subject, context)
    body = render_template(template.body, context)
    missing = list(dict.fromkeys(subject.missing + body.missing))

    communication = queue_communication(
        template.institution,
        template.channel,
        to or recipient_for(template.channel, application, lead),
        body.text,
        subject=subject.text,
        application=application,
        lead=lead,
        sender=sender,
        template=template,
    )
    return communication, missing


def send_bulk(institution, applications, channel, content='', subject='', template=None, sender=None):
    """
    Send one message (or template) to many applicants

    Returns:
        dict: {'queued': [communication ids], 'skipped': [{'application_id', 'reason'}]}
    """
    queued, skipped = [], []
    for application in applications:
        try:
            if template is not None:
                communication, _missing = send_template_message(template, sender=sender, application=application)
            else:
                context = application_context(application)
                communication = queue_communication(
                    institution,
                    channel,
                    recipient_for(channel, application=application),
                    render_template(content, context).text,
                    subject=render_template(subject, context).text,
                    application=application,
                    sender=sender,
                )
        except MessagingError as e:
            skipped.append({'application_id': application.pk, 'reason': str(e)})
            continue
        queued.append(communication.pk)

    logger.info("Bulk %s send in %s: %d queued, %d skipped", channel, institution.slug, len(queued), len(skipped))
    return {'queued': queued, 'skipped': skipped}


# DELIVERY
def deliver_communication(communication):
    """
    Send a stored communication now

    Returns:
        bool: True when the provider accepted the message
    """
    if communication.channel == CHANNEL_EMAIL:
        try:
            send_mail(
                subject=communication.subject or communication.institution.name,
                message=communication.content,
                from_email=settings.DEFAULT_FROM_EMAIL,
                recipient_list=[communication.recipient],
                fail_silently=False,
            )
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email communication %s failed: %s", communication.pk, e)
            communication.mark_as_failed(e)
            return False
        communication.mark_as_sent()
    else:
        try:
            client = get_client(communication.channel)
        except MessagingError as e:
            communication.mark_as_failed(e)
            return False

        success, external_id, error = client.send_message(communication.recipient, communication.content)
        if not success:
            communication.mark_as_failed(error)
            return False
        communication.mark_as_sent(external_id)

    if communication.lead_id:
        communication.lead.log_activity(
            'message_sent',
            f'{communication.get_channel_display()} sent to {communication.recipient}',
            user=communication.sender,
            metadata={'communication_id': communication.pk},
        )
    return True


# REPORTING
def get_communication_stats(institution, days=30):
    since = timezone.now() - timedelta(days=days)
    communications = Communication.objects.filter(institution=institution, created_at__gte=since)

    by_channel = {}
    for row in communications.values('channel').annotate(
        total=Count('id'),
        sent=Count('id', filter=Q(status=Communication.STATUS_SENT)),
        failed=Count('id', filter=Q(status=Communication.STATUS_FAILED)),
        queued=Count('id', filter=Q(status=Communication.STATUS_QUEUED)),
    ):
        row['success_rate'] = round(row['sent'] / row['total'] * 100, 1) if row['total'] else 0.0
        by_channel[row.pop('channel')] = row

    total = communications.count()
    sent = communications.filter(status=Communication.STATUS_SENT).count()
    return {
        'period_days': days,
        'total': total,
        'sent': sent,
        'failed': communications.filter(status=Communication.STATUS_FAILED).count(),
        'queued': communications.filter(status=Communication.STATUS_QUEUED).count(),
        'success_rate': round(sent / total * 100, 1) if total else 0.0,
        'by_channel': by_channel,
        'templates': MessageTemplate.objects.filter(institution=institution, is_active=True).count(),
    }


def communication_to_dict(communication):
    return {
        'id': communication.id,
        'channel': communication.channel,
        'recipient': communication.recipient,
        'subject': communication.subject,
        'content': communication.content,
        'status': communication.status,
        'error_message': communication.error_message,
        'sender': communication.sender.get_full_name() if communication.sender_id else None,
        'template_id': communication.template_id,
        'application_id': communication.application_id,
        'lead_id': communication.lead_id,
        'retry_count': communication.retry_count,
        'sent_at': communication.sent_at.isoformat() if communication.sent_at else None,
        'created_at': communication.created_at.isoformat(),
    }


def grouped_log(application):
    """Communication history of an application grouped by channel"""
    communications = application.communications.select_related('sender').order_by('-created_at')
    grouped = {channel: [] for channel in CHANNELS}
    for communication in communications:
        grouped[communication.channel].append(communication_to_dict(communication))
    return {
        'total': sum(len(items) for items in grouped.values()),
        'by_channel': grouped,
        'last_contact': next(
            (c.created_at.isoformat() for c in communications if c.status == Communication.STATUS_SENT), None
        ),
    }
