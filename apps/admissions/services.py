"""
Admission workflow

Lead -> Application (convert_lead)
     -> AdmissionReview (save_review by the admission team)
     -> decision (decide by the admission head)
     -> OfferLetter (generate / distribute)
     -> accepted (enrolled) / declined / expired
"""

import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Q, Avg
from django.utils import timezone

from apps.accounts.models import User, ROLE_STUDENT, ROLE_ADMISSION_TEAM, ROLE_ADMISSION_HEAD
from apps.communications.clients import MessagingError
from apps.communications.models import CHANNEL_EMAIL, CHANNELS
from apps.communications.services import application_context, queue_communication, recipient_for
from apps.communications.templating import render_template, DEFAULT_TEMPLATES
from apps.core.utils import percentage
from apps.leads.models import Lead
from apps.notifications.models import Notification
from apps.notifications.services import send_notification, send_role_notification
from .models import Application, AdmissionReview, OfferLetter, OfferLetterTemplate

logger = logging.getLogger(__name__)


class ApplicationError(Exception):
    """Raised when an application cannot be created or moved"""
    pass


class OfferLetterError(Exception):
    """Raised when an offer letter operation is not allowed"""
    pass


# APPLICATIONS
def convert_lead(lead, user=None, course='', academic_year='', fee_amount=None, program_start_date=None, notes=''):
    """
    Create the application for a lead

    The student portal account (if one exists with the lead's email in the
    same institution) is linked automatically.

    Raises:
        ApplicationError: Lead already converted or closed
    """
    if Application.objects.filter(lead=lead).exists():
        raise ApplicationError('This lead already has an application')
    if lead.status in (Lead.STATUS_REJECTED, Lead.STATUS_LOST):
        raise ApplicationError(f'Cannot convert a {lead.get_status_display().lower()} lead')

    student = None
    if lead.email:
        student = User.objects.filter(
            institution=lead.institution, role=ROLE_STUDENT, email__iexact=lead.email, is_active=True
        ).first()

    with transaction.atomic():
        application = Application.objects.create(
            institution=lead.institution,
            lead=lead,
            student=student,
            student_name=lead.name,
            student_email=lead.email,
            student_phone=lead.phone,
            course=course or lead.course_interest,
            academic_year=academic_year or lead.institution.settings.get('academic_year', ''),
            fee_amount=fee_amount,
            program_start_date=program_start_date,
            notes=notes,
        )
        lead.log_activity('converted', f'Converted to application #{application.pk}', user=user,
                          metadata={'application_id': application.pk})
        lead.change_status(Lead.STATUS_APPLICATION_STARTED, user=user)

    send_role_notification(
        lead.institution,
        [ROLE_ADMISSION_TEAM],
        'New application',
        f'{application.student_name} applied for {application.course or "a program"}',
        category='admission',
        lead=lead,
        action_type='application_created',
        data={'application_id': application.pk},
    )
    logger.info("Lead %s converted to application %s", lead.pk, application.pk)
    return application


def save_review(application, user, data):
    """
    Create or update the admission team review

    A review with a recommendation is complete; the application moves to
    under_review the first time it is reviewed.
    """
    if application.status in (Application.STATUS_ENROLLED, Application.STATUS_WITHDRAWN):
        raise ApplicationError(f'Cannot review an {application.get_status_display().lower()} application')

    review, _created = AdmissionReview.objects.get_or_create(application=application, defaults={'reviewer': user})
    if review.is_decided():
        raise ApplicationError('This application has already been decided')

    for field in ('interview_notes', 'academic_score', 'recommendations', 'recommendation'):
        if field in data:
            setattr(review, field, data[field])
    review.reviewer = user
    review.status = AdmissionReview.STATUS_COMPLETED if review.recommendation else AdmissionReview.STATUS_IN_PROGRESS
    review.save()

    if application.status == Application.STATUS_SUBMITTED:
        application.change_status(Application.STATUS_UNDER_REVIEW, user=user)

    if review.status == AdmissionReview.STATUS_COMPLETED:
        send_role_notification(
            application.institution,
            [ROLE_ADMISSION_HEAD],
            'Application ready for decision',
            f'{application.student_name}: {review.get_recommendation_display()}',
            category='admission',
            lead=application.lead,
            action_type='review_completed',
            data={'application_id': application.pk, 'review_id': review.pk},
        )
    return review


def decide(review, user, decision, reason=''):
    """
    Record the admission head's final decision

    Raises:
        ApplicationError: Missing rejection reason or invalid application state
    """
    if decision not in AdmissionReview.DECISION_APPLICATION_STATUS:
        raise ApplicationError(f'Unknown decision "{decision}"')
    if decision == AdmissionReview.DECISION_REJECTED and not (reason or '').strip():
        raise ApplicationError('A reason is required to reject an application')

    application = review.application
    if application.status in (Application.STATUS_ENROLLED, Application.STATUS_WITHDRAWN):
        raise ApplicationError(f'Cannot decide an {application.get_status_display().lower()} application')
    if hasattr(application, 'offer_letter') and application.offer_letter.status != OfferLetter.STATUS_DRAFT:
        raise ApplicationError('An offer letter has already been sent for this application')

    with transaction.atomic():
        review.decision = decision
        review.decision_reason = reason or ''
        review.decided_by = user
        review.decided_at = timezone.now()
        review.status = AdmissionReview.STATUS_COMPLETED
        review.save()
        application.change_status(AdmissionReview.DECISION_APPLICATION_STATUS[decision], user=user, note=reason)

        # A draft letter only stands while the application is approved
        if decision != AdmissionReview.DECISION_APPROVED:
            voided, _ = OfferLetter.objects.filter(application=application, status=OfferLetter.STATUS_DRAFT).delete()
            if voided:
                logger.info("Draft offer letter of application %s removed after %s decision", application.pk, decision)

    notification_type = {
        AdmissionReview.DECISION_APPROVED: Notification.TYPE_SUCCESS,
        AdmissionReview.DECISION_REJECTED: Notification.TYPE_ERROR,
    }.get(decision, Notification.TYPE_INFO)

    if application.student_id:
        send_notification(
            application.student,
            'Admission decision',
            f'Your application for {application.course or "the program"} has been {review.get_decision_display().lower()}.',
            notification_type=notification_type,
            category='admission',
            priority='high',
            institution=application.institution,
            action_type='admission_decision',
            data={'application_id': application.pk, 'decision': decision},
        )
    if review.reviewer_id and review.reviewer_id != user.pk:
        send_notification(
            review.reviewer,
            'Admission decision recorded',
            f'{application.student_name}: {review.get_decision_display()}',
            notification_type=notification_type,
            category='admission',
            institution=application.institution,
            lead=application.lead,
            action_type='admission_decision',
            data={'application_id': application.pk, 'decision': decision},
        )

    logger.info("Application %s %s by %s", application.pk, decision, user.email)
    return review


# OFFER LETTERS
def build_offer_context(application, expires_at=None):
    context = application_context(application)
    context['acceptance_deadline'] = (expires_at or timezone.now() + timedelta(days=settings.OFFER_LETTER_VALIDITY_DAYS)).date()
    if application.fee_amount is not None:
        context['fee_amount'] = f'{application.fee_amount:,.2f} {settings.DEFAULT_CURRENCY}'
    return context


def _serializable(context):
    return {
        key: value if isinstance(value, (int, float, str)) else str(value)
        for key, value in context.items()
        if key not in ('institution', 'application', 'lead')
    }


def get_default_template(institution):
    return OfferLetterTemplate.objects.filter(institution=institution, is_active=True, is_default=True).first()


def generate_offer_letter(application, user, template=None):
    """
    Render the offer letter of an approved application

    Uses ``template``, else the institution's default template, else the
    built-in one.

    Raises:
        OfferLetterError: Not approved, or a letter already exists
    """
    if application.get_final_decision() != AdmissionReview.DECISION_APPROVED:
        raise OfferLetterError('Offer letters can only be generated for approved applications')
    if OfferLetter.objects.filter(application=application).exists():
        raise OfferLetterError('An offer letter already exists for this application')

    template = template or get_default_template(application.institution)
    if template is not None:
        subject_text, body_text = template.subject, template.body
    else:
        subject_text, body_text = DEFAULT_TEMPLATES['offer_letter']['subject'], DEFAULT_TEMPLATES['offer_letter']['body']

    expires_at = timezone.now() + timedelta(days=settings.OFFER_LETTER_VALIDITY_DAYS)
    context = build_offer_context(application, expires_at)
    subject = render_template(subject_text, context)
    body = render_template(body_text, context)

    offer = OfferLetter.objects.create(
        institution=application.institution,
        application=application,
        template=template,
        subject=subject.text,
        body=body.text,
        variables=_serializable(context),
        generated_by=user,
        expires_at=expires_at,
    )
    missing = list(dict.fromkeys(subject.missing + body.missing))
    if missing:
        logger.warning("Offer letter %s generated with unfilled variables: %s", offer.pk, ', '.join(missing))
    logger.info("Offer letter %s generated for application %s", offer.pk, application.pk)
    return offer


def bulk_generate(applications, user, template=None):
    """
    Returns:
        dict: {'generated': [OfferLetter], 'errors': [{'application_id', 'error'}]}
    """
    generated, errors = [], []
    for application in applications:
        try:
            generated.append(generate_offer_letter(application, user, template))
        except OfferLetterError as e:
            errors.append({'application_id': application.pk, 'error': str(e)})
    return {'generated': generated, 'errors': errors}


def _short_offer_text(offer):
    application = offer.application
    return (
        f'Congratulations {application.student_name}! {application.institution.name} has offered you admission '
        f'to {application.course or "the program"}. Please respond by {offer.expires_at:%d %b %Y} '
        f'on the student portal.'
    )


def distribute_offer_letter(offer, channels, user):
    """
    Send an offer letter over the given channels

    Email carries the full letter, SMS and WhatsApp a short notice.

    Returns:
        dict: {'queued': [{'channel', 'communication_id'}], 'failed': [{'channel', 'error'}]}

    Raises:
        OfferLetterError: Letter is closed or nothing could be sent
    """
    if offer.is_terminal():
        raise OfferLetterError(f'Offer letter is {offer.get_status_display().lower()}')
    _check_still_approved(offer)
    unknown = [c for c in channels if c not in CHANNELS]
    if not channels or unknown:
        raise OfferLetterError('Choose at least one channel among email, sms and whatsapp')

    application = offer.application
    if offer.expires_at is None:
        offer.expires_at = offer.default_expiry()

    queued, failed = [], []
    for channel in channels:
        content = offer.body if channel == CHANNEL_EMAIL else _short_offer_text(offer)
        try:
            communication = queue_communication(
                offer.institution,
                channel,
                recipient_for(channel, application=application),
                content,
                subject=offer.subject,
                application=application,
                sender=user,
            )
        except MessagingError as e:
            failed.append({'channel': channel, 'error': str(e)})
            continue
        queued.append({'channel': channel, 'communication_id': communication.pk})

    if not queued:
        raise OfferLetterError('The offer letter could not be sent on any channel')

    if offer.status == OfferLetter.STATUS_DRAFT:
        offer.status = OfferLetter.STATUS_SENT
    offer.sent_at = timezone.now()
    offer.distribution_channels = sorted(set(offer.distribution_channels or []) | {q['channel'] for q in queued})
    offer.save(update_fields=['status', 'sent_at', 'expires_at', 'distribution_channels', 'updated_at'])

    if application.student_id:
        send_notification(
            application.student,
            'You have received an offer letter',
            f'{offer.institution.name} has offered you admission to {application.course or "the program"}.',
            notification_type=Notification.TYPE_SUCCESS,
            category='admission',
            priority='high',
            institution=offer.institution,
            action_type='offer_letter',
            data={'application_id': application.pk, 'offer_letter_id': offer.pk},
            deliver_externally=False,
        )
    logger.info("Offer letter %s distributed via %s", offer.pk, ', '.join(q['channel'] for q in queued))
    return {'queued': queued, 'failed': failed}


def mark_viewed(offer):
    if offer.status == OfferLetter.STATUS_SENT:
        offer.status = OfferLetter.STATUS_VIEWED
        offer.viewed_at = timezone.now()
        offer.save(update_fields=['status', 'viewed_at', 'updated_at'])
    return offer


def _expire(offer):
    offer.status = OfferLetter.STATUS_EXPIRED
    offer.save(update_fields=['status', 'updated_at'])


def _check_still_approved(offer):
    # Read from the database, the review cached on offer.application may predate a new decision
    decision = AdmissionReview.objects.filter(application_id=offer.application_id).values_list('decision', flat=True).first()
    if decision != AdmissionReview.DECISION_APPROVED:
        raise OfferLetterError('The application is no longer approved')


def _check_respondable(offer):
    if offer.status not in OfferLetter.TERMINAL_STATUSES and offer.is_expired():
        _expire(offer)
    if offer.status == OfferLetter.STATUS_ACCEPTED:
        raise OfferLetterError('Offer letter already accepted')
    if offer.status == OfferLetter.STATUS_DECLINED:
        raise OfferLetterError('Offer letter has been declined')
    if offer.status == OfferLetter.STATUS_EXPIRED:
        raise OfferLetterError('Offer letter has expired')
    if offer.status not in OfferLetter.RESPONDABLE_STATUSES:
        raise OfferLetterError('Offer letter has not been sent yet')
    _check_still_approved(offer)


def accept_offer(offer, user):
    """
    Student accepts: application and lead become enrolled

    Raises:
        OfferLetterError: Letter is not open for a response
    """
    _check_respondable(offer)
    now = timezone.now()

    with transaction.atomic():
        offer.status = OfferLetter.STATUS_ACCEPTED
        offer.accepted_at = now
        offer.viewed_at = offer.viewed_at or now
        offer.save(update_fields=['status', 'accepted_at', 'viewed_at', 'updated_at'])
        offer.application.change_status(Application.STATUS_ENROLLED, user=user, note='Offer letter accepted')

    send_role_notification(
        offer.institution,
        [ROLE_ADMISSION_HEAD, ROLE_ADMISSION_TEAM],
        'Offer accepted',
        f'{offer.application.student_name} accepted the offer for {offer.application.course or "the program"}',
        notification_type=Notification.TYPE_SUCCESS,
        category='admission',
        lead=offer.application.lead,
        action_type='offer_accepted',
        data={'application_id': offer.application_id},
    )
    return offer


def decline_offer(offer, user, reason=''):
    _check_respondable(offer)
    now = timezone.now()

    offer.status = OfferLetter.STATUS_DECLINED
    offer.declined_at = now
    offer.viewed_at = offer.viewed_at or now
    offer.decline_reason = reason or ''
    offer.save(update_fields=['status', 'declined_at', 'viewed_at', 'decline_reason', 'updated_at'])

    send_role_notification(
        offer.institution,
        [ROLE_ADMISSION_HEAD],
        'Offer declined',
        f'{offer.application.student_name} declined the offer' + (f': {reason}' if reason else ''),
        notification_type=Notification.TYPE_WARNING,
        category='admission',
        lead=offer.application.lead,
        action_type='offer_declined',
        data={'application_id': offer.application_id},
    )
    return offer


def expire_overdue_offers(now=None):
    """Expire sent or viewed letters past expires_at. Returns the number expired."""
    now = now or timezone.now()
    expired = OfferLetter.objects.filter(status__in=OfferLetter.RESPONDABLE_STATUSES, expires_at__lt=now)
    count = expired.update(status=OfferLetter.STATUS_EXPIRED, updated_at=now)
    if count:
        logger.info("Expired %d offer letters", count)
    return count


# REPORTING
def get_admission_metrics(institution, since=None):
    applications = Application.objects.filter(institution=institution)
    if since:
        applications = applications.filter(created_at__gte=since)

    total = applications.count()
    by_status = dict(applications.values_list('status').annotate(count=Count('id')))
    by_course = [
        {'course': row['course'] or 'Unspecified', 'total': row['total'], 'enrolled': row['enrolled']}
        for row in applications.values('course').annotate(
            total=Count('id'),
            enrolled=Count('id', filter=Q(status=Application.STATUS_ENROLLED)),
        ).order_by('-total')
    ]

    offers = OfferLetter.objects.filter(application__in=applications)
    offers_answered = offers.filter(status__in=[OfferLetter.STATUS_ACCEPTED, OfferLetter.STATUS_DECLINED]).count()
    offers_accepted = offers.filter(status=OfferLetter.STATUS_ACCEPTED).count()

    reviews = AdmissionReview.objects.filter(application__in=applications)
    reviewers = [
        {
            'reviewer_id': row['reviewer'],
            'name': f"{row['reviewer__first_name']} {row['reviewer__last_name']}".strip() or row['reviewer__email'],
            'reviews': row['reviews'],
            'completed': row['completed'],
            'average_score': round(float(row['average_score']), 1) if row['average_score'] is not None else None,
        }
        for row in reviews.exclude(reviewer=None).values(
            'reviewer', 'reviewer__first_name', 'reviewer__last_name', 'reviewer__email'
        ).annotate(
            reviews=Count('id'),
            completed=Count('id', filter=Q(status=AdmissionReview.STATUS_COMPLETED)),
            average_score=Avg('academic_score'),
        ).order_by('-reviews')
    ]

    decided = reviews.exclude(decision='')
    return {
        'total_applications': total,
        'by_status': by_status,
        'by_course': by_course,
        'pending_decisions': applications.filter(status__in=Application.OPEN_STATUSES).count(),
        'decisions': dict(decided.values_list('decision').annotate(count=Count('id'))),
        'admission_rate': percentage(by_status.get(Application.STATUS_ADMITTED, 0) + by_status.get(Application.STATUS_ENROLLED, 0), total),
        'enrollment_rate': percentage(by_status.get(Application.STATUS_ENROLLED, 0), total),
        'offers': {
            'total': offers.count(),
            'by_status': dict(offers.values_list('status').annotate(count=Count('id'))),
            'acceptance_rate': percentage(offers_accepted, offers_answered),
        },
        'reviewers': reviewers,
    }
