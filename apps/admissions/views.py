import logging
from datetime import timedelta

from django.db.models import Q, Count
from django.forms.models import model_to_dict
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.utils import timezone
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from apps.accounts.decorators import tenant_required, role_required, json_view
from apps.accounts.models import (
    ROLE_INSTITUTION_ADMIN, ROLE_ADMISSION_TEAM, ROLE_ADMISSION_HEAD, ROLE_STUDENT, ROLE_PARENT,
)
from apps.appointments.models import Appointment
from apps.communications.services import grouped_log
from apps.core.utils import parse_json_body, json_error, form_errors, paginate, to_iso, to_float
from apps.documents.models import Document
from apps.documents.services import required_documents_status
from . import services
from .forms import (
    ApplicationUpdateForm, ReviewForm, DecisionForm, OfferLetterTemplateForm, GenerateOfferForm,
    BulkGenerateForm, DistributeOfferForm, DeclineOfferForm,
)
from .models import Application, AdmissionReview, OfferLetter, OfferLetterTemplate
from .services import ApplicationError, OfferLetterError

logger = logging.getLogger(__name__)

ADMISSION_STAFF = (ROLE_ADMISSION_TEAM, ROLE_ADMISSION_HEAD, ROLE_INSTITUTION_ADMIN)
ADMISSION_LEADS = (ROLE_ADMISSION_HEAD, ROLE_INSTITUTION_ADMIN)
APPLICANTS = (ROLE_STUDENT, ROLE_PARENT)

REPORT_PERIODS = {'7d': 7, '30d': 30, '90d': 90, '365d': 365}


# SERIALIZERS
def review_to_dict(review):
    return {
        'id': review.id,
        'application_id': review.application_id,
        'reviewer': review.reviewer.get_full_name() if review.reviewer_id else None,
        'status': review.status,
        'interview_notes': review.interview_notes,
        'academic_score': to_float(review.academic_score),
        'recommendations': review.recommendations,
        'recommendation': review.recommendation,
        'decision': review.decision,
        'decision_reason': review.decision_reason,
        'decided_by': review.decided_by.get_full_name() if review.decided_by_id else None,
        'decided_at': to_iso(review.decided_at),
        'updated_at': to_iso(review.updated_at),
    }


def offer_to_dict(offer):
    return {
        'id': offer.id,
        'application_id': offer.application_id,
        'template_id': offer.template_id,
        'subject': offer.subject,
        'body': offer.body,
        'variables': offer.variables,
        'status': offer.status,
        'distribution_channels': offer.distribution_channels,
        'generated_by': offer.generated_by.get_full_name() if offer.generated_by_id else None,
        'expires_at': to_iso(offer.expires_at),
        'sent_at': to_iso(offer.sent_at),
        'viewed_at': to_iso(offer.viewed_at),
        'accepted_at': to_iso(offer.accepted_at),
        'declined_at': to_iso(offer.declined_at),
        'decline_reason': offer.decline_reason,
        'created_at': to_iso(offer.created_at),
    }


def template_to_dict(template):
    return {
        'id': template.id,
        'name': template.name,
        'subject': template.subject,
        'body': template.body,
        'is_active': template.is_active,
        'is_default': template.is_default,
        'created_at': to_iso(template.created_at),
    }


def application_to_dict(application):
    review = getattr(application, 'review', None)
    return {
        'id': application.id,
        'lead_id': application.lead_id,
        'student_id': application.student_id,
        'student_name': application.student_name,
        'student_email': application.student_email,
        'student_phone': application.student_phone,
        'course': application.course,
        'academic_year': application.academic_year,
        'fee_amount': to_float(application.fee_amount),
        'program_start_date': to_iso(application.program_start_date),
        'status': application.status,
        'status_display': application.get_status_display(),
        'decision': review.decision if review else '',
        'recommendation': review.recommendation if review else '',
        'priority_score': application.priority_score(),
        'submitted_at': to_iso(application.submitted_at),
        'created_at': to_iso(application.created_at),
    }


def _applications(tenant):
    return Application.objects.filter(institution=tenant).select_related('review', 'lead')


# ADMISSION TEAM
@require_GET
@tenant_required
@role_required(*ADMISSION_STAFF)
def admission_team_dashboard_view(request, tenant):
    applications = Application.objects.filter(institution=tenant)
    now = timezone.now()
    today = timezone.localtime(now).replace(hour=0, minute=0, second=0, microsecond=0)

    appointments = Appointment.objects.filter(institution=tenant).select_related('application', 'counselor')
    return JsonResponse({
        'success': True,
        'stats': {
            'total_applications': applications.count(),
            'by_status': dict(applications.values_list('status').annotate(count=Count('id'))),
            'pending_reviews': applications.filter(status__in=Application.OPEN_STATUSES).filter(
                Q(review__isnull=True) | Q(review__status__in=[AdmissionReview.STATUS_PENDING, AdmissionReview.STATUS_IN_PROGRESS])
            ).count(),
            'new_this_week': applications.filter(created_at__gte=now - timedelta(days=7)).count(),
            'pending_documents': Document.objects.filter(institution=tenant, status=Document.STATUS_PENDING).count(),
            'today_appointments': appointments.filter(scheduled_at__gte=today, scheduled_at__lt=today + timedelta(days=1)).count(),
        },
        'upcoming_appointments': [
            a.to_dict() for a in appointments.filter(status__in=Appointment.UPCOMING_STATUSES, scheduled_at__gte=now)[:5]
        ],
        'recent_applications': [application_to_dict(a) for a in _applications(tenant)[:10]],
    })


@require_GET
@tenant_required
@role_required(*ADMISSION_STAFF)
def application_list_view(request, tenant):
    applications = _applications(tenant)

    status = request.GET.get('status')
    if status:
        applications = applications.filter(status=status)
    course = request.GET.get('course')
    if course:
        applications = applications.filter(course__icontains=course)
    academic_year = request.GET.get('academic_year')
    if academic_year:
        applications = applications.filter(academic_year=academic_year)
    search = request.GET.get('search', '').strip()
    if search:
        applications = applications.filter(
            Q(student_name__icontains=search) | Q(student_email__icontains=search) | Q(student_phone__icontains=search)
        )

    if request.GET.get('sort') == 'priority':
        ordered = sorted(applications, key=lambda a: a.priority_score(), reverse=True)
        return JsonResponse({'success': True, **paginate(request, ordered, application_to_dict)})

    sort = request.GET.get('sort', '-created_at')
    if sort.lstrip('-') not in ('created_at', 'submitted_at', 'student_name', 'status'):
        sort = '-created_at'
    return JsonResponse({'success': True, **paginate(request, applications.order_by(sort), application_to_dict)})


@require_http_methods(['GET', 'PUT', 'PATCH'])
@tenant_required
@role_required(*ADMISSION_STAFF)
@json_view
def application_detail_view(request, tenant, pk):
    application = get_object_or_404(_applications(tenant), pk=pk)

    if request.method != 'GET':
        initial = model_to_dict(application, fields=ApplicationUpdateForm.Meta.fields)
        old_status = application.status
        form = ApplicationUpdateForm({**initial, **parse_json_body(request)}, instance=application)
        if not form.is_valid():
            return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

        new_status = form.cleaned_data['status']
        application = form.save(commit=False)
        application.status = old_status
        application.save()
        application.change_status(new_status, user=request.user)

    review = getattr(application, 'review', None)
    offer = OfferLetter.objects.filter(application=application).select_related('generated_by').first()
    documents = application.documents.select_related('document_type', 'uploaded_by', 'verifier')
    return JsonResponse({
        'success': True,
        'application': {
            **application_to_dict(application),
            'notes': application.notes,
            'lead': {
                'id': application.lead.id,
                'source': application.lead.source,
                'score': application.lead.score,
                'assigned_to': application.lead.assigned_to.get_full_name() if application.lead.assigned_to_id else None,
            } if application.lead_id else None,
        },
        'review': review_to_dict(review) if review else None,
        'documents': [d.to_dict() for d in documents],
        'required_documents': required_documents_status(application),
        'payments': [p.to_dict() for p in application.payments.select_related('payer')],
        'appointments': [a.to_dict() for a in application.appointments.select_related('counselor')],
        'communications': grouped_log(application),
        'offer_letter': offer_to_dict(offer) if offer else None,
    })


@require_http_methods(['GET', 'POST', 'PUT'])
@tenant_required
@role_required(*ADMISSION_STAFF)
@json_view
def application_review_view(request, tenant, pk):
    application = get_object_or_404(_applications(tenant), pk=pk)

    if request.method == 'GET':
        review = getattr(application, 'review', None)
        return JsonResponse({'success': True, 'review': review_to_dict(review) if review else None})

    payload = parse_json_body(request)
    review = getattr(application, 'review', None) or AdmissionReview(application=application)
    initial = model_to_dict(review, fields=ReviewForm.Meta.fields)
    form = ReviewForm({**initial, **payload}, instance=review)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    data = {field: form.cleaned_data[field] for field in ReviewForm.Meta.fields}
    try:
        review = services.save_review(application, request.user, data)
    except ApplicationError as e:
        return json_error(e, 409, 'INVALID_APPLICATION_STATE')
    return JsonResponse({'success': True, 'review': review_to_dict(review)})


# ADMISSION HEAD
@require_GET
@tenant_required
@role_required(*ADMISSION_LEADS)
def admission_head_dashboard_view(request, tenant):
    metrics = services.get_admission_metrics(tenant)
    pending = AdmissionReview.objects.filter(application__institution=tenant, decision='').select_related('application', 'reviewer')
    return JsonResponse({
        'success': True,
        'metrics': metrics,
        'pending_approvals': pending.count(),
        'ready_for_decision': [
            {**review_to_dict(r), 'student_name': r.application.student_name, 'course': r.application.course}
            for r in pending.filter(status=AdmissionReview.STATUS_COMPLETED)[:10]
        ],
        'offers_to_send': OfferLetter.objects.filter(institution=tenant, status=OfferLetter.STATUS_DRAFT).count(),
    })


@require_GET
@tenant_required
@role_required(*ADMISSION_LEADS)
def admission_reports_view(request, tenant):
    period = request.GET.get('period')
    since = None
    if period:
        if period not in REPORT_PERIODS:
            return json_error(f'period must be one of {", ".join(REPORT_PERIODS)}', 400, 'INVALID_PERIOD')
        since = timezone.now() - timedelta(days=REPORT_PERIODS[period])
    return JsonResponse({'success': True, 'period': period or 'all', 'report': services.get_admission_metrics(tenant, since)})


@require_GET
@tenant_required
@role_required(*ADMISSION_LEADS)
def approval_list_view(request, tenant):
    reviews = AdmissionReview.objects.filter(application__institution=tenant).select_related(
        'application', 'reviewer', 'decided_by'
    )
    status = request.GET.get('status', 'pending')
    if status == 'pending':
        reviews = reviews.filter(decision='')
    elif status in dict(AdmissionReview.DECISION_CHOICES):
        reviews = reviews.filter(decision=status)
    elif status != 'all':
        return json_error('status must be pending, approved, rejected, waitlisted or all', 400, 'VALIDATION_ERROR')

    def serialize(review):
        return {**review_to_dict(review), 'application': application_to_dict(review.application)}

    return JsonResponse({'success': True, **paginate(request, reviews, serialize)})


@require_POST
@tenant_required
@role_required(*ADMISSION_LEADS)
@json_view
def approval_decide_view(request, tenant, review_id):
    review = get_object_or_404(
        AdmissionReview.objects.select_related('application__lead', 'application__student', 'reviewer'),
        pk=review_id, application__institution=tenant,
    )
    form = DecisionForm(parse_json_body(request))
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    try:
        review = services.decide(review, request.user, form.cleaned_data['decision'], form.cleaned_data['reason'])
    except ApplicationError as e:
        return json_error(e, 409, 'INVALID_APPLICATION_STATE')
    return JsonResponse({
        'success': True,
        'review': review_to_dict(review),
        'application': application_to_dict(review.application),
    })


@require_http_methods(['GET', 'POST'])
@tenant_required
@role_required(*ADMISSION_LEADS)
@json_view
def offer_template_list_view(request, tenant):
    if request.method == 'GET':
        templates = OfferLetterTemplate.objects.filter(institution=tenant)
        return JsonResponse({'success': True, 'templates': [template_to_dict(t) for t in templates]})

    form = OfferLetterTemplateForm(parse_json_body(request), institution=tenant)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))
    template = form.save(commit=False)
    template.created_by = request.user
    template.save()
    return JsonResponse({'success': True, 'template': template_to_dict(template)}, status=201)


@require_http_methods(['GET', 'PUT', 'PATCH', 'DELETE'])
@tenant_required
@role_required(*ADMISSION_LEADS)
@json_view
def offer_template_detail_view(request, tenant, pk):
    template = get_object_or_404(OfferLetterTemplate, pk=pk, institution=tenant)

    if request.method == 'GET':
        return JsonResponse({'success': True, 'template': template_to_dict(template)})

    if request.method == 'DELETE':
        template.delete()
        return JsonResponse({'success': True})

    initial = model_to_dict(template, fields=OfferLetterTemplateForm.Meta.fields)
    form = OfferLetterTemplateForm({**initial, **parse_json_body(request)}, instance=template, institution=tenant)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))
    return JsonResponse({'success': True, 'template': template_to_dict(form.save())})


@require_GET
@tenant_required
@role_required(*ADMISSION_LEADS)
def offer_list_view(request, tenant):
    offers = OfferLetter.objects.filter(institution=tenant).select_related('application', 'generated_by')
    status = request.GET.get('status')
    if status:
        offers = offers.filter(status=status)

    def serialize(offer):
        return {**offer_to_dict(offer), 'student_name': offer.application.student_name, 'course': offer.application.course}

    return JsonResponse({'success': True, **paginate(request, offers, serialize)})


@require_POST
@tenant_required
@role_required(*ADMISSION_LEADS)
@json_view
def offer_generate_view(request, tenant):
    form = GenerateOfferForm(parse_json_body(request), institution=tenant)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    try:
        offer = services.generate_offer_letter(
            form.cleaned_data['application_id'], request.user, form.cleaned_data['template_id']
        )
    except OfferLetterError as e:
        return json_error(e, 409, 'OFFER_LETTER_ERROR')
    return JsonResponse({'success': True, 'offer_letter': offer_to_dict(offer)}, status=201)


@require_POST
@tenant_required
@role_required(*ADMISSION_LEADS)
@json_view
def offer_bulk_generate_view(request, tenant):
    form = BulkGenerateForm(parse_json_body(request), institution=tenant)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    result = services.bulk_generate(form.cleaned_data['application_ids'], request.user, form.cleaned_data['template_id'])
    return JsonResponse({
        'success': True,
        'generated': [offer_to_dict(o) for o in result['generated']],
        'errors': result['errors'],
        'message': f"{len(result['generated'])} offer letters generated, {len(result['errors'])} skipped",
    })


@require_POST
@tenant_required
@role_required(*ADMISSION_LEADS)
@json_view
def offer_distribute_view(request, tenant):
    form = DistributeOfferForm(parse_json_body(request))
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    offer = get_object_or_404(
        OfferLetter.objects.select_related('application__student', 'application__lead', 'institution'),
        pk=form.cleaned_data['offer_letter_id'], institution=tenant,
    )
    try:
        result = services.distribute_offer_letter(offer, form.cleaned_data['channels'], request.user)
    except OfferLetterError as e:
        return json_error(e, 409, 'OFFER_LETTER_ERROR')
    return JsonResponse({'success': True, 'offer_letter': offer_to_dict(offer), **result})


# STUDENT / PARENT
def _student_applications(request, tenant):
    return Application.objects.filter(institution=tenant).filter(
        Q(student=request.user) | Q(parents=request.user)
    ).distinct().select_related('review')


@require_GET
@tenant_required
@role_required(*APPLICANTS)
def student_application_list_view(request, tenant):
    applications = _student_applications(request, tenant)
    return JsonResponse({'success': True, 'applications': [application_to_dict(a) for a in applications]})


@require_GET
@tenant_required
@role_required(*APPLICANTS)
def student_application_detail_view(request, tenant, pk):
    application = get_object_or_404(_student_applications(request, tenant), pk=pk)
    offer = OfferLetter.objects.filter(application=application).first()
    return JsonResponse({
        'success': True,
        'application': application_to_dict(application),
        'documents': [d.to_dict() for d in application.documents.select_related('document_type')],
        'required_documents': required_documents_status(application),
        'payments': [p.to_dict() for p in application.payments.all()],
        'appointments': [a.to_dict() for a in application.appointments.select_related('counselor')],
        'offer_letter': {'id': offer.id, 'status': offer.status} if offer and offer.status != OfferLetter.STATUS_DRAFT else None,
    })


def _student_offer(request, tenant, application_id):
    application = get_object_or_404(_student_applications(request, tenant), pk=application_id)
    offer = OfferLetter.objects.filter(application=application).select_related('application__lead', 'institution').first()
    # Drafts are not shown to applicants
    if offer is None or offer.status == OfferLetter.STATUS_DRAFT:
        return None
    return offer


@require_GET
@tenant_required
@role_required(*APPLICANTS)
def student_offer_view(request, tenant, application_id):
    offer = _student_offer(request, tenant, application_id)
    if offer is None:
        return json_error('Offer letter not found', 404, 'NOT_FOUND')
    if request.user.role == ROLE_STUDENT:
        services.mark_viewed(offer)
    return JsonResponse({'success': True, 'offer_letter': offer_to_dict(offer)})


@require_POST
@tenant_required
@role_required(*APPLICANTS)
def student_offer_accept_view(request, tenant, application_id):
    offer = _student_offer(request, tenant, application_id)
    if offer is None:
        return json_error('Offer letter not found', 404, 'NOT_FOUND')
    try:
        services.accept_offer(offer, request.user)
    except OfferLetterError as e:
        return json_error(e, 400, 'OFFER_LETTER_CLOSED')
    return JsonResponse({'success': True, 'offer_letter': offer_to_dict(offer), 'application_status': offer.application.status})


@require_POST
@tenant_required
@role_required(*APPLICANTS)
@json_view
def student_offer_decline_view(request, tenant, application_id):
    offer = _student_offer(request, tenant, application_id)
    if offer is None:
        return json_error('Offer letter not found', 404, 'NOT_FOUND')

    form = DeclineOfferForm(parse_json_body(request))
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))
    try:
        services.decline_offer(offer, request.user, form.cleaned_data['reason'])
    except OfferLetterError as e:
        return json_error(e, 400, 'OFFER_LETTER_CLOSED')
    return JsonResponse({'success': True, 'offer_letter': offer_to_dict(offer)})
