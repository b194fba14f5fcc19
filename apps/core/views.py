import logging
from datetime import timedelta

from django.conf import settings
from django.contrib.auth.tokens import default_token_generator
from django.core.mail import send_mail
from django.db import transaction
from django.db.models import Count, Q, Sum
from django.forms.models import model_to_dict
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.utils import timezone
from django.utils.encoding import force_bytes
from django.utils.http import urlsafe_base64_encode
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from apps.accounts.decorators import tenant_required, role_required, super_admin_required, json_view
from apps.accounts.models import User, ROLE_INSTITUTION_ADMIN
from apps.admissions.models import Application
from apps.finance.models import Payment
from apps.finance.services import get_platform_financial_metrics
from apps.leads.assignment import get_assignment_stats
from apps.leads.models import Lead
from .forms import InstitutionForm, InstitutionSettingsForm, StatusChangeForm
from .models import Institution
from .utils import parse_json_body, json_error, form_errors, paginate, to_iso, to_float, percentage

logger = logging.getLogger(__name__)


def institution_to_dict(institution, detailed=False):
    data = {
        'id': institution.id,
        'name': institution.name,
        'slug': institution.slug,
        'email': institution.email,
        'phone': institution.phone,
        'city': institution.city,
        'country': institution.country,
        'subscription_tier': institution.subscription_tier,
        'status': institution.status,
        'logo': institution.logo.url if institution.logo else None,
        'created_at': to_iso(institution.created_at),
    }
    if detailed:
        data.update({
            'description': institution.description,
            'website': institution.website,
            'address': institution.address,
            'state': institution.state,
            'settings': institution.settings,
            'intake_secret': institution.intake_secret,
            'active_users': institution.get_active_users_count(),
            'updated_at': to_iso(institution.updated_at),
        })
    return data


# HEALTH
@require_GET
def health_view(request):
    return JsonResponse({'status': 'ok', 'timestamp': to_iso(timezone.now())})


# SUPER ADMIN
@require_GET
@super_admin_required
def super_admin_dashboard_view(request):
    institutions = Institution.objects.all()
    week_ago = timezone.now() - timedelta(days=7)

    return JsonResponse({
        'success': True,
        'institutions': {
            'total': institutions.count(),
            'by_status': dict(institutions.values_list('status').annotate(count=Count('id'))),
            'by_tier': dict(institutions.values_list('subscription_tier').annotate(count=Count('id'))),
            'new_this_week': institutions.filter(created_at__gte=week_ago).count(),
        },
        'users': {
            'total': User.objects.exclude(institution__isnull=True).count(),
            'active': User.objects.exclude(institution__isnull=True).filter(is_active=True).count(),
            'by_role': dict(User.objects.exclude(institution__isnull=True).values_list('role').annotate(count=Count('id'))),
        },
        'leads': {
            'total': Lead.objects.count(),
            'new_this_week': Lead.objects.filter(created_at__gte=week_ago).count(),
        },
        'applications': {
            'total': Application.objects.count(),
            'enrolled': Application.objects.filter(status=Application.STATUS_ENROLLED).count(),
        },
        'revenue': get_platform_financial_metrics()['platform_metrics'],
        'recent_institutions': [institution_to_dict(i) for i in institutions[:5]],
    })


def _send_admin_invite(institution, admin):
    uid = urlsafe_base64_encode(force_bytes(admin.pk))
    token = default_token_generator.make_token(admin)
    setup_url = f"{settings.FRONTEND_URL}/reset-password?uid={uid}&token={token}"
    send_mail(
        subject=f'Your {institution.name} admin account',
        message=(
            f'Hello,\n\nAn administrator account was created for {institution.name}.\n'
            f'Login email: {admin.email}\n\nChoose your password here:\n{setup_url}\n'
        ),
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[admin.email],
        fail_silently=True,
    )


@require_http_methods(['GET', 'POST'])
@super_admin_required
@json_view
def institution_list_view(request):
    if request.method == 'POST':
        payload = parse_json_body(request)
        form = InstitutionForm(payload)
        if not form.is_valid():
            return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

        admin_email = (payload.get('admin_email') or form.cleaned_data.get('email') or '').strip().lower()
        if admin_email and User.objects.filter(email=admin_email).exists():
            return json_error('A user with the admin email already exists', 400, 'EMAIL_EXISTS')

        with transaction.atomic():
            institution = form.save()
            admin = None
            if admin_email:
                admin = User.objects.create_user(
                    email=admin_email,
                    first_name=payload.get('admin_first_name') or 'Admin',
                    last_name=payload.get('admin_last_name') or institution.name[:150],
                    institution=institution,
                    role=ROLE_INSTITUTION_ADMIN,
                )

        if admin:
            _send_admin_invite(institution, admin)
        logger.info("Institution %s created by %s", institution.slug, request.user.email)
        return JsonResponse({
            'success': True,
            'institution': institution_to_dict(institution, detailed=True),
            'admin_user_id': admin.pk if admin else None,
        }, status=201)

    institutions = Institution.objects.annotate(
        user_count=Count('users', distinct=True),
        lead_count=Count('leads', distinct=True),
    )
    status = request.GET.get('status')
    if status:
        institutions = institutions.filter(status=status)
    tier = request.GET.get('tier')
    if tier:
        institutions = institutions.filter(subscription_tier=tier)
    search = request.GET.get('search', '').strip()
    if search:
        institutions = institutions.filter(Q(name__icontains=search) | Q(slug__icontains=search) | Q(email__icontains=search))

    def serialize(institution):
        return {**institution_to_dict(institution), 'user_count': institution.user_count, 'lead_count': institution.lead_count}

    return JsonResponse({'success': True, **paginate(request, institutions, serialize)})


@require_http_methods(['GET', 'PUT', 'PATCH', 'DELETE'])
@super_admin_required
@json_view
def institution_detail_view(request, pk):
    institution = get_object_or_404(Institution, pk=pk)

    if request.method == 'GET':
        return JsonResponse({
            'success': True,
            'institution': institution_to_dict(institution, detailed=True),
            'stats': {
                'users': institution.users.count(),
                'leads': institution.leads.count(),
                'applications': institution.applications.count(),
                'payments': institution.payments.filter(status=Payment.STATUS_COMPLETED).count(),
            },
        })

    if request.method == 'DELETE':
        logger.warning("Institution %s deleted by %s", institution.slug, request.user.email)
        institution.delete()
        return JsonResponse({'success': True, 'message': 'Institution deleted'})

    initial = model_to_dict(institution, fields=InstitutionForm.Meta.fields)
    form = InstitutionForm({**initial, **parse_json_body(request)}, instance=institution)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))
    return JsonResponse({'success': True, 'institution': institution_to_dict(form.save(), detailed=True)})


@require_POST
@super_admin_required
@json_view
def institution_status_view(request, pk):
    institution = get_object_or_404(Institution, pk=pk)
    form = StatusChangeForm(parse_json_body(request))
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    old_status = institution.status
    institution.status = form.cleaned_data['status']
    institution.save(update_fields=['status', 'updated_at'])
    logger.info("Institution %s status %s -> %s by %s (%s)", institution.slug, old_status, institution.status,
                request.user.email, form.cleaned_data['reason'] or 'no reason')
    return JsonResponse({'success': True, 'institution': institution_to_dict(institution)})


@require_POST
@super_admin_required
@json_view
def institution_bulk_status_view(request):
    payload = parse_json_body(request)
    form = StatusChangeForm(payload)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    ids = payload.get('ids')
    if not isinstance(ids, list) or not ids:
        return json_error('Provide a non-empty list of institution ids', 400, 'VALIDATION_ERROR')
    try:
        ids = [int(i) for i in ids]
    except (TypeError, ValueError):
        return json_error('Institution ids must be integers', 400, 'VALIDATION_ERROR')

    updated = Institution.objects.filter(pk__in=ids).update(status=form.cleaned_data['status'], updated_at=timezone.now())
    logger.info("Bulk status %s applied to %d institutions by %s", form.cleaned_data['status'], updated, request.user.email)
    return JsonResponse({'success': True, 'updated': updated, 'status': form.cleaned_data['status']})


# TENANT
@require_http_methods(['GET', 'PUT', 'PATCH'])
@tenant_required
@role_required(ROLE_INSTITUTION_ADMIN)
@json_view
def tenant_settings_view(request, tenant):
    if request.method != 'GET':
        initial = model_to_dict(tenant, fields=InstitutionSettingsForm.Meta.fields)
        form = InstitutionSettingsForm({**initial, **parse_json_body(request)}, instance=tenant)
        if not form.is_valid():
            return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))
        tenant = form.save()
        logger.info("Settings of %s updated by %s", tenant.slug, request.user.email)

    return JsonResponse({'success': True, 'institution': institution_to_dict(tenant, detailed=True)})


@require_POST
@tenant_required
@role_required(ROLE_INSTITUTION_ADMIN)
def rotate_intake_secret_view(request, tenant):
    secret = tenant.rotate_intake_secret()
    logger.info("Intake secret of %s rotated by %s", tenant.slug, request.user.email)
    return JsonResponse({'success': True, 'intake_secret': secret})


@require_GET
@tenant_required
@role_required(ROLE_INSTITUTION_ADMIN)
def tenant_dashboard_view(request, tenant):
    """
    Institution admin dashboard

    Lead volume, funnel, sources, telecaller workload plus application and
    payment summaries.
    """
    today = timezone.localdate()
    start_of_week = today - timedelta(days=today.weekday())

    leads = Lead.objects.filter(institution=tenant)
    total_leads = leads.count()
    enrolled = leads.filter(status=Lead.STATUS_ENROLLED).count()

    status_counts = dict(leads.values_list('status').annotate(count=Count('id')))
    funnel = [
        {
            'status': value,
            'label': label,
            'count': status_counts.get(value, 0),
            'percentage': percentage(status_counts.get(value, 0), total_leads),
        }
        for value, label in Lead.STATUS_CHOICES
    ]

    sources = [
        {
            'source': row['source'],
            'count': row['count'],
            'enrolled': row['enrolled'],
            'percentage': percentage(row['count'], total_leads),
        }
        for row in leads.values('source').annotate(
            count=Count('id'),
            enrolled=Count('id', filter=Q(status=Lead.STATUS_ENROLLED)),
        ).order_by('-count')
    ]

    applications = Application.objects.filter(institution=tenant)
    payments = Payment.objects.filter(institution=tenant, status=Payment.STATUS_COMPLETED).aggregate(
        count=Count('id'), revenue=Sum('institution_amount'),
    )

    return JsonResponse({
        'success': True,
        'leads': {
            'total': total_leads,
            'today': leads.filter(created_at__date=today).count(),
            'this_week': leads.filter(created_at__date__gte=start_of_week).count(),
            'this_month': leads.filter(created_at__year=today.year, created_at__month=today.month).count(),
            'unassigned': leads.filter(assigned_to__isnull=True).exclude(status__in=Lead.CLOSED_STATUSES).count(),
            'conversion_rate': percentage(enrolled, total_leads),
        },
        'funnel': funnel,
        'sources': sources,
        'telecallers': get_assignment_stats(tenant)['telecallers'],
        'applications': {
            'total': applications.count(),
            'by_status': dict(applications.values_list('status').annotate(count=Count('id'))),
        },
        'payments': {
            'completed': payments['count'],
            'revenue': to_float(payments['revenue']) or 0.0,
            'pending': Payment.objects.filter(institution=tenant, status=Payment.STATUS_CREATED).count(),
        },
        'recent_leads': [
            {'id': lead.id, 'name': lead.name, 'source': lead.source, 'status': lead.status, 'score': lead.score,
             'created_at': to_iso(lead.created_at)}
            for lead in leads[:5]
        ],
    })
