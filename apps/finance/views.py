import logging
from datetime import datetime, timedelta

from django.db.models import Q
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.utils import timezone
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from apps.accounts.decorators import tenant_required, role_required, json_view, super_admin_required
from apps.accounts.models import ROLE_INSTITUTION_ADMIN, ROLE_FINANCE_TEAM, ROLE_STUDENT, ROLE_PARENT
from apps.admissions.models import Application
from apps.core.utils import parse_json_body, json_error, form_errors, paginate
from . import services
from .forms import (
    FeeCalculationForm, PaymentForm, PaymentStatusForm, RefundDecisionForm, RefundRequestForm, ACTION_APPROVE,
)
from .models import Payment, RefundRequest
from .services import RefundError

logger = logging.getLogger(__name__)

FINANCE_ROLES = (ROLE_INSTITUTION_ADMIN, ROLE_FINANCE_TEAM)
APPLICANTS = (ROLE_STUDENT, ROLE_PARENT)


def _parse_date(value):
    try:
        return timezone.make_aware(datetime.strptime(value, '%Y-%m-%d'))
    except (TypeError, ValueError):
        return None


@require_POST
@tenant_required
@role_required(*FINANCE_ROLES)
@json_view
def calculate_fee_view(request, tenant):
    form = FeeCalculationForm(parse_json_body(request))
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    tier = form.cleaned_data['subscription_tier'] or tenant.subscription_tier
    fees = services.calculate_platform_fee(form.cleaned_data['amount'], tier)
    split = services.calculate_revenue_split(form.cleaned_data['amount'], tier)
    return JsonResponse({
        'success': True,
        'fees': services.fees_to_json(fees),
        'revenue_split': services.fees_to_json(split),
    })


@require_http_methods(['GET', 'POST'])
@tenant_required
@role_required(*FINANCE_ROLES)
@json_view
def payment_list_view(request, tenant):
    if request.method == 'GET':
        payments = Payment.objects.filter(institution=tenant).select_related('application', 'payer')

        status = request.GET.get('status')
        if status:
            payments = payments.filter(status=status)
        application_id = request.GET.get('application_id')
        if application_id:
            payments = payments.filter(application_id=application_id)
        start, end = _parse_date(request.GET.get('start_date')), _parse_date(request.GET.get('end_date'))
        if start:
            payments = payments.filter(created_at__gte=start)
        if end:
            payments = payments.filter(created_at__lt=end + timedelta(days=1))
        search = request.GET.get('search', '').strip()
        if search:
            payments = payments.filter(
                Q(gateway_transaction_id__icontains=search) | Q(application__student_name__icontains=search)
            )

        return JsonResponse({'success': True, **paginate(request, payments, lambda p: p.to_dict())})

    form = PaymentForm(parse_json_body(request), institution=tenant)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    data = form.cleaned_data
    payment = services.create_payment(
        tenant,
        data['amount'],
        application=data['application_id'],
        payment_type=data['payment_type'],
        gateway=data['gateway'],
        gateway_transaction_id=data['gateway_transaction_id'],
        gateway_response=data['gateway_response'],
        currency=data['currency'] or None,
    )
    return JsonResponse({'success': True, 'payment': payment.to_dict()}, status=201)


@require_http_methods(['PUT', 'PATCH', 'POST'])
@tenant_required
@role_required(*FINANCE_ROLES)
@json_view
def payment_status_view(request, tenant, pk):
    payment = get_object_or_404(Payment.objects.select_related('payer', 'application'), pk=pk, institution=tenant)
    form = PaymentStatusForm(parse_json_body(request))
    if not form.is_valid():
        return json_error('Invalid payment status', 400, 'INVALID_STATUS', errors=form_errors(form))

    data = form.cleaned_data
    payment = services.update_payment_status(
        payment, data['status'], data['gateway_transaction_id'], data['gateway_response']
    )
    return JsonResponse({'success': True, 'payment': payment.to_dict()})


@require_GET
@tenant_required
@role_required(*FINANCE_ROLES)
def financial_metrics_view(request, tenant):
    period = request.GET.get('period', services.DEFAULT_PERIOD)
    if period not in services.PERIODS:
        return json_error(f'period must be one of {", ".join(services.PERIODS)}', 400, 'INVALID_PERIOD')
    return JsonResponse({'success': True, 'data': services.get_tenant_financial_metrics(tenant, period)})


@require_GET
@tenant_required
@role_required(*FINANCE_ROLES)
def finance_dashboard_view(request, tenant):
    return JsonResponse({'success': True, 'dashboard': services.get_finance_dashboard(tenant)})


# REFUNDS
@require_GET
@tenant_required
@role_required(*FINANCE_ROLES)
def refund_list_view(request, tenant):
    refunds = RefundRequest.objects.filter(institution=tenant).select_related(
        'payment', 'application', 'requested_by', 'reviewed_by'
    )
    status = request.GET.get('status')
    if status:
        refunds = refunds.filter(status=status)
    return JsonResponse({'success': True, **paginate(request, refunds, lambda r: r.to_dict())})


@require_POST
@tenant_required
@role_required(*FINANCE_ROLES)
@json_view
def refund_decide_view(request, tenant, pk):
    refund = get_object_or_404(RefundRequest.objects.select_related('payment', 'requested_by'), pk=pk, institution=tenant)
    form = RefundDecisionForm(parse_json_body(request))
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    try:
        refund = services.decide_refund(
            refund, request.user, form.cleaned_data['action'] == ACTION_APPROVE, form.cleaned_data['notes']
        )
    except RefundError as e:
        return json_error(e, 409, 'INVALID_REFUND_STATE')
    return JsonResponse({'success': True, 'refund': refund.to_dict()})


@require_POST
@tenant_required
@role_required(*FINANCE_ROLES)
def refund_process_view(request, tenant, pk):
    refund = get_object_or_404(RefundRequest.objects.select_related('payment', 'requested_by'), pk=pk, institution=tenant)
    try:
        refund = services.process_refund(refund, request.user)
    except RefundError as e:
        return json_error(e, 409, 'INVALID_REFUND_STATE')
    return JsonResponse({'success': True, 'refund': refund.to_dict(), 'payment': refund.payment.to_dict()})


# STUDENT / PARENT
@require_GET
@tenant_required
@role_required(*(APPLICANTS + FINANCE_ROLES))
def student_payments_view(request, tenant, application_id):
    application = get_object_or_404(Application, pk=application_id, institution=tenant)
    if request.user.role in APPLICANTS and not application.is_visible_to(request.user):
        return json_error('Application not found', 404, 'NOT_FOUND')

    payments = Payment.objects.filter(application=application).select_related('application', 'payer')
    refunds = RefundRequest.objects.filter(application=application).select_related('payment', 'application', 'requested_by', 'reviewed_by')
    return JsonResponse({
        'success': True,
        'payments': [p.to_dict() for p in payments],
        'refund_requests': [r.to_dict() for r in refunds],
        'fee_amount': float(application.fee_amount) if application.fee_amount is not None else None,
    })


@require_POST
@tenant_required
@role_required(*APPLICANTS)
@json_view
def student_refund_request_view(request, tenant):
    form = RefundRequestForm(parse_json_body(request))
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    data = form.cleaned_data
    payment = Payment.objects.filter(pk=data['payment_id'], institution=tenant).select_related('application').first()
    visible = payment is not None and (
        payment.payer_id == request.user.pk
        or (payment.application is not None and payment.application.is_visible_to(request.user))
    )
    if not visible:
        return json_error('Payment not found', 404, 'NOT_FOUND')

    try:
        refund = services.request_refund(payment, request.user, data['amount'], data['reason'])
    except RefundError as e:
        return json_error(e, 400, 'INVALID_REFUND')
    return JsonResponse({'success': True, 'refund': refund.to_dict()}, status=201)


# PLATFORM
@require_GET
@super_admin_required
def platform_finance_view(request):
    period = request.GET.get('period', services.DEFAULT_PERIOD)
    if period not in services.PERIODS:
        return json_error(f'period must be one of {", ".join(services.PERIODS)}', 400, 'INVALID_PERIOD')
    return JsonResponse({'success': True, 'data': services.get_platform_financial_metrics(period)})
