import logging
from datetime import datetime, timedelta

from django.forms.models import model_to_dict
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.utils import timezone
from django.views.decorators.http import require_http_methods

from apps.accounts.decorators import tenant_required, role_required, json_view
from apps.accounts.models import ROLE_ADMISSION_TEAM, ROLE_ADMISSION_HEAD, ROLE_INSTITUTION_ADMIN
from apps.core.utils import parse_json_body, json_error, form_errors
from apps.notifications.services import send_notification
from .forms import AppointmentForm, AppointmentUpdateForm
from .models import Appointment

logger = logging.getLogger(__name__)

COUNSELING_ROLES = (ROLE_ADMISSION_TEAM, ROLE_ADMISSION_HEAD, ROLE_INSTITUTION_ADMIN)


@require_http_methods(['GET', 'POST'])
@tenant_required
@role_required(*COUNSELING_ROLES)
@json_view
def appointment_list_view(request, tenant):
    if request.method == 'GET':
        appointments = Appointment.objects.filter(institution=tenant).select_related('application', 'counselor')

        date = request.GET.get('date')
        if date:
            try:
                day = timezone.make_aware(datetime.strptime(date, '%Y-%m-%d'))
            except ValueError:
                return json_error('date must be YYYY-MM-DD', 400, 'VALIDATION_ERROR')
            appointments = appointments.filter(scheduled_at__gte=day, scheduled_at__lt=day + timedelta(days=1))

        status = request.GET.get('status')
        if status:
            appointments = appointments.filter(status=status)
        if request.GET.get('mine') in ('1', 'true'):
            appointments = appointments.filter(counselor=request.user)

        return JsonResponse({'success': True, 'appointments': [a.to_dict() for a in appointments]})

    form = AppointmentForm(parse_json_body(request), institution=tenant)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    appointment = form.save(commit=False)
    appointment.counselor = request.user
    appointment.save()

    application = appointment.application
    if application.student_id:
        send_notification(
            application.student,
            'Counselling session scheduled',
            f'Your session is scheduled for {timezone.localtime(appointment.scheduled_at):%d %b %Y %H:%M}.',
            category='admission',
            institution=tenant,
            action_type='appointment_scheduled',
            data={'appointment_id': appointment.pk, 'application_id': application.pk},
        )
    logger.info("Appointment %s scheduled for application %s by %s", appointment.pk, application.pk, request.user.email)
    return JsonResponse({'success': True, 'appointment': appointment.to_dict()}, status=201)


@require_http_methods(['GET', 'PUT', 'PATCH'])
@tenant_required
@role_required(*COUNSELING_ROLES)
@json_view
def appointment_detail_view(request, tenant, pk):
    appointment = get_object_or_404(
        Appointment.objects.select_related('application', 'counselor'), pk=pk, institution=tenant
    )

    if request.method == 'GET':
        return JsonResponse({'success': True, 'appointment': appointment.to_dict()})

    # Counselors edit their own sessions; heads and admins edit any
    if appointment.counselor_id != request.user.pk and request.user.role == ROLE_ADMISSION_TEAM:
        return json_error('Appointment not found', 404, 'NOT_FOUND')

    initial = model_to_dict(appointment, fields=AppointmentUpdateForm.Meta.fields)
    form = AppointmentUpdateForm({**initial, **parse_json_body(request)}, instance=appointment)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    appointment = form.save()
    return JsonResponse({'success': True, 'appointment': appointment.to_dict()})
