import logging

from django.forms.models import model_to_dict
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from apps.accounts.decorators import tenant_required, role_required, json_view
from apps.accounts.models import (
    ROLE_INSTITUTION_ADMIN, ROLE_ADMISSION_TEAM, ROLE_ADMISSION_HEAD, ROLE_TELECALLER,
)
from apps.admissions.models import Application
from apps.core.utils import parse_json_body, json_error, form_errors, paginate, to_iso
from . import services
from .clients import MessagingError
from .forms import MessageTemplateForm, TemplateSendForm, DirectSendForm, BulkSendForm
from .models import MessageTemplate
from .templating import DEFAULT_TEMPLATES

logger = logging.getLogger(__name__)

TEMPLATE_MANAGERS = (ROLE_INSTITUTION_ADMIN, ROLE_ADMISSION_HEAD)
SENDERS = (ROLE_INSTITUTION_ADMIN, ROLE_ADMISSION_HEAD, ROLE_ADMISSION_TEAM, ROLE_TELECALLER)


def template_to_dict(template):
    return {
        'id': template.id,
        'name': template.name,
        'channel': template.channel,
        'category': template.category,
        'subject': template.subject,
        'body': template.body,
        'variables': template.variables,
        'is_active': template.is_active,
        'created_at': to_iso(template.created_at),
        'updated_at': to_iso(template.updated_at),
    }


# TEMPLATES
@require_http_methods(['GET', 'POST'])
@tenant_required
@role_required(*SENDERS)
@json_view
def template_list_view(request, tenant):
    if request.method == 'GET':
        templates = MessageTemplate.objects.filter(institution=tenant)
        channel = request.GET.get('channel')
        if channel:
            templates = templates.filter(channel=channel)
        if request.GET.get('active_only') in ('1', 'true'):
            templates = templates.filter(is_active=True)
        return JsonResponse({
            'success': True,
            'templates': [template_to_dict(t) for t in templates],
            'defaults': DEFAULT_TEMPLATES,
        })

    if not request.user.has_role(*TEMPLATE_MANAGERS) and not request.user.is_super_admin():
        return json_error('You do not have permission to perform this action', 403, 'FORBIDDEN')

    form = MessageTemplateForm(parse_json_body(request), institution=tenant)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    template = form.save(commit=False)
    template.created_by = request.user
    template.save()
    logger.info("Message template '%s' created in %s by %s", template.name, tenant.slug, request.user.email)
    return JsonResponse({'success': True, 'template': template_to_dict(template)}, status=201)


@require_http_methods(['GET', 'PUT', 'PATCH', 'DELETE'])
@tenant_required
@role_required(*SENDERS)
@json_view
def template_detail_view(request, tenant, pk):
    template = get_object_or_404(MessageTemplate, pk=pk, institution=tenant)

    if request.method == 'GET':
        return JsonResponse({'success': True, 'template': template_to_dict(template)})

    if not request.user.has_role(*TEMPLATE_MANAGERS) and not request.user.is_super_admin():
        return json_error('You do not have permission to perform this action', 403, 'FORBIDDEN')

    if request.method == 'DELETE':
        template.delete()
        return JsonResponse({'success': True})

    initial = model_to_dict(template, fields=MessageTemplateForm.Meta.fields)
    form = MessageTemplateForm({**initial, **parse_json_body(request)}, instance=template, institution=tenant)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))
    template = form.save()
    return JsonResponse({'success': True, 'template': template_to_dict(template)})


# SENDING
@require_POST
@tenant_required
@role_required(*SENDERS)
@json_view
def send_template_view(request, tenant):
    form = TemplateSendForm(parse_json_body(request), institution=tenant)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    data = form.cleaned_data
    try:
        communication, missing = services.send_template_message(
            data['template_id'],
            sender=request.user,
            application=data['application_id'],
            lead=data['lead_id'],
            to=data['to'],
            variables=data['variables'],
        )
    except MessagingError as e:
        return json_error(e, 400, 'MESSAGING_ERROR')

    return JsonResponse({
        'success': True,
        'communication': services.communication_to_dict(communication),
        'missing_variables': missing,
    }, status=202)


@require_POST
@tenant_required
@role_required(*SENDERS)
@json_view
def send_direct_view(request, tenant):
    form = DirectSendForm(parse_json_body(request), institution=tenant)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    data = form.cleaned_data
    application, lead = data['application_id'], data['lead_id']
    recipient = data['to'] or services.recipient_for(data['channel'], application, lead)
    try:
        communication = services.queue_communication(
            tenant,
            data['channel'],
            recipient,
            data['content'],
            subject=data['subject'],
            application=application,
            lead=lead,
            sender=request.user,
        )
    except MessagingError as e:
        return json_error(e, 400, 'MESSAGING_ERROR')

    return JsonResponse({'success': True, 'communication': services.communication_to_dict(communication)}, status=202)


@require_POST
@tenant_required
@role_required(ROLE_INSTITUTION_ADMIN, ROLE_ADMISSION_HEAD, ROLE_ADMISSION_TEAM)
@json_view
def send_bulk_view(request, tenant):
    form = BulkSendForm(parse_json_body(request), institution=tenant)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    data = form.cleaned_data
    result = services.send_bulk(
        tenant,
        data['application_ids'],
        data['channel'],
        content=data['content'],
        subject=data['subject'],
        template=data['template_id'],
        sender=request.user,
    )
    return JsonResponse({
        'success': True,
        'queued': len(result['queued']),
        'communication_ids': result['queued'],
        'skipped': result['skipped'],
    }, status=202)


# REPORTING
@require_GET
@tenant_required
@role_required(*SENDERS)
def communication_stats_view(request, tenant):
    try:
        days = max(1, min(int(request.GET.get('days', 30)), 365))
    except ValueError:
        return json_error('days must be a number', 400, 'VALIDATION_ERROR')
    return JsonResponse({'success': True, 'stats': services.get_communication_stats(tenant, days)})


@require_GET
@tenant_required
@role_required(ROLE_INSTITUTION_ADMIN, ROLE_ADMISSION_HEAD, ROLE_ADMISSION_TEAM)
def application_communications_view(request, tenant, application_id):
    application = get_object_or_404(Application, pk=application_id, institution=tenant)
    return JsonResponse({
        'success': True,
        'application_id': application.pk,
        **services.grouped_log(application),
    })


@require_GET
@tenant_required
@role_required(*SENDERS)
def communication_list_view(request, tenant):
    communications = tenant.communications.select_related('sender')
    for param in ('channel', 'status'):
        value = request.GET.get(param)
        if value:
            communications = communications.filter(**{param: value})
    return JsonResponse({'success': True, **paginate(request, communications, services.communication_to_dict)})
