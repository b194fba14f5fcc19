import csv
import logging
from datetime import timedelta

import openpyxl
from openpyxl.styles import Font, PatternFill
from django.db.models import Q, Count, Avg
from django.forms.models import model_to_dict
from django.http import JsonResponse, HttpResponse
from django.shortcuts import get_object_or_404
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from apps.accounts.decorators import tenant_required, role_required, json_view
from apps.accounts.models import (
    User, ROLE_INSTITUTION_ADMIN, ROLE_TELECALLER, ROLE_ADMISSION_TEAM, ROLE_ADMISSION_HEAD,
)
from apps.admissions.forms import ConvertLeadForm
from apps.admissions.services import convert_lead, ApplicationError
from apps.core.models import Institution
from apps.core.utils import parse_json_body, json_error, form_errors, paginate, to_iso, to_float, percentage
from .assignment import LeadAssigner, AssignmentError, get_assignment_stats
from .field_mapping import map_form_data, suggest_mappings, validate_mapped_data
from .forms import (
    LeadForm, LeadFilterForm, AssignLeadsForm, ReassignLeadForm, AssignmentConfigForm, LeadImportForm,
    LeadStatusForm, CallLogForm, CallLogUpdateForm, FollowUpForm, FollowUpUpdateForm,
)
from .models import Lead, Activity, CallLog, FollowUp, AssignmentConfig
from .services import (
    capture_lead, import_leads, record_call, schedule_follow_up, notify_lead_assigned, LeadIntakeError,
)
from .webhooks import parse_webhook_payload, InvalidWebhookPayload

logger = logging.getLogger(__name__)

LEAD_VIEWERS = (ROLE_INSTITUTION_ADMIN, ROLE_TELECALLER, ROLE_ADMISSION_TEAM, ROLE_ADMISSION_HEAD)
LEAD_EDITORS = (ROLE_INSTITUTION_ADMIN, ROLE_TELECALLER)
LEAD_CONVERTERS = (ROLE_INSTITUTION_ADMIN, ROLE_TELECALLER, ROLE_ADMISSION_TEAM, ROLE_ADMISSION_HEAD)
TELECALLING = (ROLE_TELECALLER, ROLE_INSTITUTION_ADMIN)

# LeadForm fields passed through field mapping on manual entry
MANUAL_ENTRY_FIELDS = ['name', 'email', 'phone', 'course_interest', 'qualification', 'city', 'state', 'notes']

PERFORMANCE_PERIODS = {'today': 0, 'week': 7, 'month': 30}

EXPORT_HEADERS = [
    'ID', 'Name', 'Phone', 'Email', 'Source', 'Status', 'Score', 'Course Interest',
    'City', 'Assigned To', 'Created Date', 'Next Follow-up',
]


# SERIALIZERS
def lead_to_dict(lead):
    return {
        'id': lead.id,
        'name': lead.name,
        'email': lead.email,
        'phone': lead.phone,
        'source': lead.source,
        'platform': lead.platform,
        'status': lead.status,
        'status_display': lead.get_status_display(),
        'score': lead.score,
        'course_interest': lead.course_interest,
        'qualification': lead.qualification,
        'city': lead.city,
        'state': lead.state,
        'assigned_to': {
            'id': lead.assigned_to.id,
            'name': lead.assigned_to.get_full_name(),
        } if lead.assigned_to else None,
        'assigned_at': to_iso(lead.assigned_at),
        'last_contacted_at': to_iso(lead.last_contacted_at),
        'next_follow_up': to_iso(lead.next_follow_up),
        'initials': lead.get_initials(),
        'time_since_created': lead.time_since_created(),
        'created_at': to_iso(lead.created_at),
        'updated_at': to_iso(lead.updated_at),
    }


def lead_detail_to_dict(lead):
    return {
        **lead_to_dict(lead),
        'notes': lead.notes,
        'extra_data': lead.extra_data,
        'score_breakdown': lead.score_breakdown,
        'tags': list(lead.tags.names()),
        'application_id': getattr(getattr(lead, 'application', None), 'pk', None),
        'source_tracking': [
            {'platform': t.platform, 'external_id': t.external_id, 'campaign_id': t.campaign_id, 'form_id': t.form_id}
            for t in lead.source_tracking.all()
        ],
    }


def note_to_dict(note):
    return {
        'id': note.id,
        'content': note.content,
        'user': note.user.get_full_name() if note.user else None,
        'created_at': to_iso(note.created_at),
    }


def activity_to_dict(activity):
    return {
        'id': activity.id,
        'activity_type': activity.activity_type,
        'activity_type_display': activity.get_activity_type_display(),
        'description': activity.description,
        'user': activity.user.get_full_name() if activity.user else 'System',
        'metadata': activity.metadata,
        'created_at': to_iso(activity.created_at),
    }


def call_log_to_dict(call):
    return {
        'id': call.id,
        'lead_id': call.lead_id,
        'lead_name': call.lead.name,
        'telecaller': call.telecaller.get_full_name() if call.telecaller else None,
        'call_type': call.call_type,
        'status': call.status,
        'outcome': call.outcome,
        'duration_seconds': call.duration_seconds,
        'is_connected': call.is_connected(),
        'started_at': to_iso(call.started_at),
        'ended_at': to_iso(call.ended_at),
        'notes': call.notes,
        'recording_url': call.recording_url,
    }


def follow_up_to_dict(follow_up):
    return {
        'id': follow_up.id,
        'lead_id': follow_up.lead_id,
        'lead_name': follow_up.lead.name,
        'assigned_to': follow_up.assigned_to.get_full_name() if follow_up.assigned_to else None,
        'follow_up_type': follow_up.follow_up_type,
        'priority': follow_up.priority,
        'scheduled_at': to_iso(follow_up.scheduled_at),
        'status': follow_up.status,
        'is_overdue': follow_up.is_overdue(),
        'notes': follow_up.notes,
        'outcome_notes': follow_up.outcome_notes,
        'completed_at': to_iso(follow_up.completed_at),
    }


# HELPER FUNCTIONS
def _visible_leads(request, tenant):
    """Telecallers only see the leads assigned to them"""
    leads = Lead.objects.filter(institution=tenant).select_related('assigned_to')
    if request.user.role == ROLE_TELECALLER:
        leads = leads.filter(assigned_to=request.user)
    return leads


def _validation_error(form):
    return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))


# LEADS
@require_http_methods(['GET', 'POST'])
@tenant_required
@role_required(*LEAD_VIEWERS)
@json_view
def lead_list_view(request, tenant):
    if request.method == 'GET':
        filter_form = LeadFilterForm(request.GET)
        if not filter_form.is_valid():
            return _validation_error(filter_form)

        leads = filter_form.filter(_visible_leads(request, tenant))
        return JsonResponse({'success': True, **paginate(request, leads, lead_to_dict)})

    if not request.user.has_role(*LEAD_EDITORS):
        return json_error('You do not have permission to create leads', 403, 'FORBIDDEN')

    payload = parse_json_body(request)
    form = LeadForm(payload, institution=tenant)
    if not form.is_valid():
        return _validation_error(form)

    # Manual entry goes through the same dedup / score / assign pipeline as the webhooks
    form_data = dict(form.cleaned_data.get('extra_data') or {})
    form_data.update({field: form.cleaned_data[field] for field in MANUAL_ENTRY_FIELDS})
    auto_assign = payload.get('auto_assign')
    try:
        outcome = capture_lead(
            tenant,
            {key: value for key, value in form_data.items() if value not in (None, '')},
            platform='manual',
            user=request.user,
            auto_assign=None if auto_assign is None else bool(auto_assign),
            source=form.cleaned_data['source'] if payload.get('source') else None,
        )
    except LeadIntakeError as e:
        return json_error(e, 400, 'VALIDATION_ERROR')

    lead = outcome['lead']
    if form.cleaned_data['tags']:
        lead.tags.add(*form.cleaned_data['tags'])
    if form.cleaned_data.get('next_follow_up'):
        lead.next_follow_up = form.cleaned_data['next_follow_up']
        lead.save(update_fields=['next_follow_up', 'updated_at'])

    return JsonResponse({
        'success': True,
        'created': outcome['created'],
        'message': 'Lead created' if outcome['created'] else 'Existing lead updated with the new details',
        'lead': lead_detail_to_dict(lead),
        'scoring': outcome['scoring'],
    }, status=201 if outcome['created'] else 200)


@require_http_methods(['GET', 'PUT', 'PATCH', 'DELETE'])
@tenant_required
@role_required(*LEAD_VIEWERS)
@json_view
def lead_detail_view(request, tenant, pk):
    lead = get_object_or_404(_visible_leads(request, tenant), pk=pk)

    if request.method == 'GET':
        return JsonResponse({
            'success': True,
            'lead': lead_detail_to_dict(lead),
            'notes': [note_to_dict(n) for n in lead.lead_notes.select_related('user')[:20]],
            'activities': [activity_to_dict(a) for a in lead.activities.select_related('user')[:20]],
            'call_logs': [call_log_to_dict(c) for c in lead.call_logs.select_related('telecaller', 'lead')[:10]],
            'follow_ups': [follow_up_to_dict(f) for f in lead.follow_ups.select_related('assigned_to', 'lead')[:10]],
        })

    if request.method == 'DELETE':
        if not request.user.has_role(ROLE_INSTITUTION_ADMIN):
            return json_error('Only institution admins can delete leads', 403, 'FORBIDDEN')
        logger.info("Lead %s deleted by %s", lead.pk, request.user.email)
        lead.delete()
        return JsonResponse({'success': True, 'message': 'Lead deleted'})

    if not request.user.has_role(*LEAD_EDITORS):
        return json_error('You do not have permission to edit leads', 403, 'FORBIDDEN')

    initial = model_to_dict(lead, fields=LeadForm.Meta.fields)
    initial['tags'] = ','.join(lead.tags.names())
    old_status = lead.status
    form = LeadForm({**initial, **parse_json_body(request)}, instance=lead, institution=tenant)
    if not form.is_valid():
        return _validation_error(form)

    new_status = form.cleaned_data['status']
    lead = form.save(commit=False)
    lead.status = old_status
    lead.save()
    lead.tags.set(form.cleaned_data['tags'], clear=True)
    lead.change_status(new_status, user=request.user)

    return JsonResponse({'success': True, 'lead': lead_detail_to_dict(lead)})


@require_http_methods(['GET', 'POST'])
@tenant_required
@role_required(*LEAD_VIEWERS)
@json_view
def lead_notes_view(request, tenant, pk):
    lead = get_object_or_404(_visible_leads(request, tenant), pk=pk)

    if request.method == 'GET':
        notes = lead.lead_notes.select_related('user')
        return JsonResponse({'success': True, 'notes': [note_to_dict(n) for n in notes]})

    content = str(parse_json_body(request).get('content') or '').strip()
    if not content:
        return json_error('Note cannot be empty', 400, 'VALIDATION_ERROR')
    note = lead.add_note(content, request.user)
    return JsonResponse({'success': True, 'note': note_to_dict(note)}, status=201)


@require_GET
@tenant_required
@role_required(*LEAD_VIEWERS)
def lead_activities_view(request, tenant, pk):
    lead = get_object_or_404(_visible_leads(request, tenant), pk=pk)
    activities = lead.activities.select_related('user')

    activity_type = request.GET.get('type')
    if activity_type:
        activities = activities.filter(activity_type=activity_type)
    return JsonResponse({'success': True, **paginate(request, activities, activity_to_dict)})


# ASSIGNMENT
@require_POST
@tenant_required
@role_required(ROLE_INSTITUTION_ADMIN)
@json_view
def lead_assign_view(request, tenant):
    form = AssignLeadsForm(parse_json_body(request))
    if not form.is_valid():
        return _validation_error(form)

    leads = list(Lead.objects.filter(institution=tenant, pk__in=form.cleaned_data['lead_ids']).select_related('assigned_to'))
    if not leads:
        return json_error('No matching leads found', 404, 'NOT_FOUND')

    assignee_id = form.cleaned_data.get('assigned_to')
    if assignee_id:
        assignee = User.objects.filter(pk=assignee_id, institution=tenant, role=ROLE_TELECALLER, is_active=True).first()
        if assignee is None:
            return json_error('Telecaller not found in this institution', 400, 'VALIDATION_ERROR')

        assignments, skipped = [], []
        for lead in leads:
            if lead.assign_to(assignee, assigned_by=request.user):
                assignments.append((lead, assignee))
            else:
                skipped.append((lead, f'Lead is {lead.get_status_display().lower()}'))
    else:
        try:
            result = LeadAssigner(tenant).assign(leads, algorithm=form.cleaned_data.get('algorithm'), assigned_by=request.user)
        except AssignmentError as e:
            return json_error(e, 409, 'ASSIGNMENT_FAILED')
        assignments, skipped = result['assignments'], result['skipped']

    for lead, user in assignments:
        notify_lead_assigned(lead, user, assigned_by=request.user)

    return JsonResponse({
        'success': True,
        'assigned': [{'lead_id': lead.pk, 'assigned_to': user.pk, 'assigned_to_name': user.get_full_name()} for lead, user in assignments],
        'skipped': [{'lead_id': lead.pk, 'reason': reason} for lead, reason in skipped],
        'message': f'{len(assignments)} lead(s) assigned',
    })


@require_POST
@tenant_required
@role_required(ROLE_INSTITUTION_ADMIN)
@json_view
def lead_reassign_view(request, tenant, pk):
    lead = get_object_or_404(Lead.objects.select_related('assigned_to'), pk=pk, institution=tenant)
    form = ReassignLeadForm(parse_json_body(request), institution=tenant)
    if not form.is_valid():
        return _validation_error(form)

    assignee = form.cleaned_data['assigned_to']
    if not lead.assign_to(assignee, assigned_by=request.user, reason=form.cleaned_data['reason']):
        return json_error(f'Cannot reassign a {lead.get_status_display().lower()} lead', 409, 'ASSIGNMENT_FAILED')

    notify_lead_assigned(lead, assignee, assigned_by=request.user)
    return JsonResponse({'success': True, 'lead': lead_to_dict(lead)})


@require_GET
@tenant_required
@role_required(ROLE_INSTITUTION_ADMIN)
def assignment_stats_view(request, tenant):
    return JsonResponse({'success': True, 'stats': get_assignment_stats(tenant)})


@require_http_methods(['GET', 'PUT', 'PATCH'])
@tenant_required
@role_required(ROLE_INSTITUTION_ADMIN)
@json_view
def assignment_config_view(request, tenant):
    config = AssignmentConfig.for_institution(tenant)

    if request.method != 'GET':
        initial = model_to_dict(config, fields=AssignmentConfigForm.Meta.fields)
        form = AssignmentConfigForm({**initial, **parse_json_body(request)}, instance=config)
        if not form.is_valid():
            return _validation_error(form)
        config = form.save()
        logger.info("Assignment config for %s set to %s", tenant.slug, config.algorithm)

    return JsonResponse({
        'success': True,
        'config': {
            'algorithm': config.algorithm,
            'auto_assign': config.auto_assign,
            'max_leads_per_user': config.max_leads_per_user,
            'skill_requirements': config.skill_requirements,
            'last_assigned_user': config.last_assigned_user_id,
            'updated_at': to_iso(config.updated_at),
        },
        'algorithms': [{'value': value, 'label': label} for value, label in AssignmentConfig.ALGORITHM_CHOICES],
    })


# IMPORT / EXPORT
@require_POST
@tenant_required
@role_required(ROLE_INSTITUTION_ADMIN)
def lead_import_view(request, tenant):
    form = LeadImportForm(request.POST, request.FILES)
    if not form.is_valid():
        return _validation_error(form)

    try:
        results = import_leads(
            tenant,
            form.cleaned_data['file'],
            source=form.cleaned_data['source'],
            auto_assign=form.cleaned_data['auto_assign'],
            user=request.user,
        )
    except (UnicodeDecodeError, csv.Error, ValueError, KeyError) as e:
        logger.warning("Lead import failed for %s: %s", tenant.slug, e)
        return json_error(f'Could not read the file: {e}', 400, 'INVALID_FILE')

    return JsonResponse({
        'success': True,
        'results': results,
        'message': f"{results['created']} created, {results['merged']} merged, {results['failed']} failed",
    })


def _export_row(lead):
    return [
        lead.id,
        lead.name,
        lead.phone,
        lead.email,
        lead.source,
        lead.get_status_display(),
        lead.score,
        lead.course_interest,
        lead.city,
        lead.assigned_to.get_full_name() if lead.assigned_to else '',
        timezone.localtime(lead.created_at).strftime('%Y-%m-%d %H:%M'),
        timezone.localtime(lead.next_follow_up).strftime('%Y-%m-%d %H:%M') if lead.next_follow_up else '',
    ]


@require_GET
@tenant_required
@role_required(ROLE_INSTITUTION_ADMIN)
def lead_export_view(request, tenant):
    filter_form = LeadFilterForm(request.GET)
    if not filter_form.is_valid():
        return _validation_error(filter_form)
    leads = filter_form.filter(Lead.objects.filter(institution=tenant).select_related('assigned_to'))

    export_format = request.GET.get('format', 'csv')
    filename = f'leads_{tenant.slug}_{timezone.now().strftime("%Y%m%d_%H%M%S")}'

    if export_format in ('xlsx', 'excel'):
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = "Leads"

        for col, header in enumerate(EXPORT_HEADERS, start=1):
            cell = ws.cell(row=1, column=col, value=header)
            cell.font = Font(bold=True, color="FFFFFF")
            cell.fill = PatternFill(start_color="667eea", end_color="667eea", fill_type="solid")

        for row, lead in enumerate(leads, start=2):
            for col, value in enumerate(_export_row(lead), start=1):
                ws.cell(row=row, column=col, value=value)

        for col in ws.columns:
            max_length = max(len(str(cell.value)) if cell.value is not None else 0 for cell in col)
            ws.column_dimensions[col[0].column_letter].width = min(max_length + 2, 50)

        response = HttpResponse(content_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet')
        response['Content-Disposition'] = f'attachment; filename="{filename}.xlsx"'
        wb.save(response)
        return response

    if export_format == 'csv':
        response = HttpResponse(content_type='text/csv; charset=utf-8')
        response['Content-Disposition'] = f'attachment; filename="{filename}.csv"'

        # BOM so Excel opens the file as UTF-8
        response.write('\ufeff')
        writer = csv.writer(response)
        writer.writerow(EXPORT_HEADERS)
        for lead in leads:
            writer.writerow(_export_row(lead))
        return response

    return json_error('format must be csv or xlsx', 400, 'INVALID_FORMAT')


@require_POST
@tenant_required
@role_required(ROLE_INSTITUTION_ADMIN)
@json_view
def mapping_preview_view(request, tenant):
    form_data = parse_json_body(request).get('form_data')
    if not isinstance(form_data, dict) or not form_data:
        return json_error('form_data must be a non-empty object', 400, 'VALIDATION_ERROR')

    mapping = map_form_data(form_data)
    return JsonResponse({
        'success': True,
        **mapping,
        'validation': validate_mapped_data(mapping['mapped']),
        'suggestions': suggest_mappings(form_data),
    })


# CONVERSION
@require_POST
@tenant_required
@role_required(*LEAD_CONVERTERS)
@json_view
def lead_convert_view(request, tenant, pk):
    lead = get_object_or_404(_visible_leads(request, tenant), pk=pk)
    form = ConvertLeadForm(parse_json_body(request))
    if not form.is_valid():
        return _validation_error(form)

    try:
        application = convert_lead(lead, user=request.user, **form.cleaned_data)
    except ApplicationError as e:
        return json_error(e, 409, 'CONVERSION_FAILED')

    return JsonResponse({
        'success': True,
        'application_id': application.pk,
        'application_status': application.status,
        'lead': lead_to_dict(lead),
    }, status=201)


# TELECALLER
@require_GET
@tenant_required
@role_required(*TELECALLING)
def telecaller_dashboard_view(request, tenant):
    user = request.user
    now = timezone.now()
    today = timezone.localtime(now).replace(hour=0, minute=0, second=0, microsecond=0)

    leads = Lead.objects.filter(institution=tenant, assigned_to=user)
    calls_today = CallLog.objects.filter(institution=tenant, telecaller=user, started_at__gte=today)
    follow_ups = FollowUp.objects.filter(
        institution=tenant, assigned_to=user, status__in=[FollowUp.STATUS_PENDING, FollowUp.STATUS_OVERDUE]
    ).select_related('lead', 'assigned_to')

    return JsonResponse({
        'success': True,
        'stats': {
            'assigned_leads': leads.count(),
            'active_leads': leads.filter(status__in=Lead.ACTIVE_STATUSES).count(),
            'new_leads': leads.filter(status=Lead.STATUS_NEW).count(),
            'by_status': dict(leads.values_list('status').annotate(count=Count('id'))),
            'calls_today': calls_today.count(),
            'connected_today': calls_today.filter(status__in=['answered', 'completed'], duration_seconds__gt=0).count(),
            'follow_ups_today': follow_ups.filter(scheduled_at__gte=today, scheduled_at__lt=today + timedelta(days=1)).count(),
            'overdue_follow_ups': follow_ups.filter(scheduled_at__lt=now).count(),
        },
        'upcoming_follow_ups': [follow_up_to_dict(f) for f in follow_ups.filter(scheduled_at__gte=now)[:5]],
        'hot_leads': [
            lead_to_dict(lead) for lead in leads.filter(status__in=Lead.ACTIVE_STATUSES).select_related('assigned_to').order_by('-score')[:5]
        ],
    })


@require_GET
@tenant_required
@role_required(*TELECALLING)
def telecaller_leads_view(request, tenant):
    filter_form = LeadFilterForm(request.GET)
    if not filter_form.is_valid():
        return _validation_error(filter_form)
    leads = Lead.objects.filter(institution=tenant, assigned_to=request.user).select_related('assigned_to')
    return JsonResponse({'success': True, **paginate(request, filter_form.filter(leads), lead_to_dict)})


@require_http_methods(['POST', 'PUT', 'PATCH'])
@tenant_required
@role_required(*TELECALLING)
@json_view
def telecaller_lead_status_view(request, tenant, pk):
    lead = get_object_or_404(_visible_leads(request, tenant), pk=pk)
    form = LeadStatusForm(parse_json_body(request))
    if not form.is_valid():
        return _validation_error(form)

    changed = lead.change_status(form.cleaned_data['status'], user=request.user, note=form.cleaned_data['note'])
    return JsonResponse({'success': True, 'changed': changed, 'lead': lead_to_dict(lead)})


@require_http_methods(['GET', 'POST'])
@tenant_required
@role_required(*TELECALLING)
@json_view
def call_log_list_view(request, tenant):
    if request.method == 'GET':
        calls = CallLog.objects.filter(institution=tenant).select_related('lead', 'telecaller')
        if request.user.role == ROLE_TELECALLER:
            calls = calls.filter(telecaller=request.user)
        lead_id = request.GET.get('lead')
        if lead_id and lead_id.isdigit():
            calls = calls.filter(lead_id=int(lead_id))
        outcome = request.GET.get('outcome')
        if outcome:
            calls = calls.filter(outcome=outcome)
        return JsonResponse({'success': True, **paginate(request, calls, call_log_to_dict)})

    form = CallLogForm(parse_json_body(request), institution=tenant, user=request.user)
    if not form.is_valid():
        return _validation_error(form)

    call = form.save(commit=False)
    call.institution = tenant
    call.lead = form.cleaned_data['lead']
    call.telecaller = request.user
    call.call_type = form.cleaned_data['call_type']
    call.status = form.cleaned_data['status']
    call.duration_seconds = form.cleaned_data['duration_seconds']
    call.started_at = form.cleaned_data.get('started_at') or timezone.now()
    call.save()
    record_call(call, user=request.user)

    return JsonResponse({'success': True, 'call_log': call_log_to_dict(call), 'lead_status': call.lead.status}, status=201)


@require_http_methods(['GET', 'PUT', 'PATCH'])
@tenant_required
@role_required(*TELECALLING)
@json_view
def call_log_detail_view(request, tenant, pk):
    calls = CallLog.objects.filter(institution=tenant).select_related('lead', 'telecaller')
    if request.user.role == ROLE_TELECALLER:
        calls = calls.filter(telecaller=request.user)
    call = get_object_or_404(calls, pk=pk)

    if request.method != 'GET':
        old_outcome = call.outcome
        initial = model_to_dict(call, fields=CallLogUpdateForm.Meta.fields)
        form = CallLogUpdateForm({**initial, **parse_json_body(request)}, instance=call)
        if not form.is_valid():
            return _validation_error(form)
        call = form.save()
        if call.outcome != old_outcome:
            record_call(call, user=request.user)

    return JsonResponse({'success': True, 'call_log': call_log_to_dict(call)})


@require_http_methods(['GET', 'POST'])
@tenant_required
@role_required(*TELECALLING)
@json_view
def follow_up_list_view(request, tenant):
    if request.method == 'GET':
        follow_ups = FollowUp.objects.filter(institution=tenant).select_related('lead', 'assigned_to')
        if request.user.role == ROLE_TELECALLER:
            follow_ups = follow_ups.filter(assigned_to=request.user)
        status = request.GET.get('status')
        if status:
            follow_ups = follow_ups.filter(status=status)
        when = request.GET.get('when')
        now = timezone.now()
        if when == 'today':
            today = timezone.localtime(now).replace(hour=0, minute=0, second=0, microsecond=0)
            follow_ups = follow_ups.filter(scheduled_at__gte=today, scheduled_at__lt=today + timedelta(days=1))
        elif when == 'upcoming':
            follow_ups = follow_ups.filter(scheduled_at__gte=now)
        elif when == 'overdue':
            follow_ups = follow_ups.filter(scheduled_at__lt=now, status__in=[FollowUp.STATUS_PENDING, FollowUp.STATUS_OVERDUE])
        return JsonResponse({'success': True, **paginate(request, follow_ups, follow_up_to_dict)})

    form = FollowUpForm(parse_json_body(request), institution=tenant, user=request.user)
    if not form.is_valid():
        return _validation_error(form)

    follow_up = form.save(commit=False)
    follow_up.institution = tenant
    follow_up.lead = form.cleaned_data['lead']
    follow_up.assigned_to = follow_up.lead.assigned_to or request.user
    follow_up.created_by = request.user
    follow_up.save()
    schedule_follow_up(follow_up, user=request.user)

    return JsonResponse({'success': True, 'follow_up': follow_up_to_dict(follow_up)}, status=201)


@require_http_methods(['GET', 'PUT', 'PATCH'])
@tenant_required
@role_required(*TELECALLING)
@json_view
def follow_up_detail_view(request, tenant, pk):
    follow_ups = FollowUp.objects.filter(institution=tenant).select_related('lead', 'assigned_to')
    if request.user.role == ROLE_TELECALLER:
        follow_ups = follow_ups.filter(assigned_to=request.user)
    follow_up = get_object_or_404(follow_ups, pk=pk)

    if request.method != 'GET':
        old_status, old_scheduled = follow_up.status, follow_up.scheduled_at
        initial = model_to_dict(follow_up, fields=FollowUpUpdateForm.Meta.fields)
        form = FollowUpUpdateForm({**initial, **parse_json_body(request)}, instance=follow_up)
        if not form.is_valid():
            return _validation_error(form)

        new_status = form.cleaned_data['status']
        follow_up = form.save(commit=False)
        if new_status == FollowUp.STATUS_COMPLETED and old_status != FollowUp.STATUS_COMPLETED:
            follow_up.status = old_status
            follow_up.save()
            follow_up.complete(user=request.user, outcome_notes=form.cleaned_data['outcome_notes'])
        else:
            if follow_up.scheduled_at != old_scheduled:
                follow_up.reminder_sent = False
                if follow_up.status == FollowUp.STATUS_OVERDUE and follow_up.scheduled_at > timezone.now():
                    follow_up.status = FollowUp.STATUS_PENDING
            follow_up.save()
            if follow_up.scheduled_at != old_scheduled:
                schedule_follow_up(follow_up, user=request.user)

    return JsonResponse({'success': True, 'follow_up': follow_up_to_dict(follow_up)})


@require_GET
@tenant_required
@role_required(*TELECALLING)
def telecaller_performance_view(request, tenant):
    period = request.GET.get('period', 'month')
    if period not in PERFORMANCE_PERIODS:
        return json_error('period must be today, week or month', 400, 'INVALID_PERIOD')

    user = request.user
    if request.user.role == ROLE_INSTITUTION_ADMIN and request.GET.get('user_id', '').isdigit():
        user = get_object_or_404(User, pk=int(request.GET['user_id']), institution=tenant, role=ROLE_TELECALLER)

    start = timezone.localtime().replace(hour=0, minute=0, second=0, microsecond=0) - timedelta(days=PERFORMANCE_PERIODS[period])

    calls = CallLog.objects.filter(institution=tenant, telecaller=user, started_at__gte=start)
    connected = calls.filter(status__in=['answered', 'completed'], duration_seconds__gt=0)
    follow_ups = FollowUp.objects.filter(institution=tenant, assigned_to=user, scheduled_at__gte=start)
    leads = Lead.objects.filter(institution=tenant, assigned_to=user)
    converted = Activity.objects.filter(
        lead__institution=tenant, lead__assigned_to=user, activity_type='converted', created_at__gte=start
    ).count()
    total_calls = calls.count()
    connected_calls = connected.count()
    completed_follow_ups = follow_ups.filter(status=FollowUp.STATUS_COMPLETED).count()

    return JsonResponse({
        'success': True,
        'period': period,
        'telecaller': {'id': user.pk, 'name': user.get_full_name()},
        'calls': {
            'total': total_calls,
            'connected': connected_calls,
            'connect_rate': percentage(connected_calls, total_calls),
            'avg_duration_seconds': round(to_float(connected.aggregate(avg=Avg('duration_seconds'))['avg']) or 0),
            'by_outcome': dict(calls.exclude(outcome='').values_list('outcome').annotate(count=Count('id'))),
        },
        'follow_ups': {
            'total': follow_ups.count(),
            'completed': completed_follow_ups,
            'overdue': follow_ups.filter(status=FollowUp.STATUS_OVERDUE).count(),
            'completion_rate': percentage(completed_follow_ups, follow_ups.count()),
        },
        'leads': {
            'assigned': leads.count(),
            'active': leads.filter(status__in=Lead.ACTIVE_STATUSES).count(),
            'converted': converted,
            'enrolled': leads.filter(status=Lead.STATUS_ENROLLED).count(),
            'conversion_rate': user.get_conversion_rate(),
        },
    })


# PUBLIC INTAKE
@csrf_exempt
@require_POST
@json_view
def lead_webhook_view(request, intake_secret, platform):
    """
    Public lead intake for website forms and ad platforms

    The institution is identified by its secret intake token. One delivery
    may carry several submissions (Meta / Google batch formats).
    """
    institution = Institution.objects.filter(intake_secret=intake_secret).first()
    if institution is None:
        return json_error('Unknown intake endpoint', 404, 'NOT_FOUND')
    if not institution.is_active:
        return json_error('Institution is not accepting leads', 403, 'TENANT_SUSPENDED')

    payload = parse_json_body(request) if request.content_type == 'application/json' else request.POST.dict()
    try:
        submissions = parse_webhook_payload(platform, payload)
    except InvalidWebhookPayload as e:
        return json_error(e, 400, 'INVALID_PAYLOAD')

    results = []
    for submission in submissions:
        try:
            outcome = capture_lead(
                institution,
                submission['form_data'],
                platform=platform,
                form_type=submission['form_type'],
                external_id=submission['external_id'],
                campaign_id=submission['campaign_id'],
                form_id=submission['form_id'],
                metadata=submission['metadata'],
                response_minutes=submission['response_minutes'],
            )
        except LeadIntakeError as e:
            results.append({'success': False, 'error': str(e), 'external_id': submission['external_id']})
            continue

        results.append({
            'success': True,
            'lead_id': outcome['lead'].pk,
            'created': outcome['created'],
            'score': outcome['lead'].score,
            'assigned': outcome['assigned_to'] is not None,
            'unmapped_fields': list(outcome['mapping']['unmapped']),
        })

    accepted = [r for r in results if r['success']]
    if not accepted:
        return json_error('No valid submissions in payload', 400, 'VALIDATION_ERROR', results=results)
    return JsonResponse({'success': True, 'results': results}, status=201 if any(r['created'] for r in accepted) else 200)
