import logging

from django.forms.models import model_to_dict
from django.http import JsonResponse, StreamingHttpResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from apps.accounts.decorators import tenant_required, role_required, json_view
from apps.accounts.models import ROLE_INSTITUTION_ADMIN
from apps.core.utils import parse_json_body, json_error, form_errors, paginate
from . import services
from .forms import MarkReadForm, PreferencesForm, AnnouncementForm
from .models import Notification
from .sse import notification_stream, parse_last_event_id, pending_notifications

logger = logging.getLogger(__name__)


def _user_notifications(request, tenant):
    return Notification.objects.filter(user=request.user, institution=tenant)


@require_GET
@tenant_required
def notification_list_view(request, tenant):
    notifications = _user_notifications(request, tenant).select_related('lead')

    if request.GET.get('unread_only') in ('1', 'true'):
        notifications = notifications.filter(is_read=False)

    category = request.GET.get('category')
    if category:
        notifications = notifications.filter(category=category)

    result = paginate(request, notifications, lambda n: n.to_dict())
    result['unread_count'] = _user_notifications(request, tenant).filter(is_read=False).count()
    return JsonResponse({'success': True, **result})


@require_GET
@tenant_required
def notification_stats_view(request, tenant):
    return JsonResponse({'success': True, 'stats': services.get_stats(request.user, tenant)})


@require_GET
@tenant_required
def notification_categories_view(request, tenant):
    return JsonResponse({
        'success': True,
        'categories': [{'value': value, 'label': label} for value, label in Notification.CATEGORY_CHOICES],
    })


@require_GET
@tenant_required
def notification_poll_view(request, tenant):
    """Polling fallback for clients without SSE/WebSocket: notifications newer than ?after=<id>"""
    after = parse_last_event_id(request.GET.get('after'))
    notifications = pending_notifications(request.user, tenant, after)
    return JsonResponse({
        'success': True,
        'notifications': [n.to_dict() for n in notifications],
        'last_id': notifications[-1].pk if notifications else after,
        'unread_count': _user_notifications(request, tenant).filter(is_read=False).count(),
    })


@require_GET
@tenant_required
def notification_stream_view(request, tenant):
    last_event_id = parse_last_event_id(
        request.headers.get('Last-Event-ID') or request.GET.get('last_event_id')
    )
    logger.info("SSE stream opened for %s in %s (resume after %s)", request.user.email, tenant.slug, last_event_id)

    response = StreamingHttpResponse(
        notification_stream(request.user, tenant, last_event_id=last_event_id),
        content_type='text/event-stream',
    )
    response['Cache-Control'] = 'no-cache'
    response['X-Accel-Buffering'] = 'no'
    return response


@require_http_methods(['PATCH', 'POST', 'PUT'])
@tenant_required
def notification_read_view(request, tenant, pk):
    notification = get_object_or_404(Notification, pk=pk, user=request.user, institution=tenant)
    notification.mark_as_read()
    return JsonResponse({'success': True, 'notification': notification.to_dict()})


@require_http_methods(['PATCH', 'POST'])
@tenant_required
@json_view
def notification_mark_read_view(request, tenant):
    form = MarkReadForm(parse_json_body(request))
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    ids = list(
        _user_notifications(request, tenant)
        .filter(pk__in=form.cleaned_data['notification_ids'])
        .values_list('pk', flat=True)
    )
    updated = services.mark_read(request.user, ids)
    return JsonResponse({'success': True, 'updated': updated})


@require_http_methods(['PATCH', 'POST'])
@tenant_required
def notification_mark_all_read_view(request, tenant):
    updated = services.mark_all_read(request.user, tenant)
    return JsonResponse({'success': True, 'updated': updated})


@require_http_methods(['DELETE'])
@tenant_required
def notification_delete_view(request, tenant, pk):
    notification = get_object_or_404(Notification, pk=pk, user=request.user, institution=tenant)
    notification.delete()
    return JsonResponse({'success': True})


@require_http_methods(['DELETE', 'POST'])
@tenant_required
def notification_delete_all_view(request, tenant):
    notifications = _user_notifications(request, tenant)
    if request.GET.get('read_only') in ('1', 'true'):
        notifications = notifications.filter(is_read=True)
    deleted, _ = notifications.delete()
    return JsonResponse({'success': True, 'deleted': deleted})


@require_http_methods(['GET', 'PUT', 'PATCH'])
@tenant_required
@json_view
def notification_preferences_view(request, tenant):
    profile = request.user.profile

    if request.method == 'GET':
        return JsonResponse({'success': True, 'preferences': profile.notification_preferences()})

    initial = model_to_dict(profile, fields=PreferencesForm.Meta.fields)
    form = PreferencesForm({**initial, **parse_json_body(request)}, instance=profile)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))
    profile = form.save()
    return JsonResponse({'success': True, 'preferences': profile.notification_preferences()})


@require_POST
@tenant_required
@role_required(ROLE_INSTITUTION_ADMIN)
@json_view
def announcement_view(request, tenant):
    form = AnnouncementForm(parse_json_body(request))
    if not form.is_valid():
        return json_error('Title and message are required', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    data = form.cleaned_data
    kwargs = {
        'notification_type': Notification.TYPE_SYSTEM,
        'category': 'system',
        'priority': data['priority'],
        'action_type': 'announcement',
        'data': {'sender_id': request.user.pk},
    }
    if data['target_roles']:
        notifications = services.send_role_notification(tenant, data['target_roles'], data['title'], data['message'], **kwargs)
    else:
        notifications = services.send_tenant_notification(tenant, data['title'], data['message'], **kwargs)

    logger.info("Announcement '%s' sent to %d users in %s", data['title'], len(notifications), tenant.slug)
    return JsonResponse({
        'success': True,
        'notification_ids': [n.pk for n in notifications],
        'message': f'Announcement sent to {len(notifications)} users',
    }, status=201)
