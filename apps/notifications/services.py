"""
Notification delivery

Every notification is:
1. stored (Notification row, read by the list/poll/SSE endpoints)
2. pushed to the user's Channels group ``user_<id>`` once the
   transaction commits (WebSocket clients get it instantly)
3. fanned out to email / SMS / WhatsApp by a Celery task, following the
   user's profile preferences (muted categories are skipped)

Usage:
    from apps.notifications.services import send_notification

    send_notification(
        telecaller,
        title='New lead assigned',
        message=f'{lead.name} was assigned to you',
        category='lead',
        action_type='lead_assigned',
        institution=lead.institution,
        lead=lead,
    )
"""

import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone

from apps.accounts.models import User
from .models import Notification

logger = logging.getLogger(__name__)


def user_group_name(user_id):
    return f'user_{user_id}'


# REAL-TIME PUSH
def push_to_user(notification):
    """Send a stored notification to the user's WebSocket group"""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return

    try:
        async_to_sync(channel_layer.group_send)(
            user_group_name(notification.user_id),
            {'type': 'notification.message', 'notification': notification.to_dict()},
        )
    except Exception as e:
        # Redis down must not break the request that created the notification
        logger.warning("WebSocket push failed for notification %s: %s", notification.pk, e)


def _after_commit(notification, deliver_externally):
    from .tasks import deliver_notification

    def callback():
        push_to_user(notification)
        if deliver_externally:
            deliver_notification.delay(notification.pk)

    transaction.on_commit(callback)


# SENDING
def send_notification(user, title, message, notification_type=Notification.TYPE_INFO, category='general',
                      priority='medium', institution=None, lead=None, action_type='', data=None,
                      deliver_externally=True):
    """
    Create a notification for one user

    Args:
        user: Recipient
        title, message: Display text
        notification_type: info / success / warning / error / system
        category: One of Notification.CATEGORIES
        institution: Defaults to the recipient's institution
        lead: Related lead, if any
        data (dict): Extra frontend payload
        deliver_externally: Also email/SMS/WhatsApp per preferences

    Returns:
        Notification
    """
    if category not in Notification.CATEGORIES:
        category = 'general'

    notification = Notification.objects.create(
        institution=institution or user.institution,
        user=user,
        title=title[:200],
        message=message,
        notification_type=notification_type,
        category=category,
        priority=priority,
        action_type=action_type,
        lead=lead,
        data=data or {},
    )
    _after_commit(notification, deliver_externally)
    logger.debug("Notification %s created for %s (%s)", notification.pk, user.email, category)
    return notification


def send_bulk_notification(users, title, message, **kwargs):
    """Send the same notification to many users, returns the created list"""
    return [send_notification(user, title, message, **kwargs) for user in users]


def send_role_notification(institution, roles, title, message, **kwargs):
    """Notify every active user of ``institution`` holding one of ``roles``"""
    if isinstance(roles, str):
        roles = [roles]
    users = User.objects.filter(institution=institution, role__in=roles, is_active=True)
    kwargs.setdefault('institution', institution)
    return send_bulk_notification(users, title, message, **kwargs)


def send_tenant_notification(institution, title, message, **kwargs):
    """Notify every active user of an institution (announcements)"""
    users = User.objects.filter(institution=institution, is_active=True)
    kwargs.setdefault('institution', institution)
    return send_bulk_notification(users, title, message, **kwargs)


# READ STATE
def mark_read(user, notification_ids):
    """Mark the user's notifications as read, returns the number updated"""
    return (
        Notification.objects
        .filter(user=user, pk__in=notification_ids, is_read=False)
        .update(is_read=True, read_at=timezone.now())
    )


def mark_all_read(user, institution=None):
    notifications = Notification.objects.filter(user=user, is_read=False)
    if institution is not None:
        notifications = notifications.filter(institution=institution)
    return notifications.update(is_read=True, read_at=timezone.now())


def get_stats(user, institution=None):
    """
    Counts for the notification bell

    Returns:
        dict: {'total', 'unread', 'by_category': {category: {'total', 'unread'}},
               'by_priority': {priority: unread}}
    """
    notifications = Notification.objects.filter(user=user)
    if institution is not None:
        notifications = notifications.filter(institution=institution)

    totals = notifications.aggregate(total=Count('id'), unread=Count('id', filter=Q(is_read=False)))

    by_category = {
        row['category']: {'total': row['total'], 'unread': row['unread']}
        for row in notifications.values('category').annotate(
            total=Count('id'), unread=Count('id', filter=Q(is_read=False))
        )
    }
    by_priority = {
        row['priority']: row['unread']
        for row in notifications.filter(is_read=False).values('priority').annotate(unread=Count('id'))
    }

    return {
        'total': totals['total'],
        'unread': totals['unread'],
        'by_category': by_category,
        'by_priority': by_priority,
    }
