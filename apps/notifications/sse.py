"""
Server-Sent Events framing and the notification stream

The stream is an async generator so daphne flushes every frame as soon as it
is yielded; ORM reads go through sync_to_async.

Frames follow the EventSource wire format::

    id: 42
    event: notification
    data: {"id": 42, ...}

Events sent on the stream:
- connected: once, right after the connection opens
- notification: one per notification (id = notification id, so the
  browser resumes with Last-Event-ID after a reconnect)
- heartbeat: every NOTIFICATION_HEARTBEAT_INTERVAL seconds
- timeout: before the server closes a stream that reached
  NOTIFICATION_STREAM_TIMEOUT (EventSource reconnects on its own)
"""

import asyncio
import json
import logging
import time

from asgiref.sync import sync_to_async
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db.models import Max
from django.utils import timezone

from .models import Notification

logger = logging.getLogger(__name__)


def sse_event(event, data, event_id=None):
    lines = []
    if event_id is not None:
        lines.append(f'id: {event_id}')
    if event:
        lines.append(f'event: {event}')
    payload = json.dumps(data, cls=DjangoJSONEncoder, separators=(',', ':'))
    for line in payload.splitlines() or ['']:
        lines.append(f'data: {line}')
    return '\n'.join(lines) + '\n\n'


def parse_last_event_id(value):
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


def pending_notifications(user, institution, after_id):
    return list(
        Notification.objects
        .filter(user=user, institution=institution, pk__gt=after_id)
        .order_by('id')[:50]
    )


def latest_notification_id(user, institution):
    return (
        Notification.objects
        .filter(user=user, institution=institution)
        .aggregate(latest=Max('id'))['latest']
    ) or 0


async def notification_stream(user, institution, last_event_id=0, timeout=None, poll_interval=None,
                              heartbeat_interval=None, sleep=asyncio.sleep, clock=time.monotonic):
    """
    Async generator of SSE frames for ``user`` until the stream lifetime runs out

    Without a ``last_event_id`` the stream starts after the user's newest
    notification, so only notifications created from now on are pushed
    (history comes from the list endpoint). ``sleep`` (a coroutine
    function) and ``clock`` are injectable so the loop can be driven
    without real waiting.
    """
    timeout = settings.NOTIFICATION_STREAM_TIMEOUT if timeout is None else timeout
    poll_interval = settings.NOTIFICATION_STREAM_POLL_INTERVAL if poll_interval is None else poll_interval
    heartbeat_interval = settings.NOTIFICATION_HEARTBEAT_INTERVAL if heartbeat_interval is None else heartbeat_interval

    last_id = last_event_id or await sync_to_async(latest_notification_id)(user, institution)
    started = clock()
    last_heartbeat = started

    try:
        yield sse_event('connected', {
            'message': 'Connected to notification stream',
            'user_id': user.pk,
            'timestamp': timezone.now(),
        })

        while True:
            for notification in await sync_to_async(pending_notifications)(user, institution, last_id):
                last_id = notification.pk
                yield sse_event('notification', notification.to_dict(), event_id=notification.pk)

            now = clock()
            if now - started >= timeout:
                yield sse_event('timeout', {'message': 'Stream lifetime reached, reconnect to continue'})
                return

            if now - last_heartbeat >= heartbeat_interval:
                last_heartbeat = now
                yield sse_event('heartbeat', {'timestamp': timezone.now()})

            await sleep(poll_interval)
    finally:
        logger.debug("Notification stream closed for user %s (last id %s)", user.pk, last_id)
