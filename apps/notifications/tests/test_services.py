"""
Notification Service Tests

Test Coverage:
1. send_notification / role / tenant fan-out
2. Delivery after commit (WebSocket push, external delivery task)
3. deliver_notification channel preferences
4. Read state and stats
5. SSE framing and stream generator
6. WebSocket consumer

Run tests:
    pytest apps/notifications/tests/test_services.py
"""

from unittest import mock

from asgiref.sync import async_to_sync, sync_to_async
from channels.layers import get_channel_layer
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser
from django.core import mail
from django.http import StreamingHttpResponse
from django.test import TestCase, SimpleTestCase, override_settings

from apps.accounts.models import User, UserProfile, ROLE_TELECALLER, ROLE_FINANCE_TEAM, ROLE_INSTITUTION_ADMIN
from apps.core.models import Institution
from apps.notifications import services
from apps.notifications.consumers import NotificationConsumer
from apps.notifications.models import Notification
from apps.notifications.sse import sse_event, parse_last_event_id, notification_stream
from apps.notifications.tasks import deliver_notification


async def no_wait(seconds):
    return None


def collect(stream):
    async def drain():
        return [frame async for frame in stream]
    return async_to_sync(drain)()


def event_names(frames):
    return [frame.split('event: ')[1].split('\n')[0] for frame in frames]


class NotificationTestCase(TestCase):

    def setUp(self):
        self.institution = Institution.objects.create(name='Sunrise College')
        self.telecaller = User.objects.create_user(
            email='caller@sunrise.edu', password='testpass123', phone='+919876543210',
            institution=self.institution, role=ROLE_TELECALLER,
        )
        self.finance = User.objects.create_user(
            email='finance@sunrise.edu', password='testpass123',
            institution=self.institution, role=ROLE_FINANCE_TEAM,
        )
        self.admin = User.objects.create_user(
            email='admin@sunrise.edu', password='testpass123',
            institution=self.institution, role=ROLE_INSTITUTION_ADMIN,
        )


class SendNotificationTest(NotificationTestCase):

    def test_send(self):
        notification = services.send_notification(
            self.telecaller, 'New lead assigned', 'Priya Nair was assigned to you',
            category='lead', action_type='lead_assigned', data={'lead_id': 5},
        )

        self.assertEqual(notification.institution, self.institution)
        self.assertEqual(notification.category, 'lead')
        self.assertEqual(notification.priority, 'medium')
        self.assertFalse(notification.is_read)
        self.assertEqual(notification.to_dict()['data'], {'lead_id': 5})

    def test_unknown_category_becomes_general(self):
        notification = services.send_notification(self.telecaller, 'Hello', 'World', category='gossip')
        self.assertEqual(notification.category, 'general')

    def test_long_title_truncated(self):
        notification = services.send_notification(self.telecaller, 'x' * 300, 'Long title')
        self.assertEqual(len(notification.title), 200)

    def test_role_notification(self):
        inactive = User.objects.create_user(email='old@sunrise.edu', password='testpass123',
                                            institution=self.institution, role=ROLE_FINANCE_TEAM)
        inactive.is_active = False
        inactive.save()

        notifications = services.send_role_notification(self.institution, ROLE_FINANCE_TEAM, 'Refund', 'New request')

        self.assertEqual([n.user for n in notifications], [self.finance])

    def test_tenant_notification(self):
        other = Institution.objects.create(name='Lakeside University')
        User.objects.create_user(email='x@lakeside.edu', password='testpass123', institution=other)

        notifications = services.send_tenant_notification(self.institution, 'Holiday', 'Campus closed Monday')

        self.assertEqual(len(notifications), 3)
        self.assertTrue(all(n.institution == self.institution for n in notifications))

    def test_push_and_delivery_after_commit(self):
        """
        Test: Notification created inside a transaction
        Expected: WebSocket push and external delivery run only on commit
        """
        with mock.patch('apps.notifications.services.push_to_user') as push:
            with self.captureOnCommitCallbacks(execute=True) as callbacks:
                notification = services.send_notification(self.telecaller, 'Hello', 'World')
                push.assert_not_called()

        self.assertEqual(len(callbacks), 1)
        push.assert_called_once_with(notification)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].subject, 'Hello')

    def test_internal_only(self):
        with self.captureOnCommitCallbacks(execute=True):
            services.send_notification(self.telecaller, 'Hello', 'World', deliver_externally=False)

        self.assertEqual(len(mail.outbox), 0)

    def test_push_failure_is_logged(self):
        notification = services.send_notification(self.telecaller, 'Hello', 'World')
        layer = mock.Mock()
        layer.group_send = mock.AsyncMock(side_effect=ConnectionError('redis down'))

        with mock.patch('apps.notifications.services.get_channel_layer', return_value=layer):
            with self.assertLogs('apps.notifications.services', level='WARNING'):
                services.push_to_user(notification)


class DeliverNotificationTest(NotificationTestCase):

    def setUp(self):
        super().setUp()
        self.profile = UserProfile.objects.get(user=self.telecaller)

    def notify(self, category='lead'):
        return services.send_notification(self.telecaller, 'Follow up due', 'Call Priya today', category=category)

    def test_email_by_default(self):
        result = deliver_notification(self.notify().pk)

        self.assertEqual(result, 'email')
        self.assertEqual(mail.outbox[0].to, ['caller@sunrise.edu'])
        self.assertEqual(mail.outbox[0].body, 'Call Priya today')

    def test_muted_category(self):
        self.profile.muted_categories = ['lead']
        self.profile.save()

        self.assertEqual(deliver_notification(self.notify().pk), '')
        self.assertEqual(len(mail.outbox), 0)

    def test_digest_frequency(self):
        self.profile.notification_frequency = UserProfile.FREQUENCY_DAILY
        self.profile.save()

        self.assertEqual(deliver_notification(self.notify().pk), 'digest')

    def test_inactive_user_skipped(self):
        notification = self.notify()
        self.telecaller.is_active = False
        self.telecaller.save()

        self.assertEqual(deliver_notification(notification.pk), 'skipped')

    def test_missing_notification(self):
        self.assertEqual(deliver_notification(9999), 'missing')

    @override_settings(TWILIO_ACCOUNT_SID='', TWILIO_AUTH_TOKEN='', TWILIO_FROM_NUMBER='')
    def test_unconfigured_sms_is_skipped(self):
        self.profile.sms_notifications = True
        self.profile.save()

        self.assertEqual(deliver_notification(self.notify().pk), 'email')

    @override_settings(TWILIO_ACCOUNT_SID='AC123', TWILIO_AUTH_TOKEN='secret', TWILIO_FROM_NUMBER='+15005550006')
    def test_sms_delivery(self):
        self.profile.email_notifications = False
        self.profile.sms_notifications = True
        self.profile.save()

        with mock.patch('apps.communications.clients.requests.post') as post:
            post.return_value.status_code = 201
            post.return_value.json.return_value = {'sid': 'SM1'}
            result = deliver_notification(self.notify().pk)

        self.assertEqual(result, 'sms')
        self.assertEqual(post.call_args.kwargs['data']['Body'], 'Follow up due\nCall Priya today')


class ReadStateTest(NotificationTestCase):

    def setUp(self):
        super().setUp()
        self.first = services.send_notification(self.telecaller, 'One', 'First', category='lead', priority='high')
        self.second = services.send_notification(self.telecaller, 'Two', 'Second', category='lead')
        self.third = services.send_notification(self.telecaller, 'Three', 'Third', category='system')

    def test_mark_as_read(self):
        self.assertTrue(self.first.mark_as_read())
        self.assertIsNotNone(self.first.read_at)
        self.assertFalse(self.first.mark_as_read())

    def test_mark_read_only_own(self):
        other = services.send_notification(self.finance, 'Other', 'Not yours')

        updated = services.mark_read(self.telecaller, [self.first.pk, other.pk])

        self.assertEqual(updated, 1)
        other.refresh_from_db()
        self.assertFalse(other.is_read)

    def test_mark_all_read(self):
        self.first.mark_as_read()
        self.assertEqual(services.mark_all_read(self.telecaller, self.institution), 2)

    def test_stats(self):
        self.second.mark_as_read()

        stats = services.get_stats(self.telecaller, self.institution)

        self.assertEqual(stats['total'], 3)
        self.assertEqual(stats['unread'], 2)
        self.assertEqual(stats['by_category'], {'lead': {'total': 2, 'unread': 1}, 'system': {'total': 1, 'unread': 1}})
        self.assertEqual(stats['by_priority'], {'high': 1, 'medium': 1})


class SSETest(NotificationTestCase):

    def test_event_framing(self):
        frame = sse_event('notification', {'id': 42, 'title': 'Hi'}, event_id=42)
        self.assertEqual(frame, 'id: 42\nevent: notification\ndata: {"id":42,"title":"Hi"}\n\n')

    def test_parse_last_event_id(self):
        self.assertEqual(parse_last_event_id('17'), 17)
        self.assertEqual(parse_last_event_id('-3'), 0)
        self.assertEqual(parse_last_event_id('abc'), 0)
        self.assertEqual(parse_last_event_id(None), 0)

    def test_stream(self):
        """
        Test: Stream resumed after a notification the client already has, fake clock
        Expected: connected, newer notifications in id order, heartbeat, then timeout
        """
        seen = services.send_notification(self.telecaller, 'Zero', 'Already delivered')
        first = services.send_notification(self.telecaller, 'One', 'First')
        second = services.send_notification(self.telecaller, 'Two', 'Second')
        services.send_notification(self.finance, 'Other', 'Not for this stream')
        ticks = iter([0, 5, 10])
        sleeps = []

        async def sleep(seconds):
            sleeps.append(seconds)

        frames = collect(notification_stream(
            self.telecaller, self.institution, last_event_id=seen.pk,
            timeout=10, poll_interval=1, heartbeat_interval=5,
            sleep=sleep, clock=lambda: next(ticks),
        ))

        self.assertEqual(event_names(frames), ['connected', 'notification', 'notification', 'heartbeat', 'timeout'])
        self.assertTrue(frames[1].startswith(f'id: {first.pk}\n'))
        self.assertTrue(frames[2].startswith(f'id: {second.pk}\n'))
        self.assertEqual(sleeps, [1])

    def test_stream_resumes_after_last_event_id(self):
        first = services.send_notification(self.telecaller, 'One', 'First')
        ticks = iter([0, 10])

        frames = collect(notification_stream(self.telecaller, self.institution, last_event_id=first.pk,
                                             timeout=10, sleep=no_wait, clock=lambda: next(ticks)))

        self.assertEqual(event_names(frames), ['connected', 'timeout'])

    def test_fresh_connection_skips_history(self):
        """
        Test: Client connects without Last-Event-ID while older notifications exist
        Expected: Only notifications created after connecting are sent
        """
        old = services.send_notification(self.telecaller, 'Old', 'Already read')
        old.mark_as_read()
        services.send_notification(self.telecaller, 'Unread', 'Listed by the list endpoint')
        ticks = iter([0, 5, 10])
        created = []

        async def sleep(seconds):
            created.append(await sync_to_async(services.send_notification)(self.telecaller, 'New', 'Just arrived'))

        frames = collect(notification_stream(self.telecaller, self.institution, last_event_id=0,
                                             timeout=10, heartbeat_interval=60, sleep=sleep,
                                             clock=lambda: next(ticks)))

        self.assertEqual(event_names(frames), ['connected', 'notification', 'timeout'])
        self.assertTrue(frames[1].startswith(f'id: {created[0].pk}\n'))

    def test_first_frame_sent_before_waiting(self):
        """
        Test: Stream served as an async StreamingHttpResponse (how daphne reads it)
        Expected: connected frame available at once, nothing slept yet
        """
        slept = []

        async def sleep(seconds):
            slept.append(seconds)

        stream = notification_stream(self.telecaller, self.institution, timeout=300, sleep=sleep)
        response = StreamingHttpResponse(stream, content_type='text/event-stream')

        async def first_chunk():
            chunks = response.__aiter__()
            chunk = await chunks.__anext__()
            await stream.aclose()
            return chunk

        chunk = async_to_sync(first_chunk)()

        self.assertTrue(response.is_async)
        self.assertIn(b'event: connected', chunk)
        self.assertEqual(slept, [])


def with_user(application, user):
    async def app(scope, receive, send):
        return await application({**scope, 'user': user}, receive, send)
    return app


class NotificationConsumerTest(SimpleTestCase):
    # channels closes stale DB connections around each consumer message
    databases = {'default'}

    def test_receives_group_messages(self):
        user = User(pk=7, email='caller@sunrise.edu')

        async def run():
            communicator = WebsocketCommunicator(with_user(NotificationConsumer.as_asgi(), user), '/ws/notifications/')
            connected, _ = await communicator.connect()
            welcome = await communicator.receive_json_from()

            await get_channel_layer().group_send(
                services.user_group_name(7), {'type': 'notification.message', 'notification': {'id': 1}}
            )
            pushed = await communicator.receive_json_from()

            await communicator.send_json_to({'type': 'ping'})
            pong = await communicator.receive_json_from()
            await communicator.disconnect()
            return connected, welcome, pushed, pong

        connected, welcome, pushed, pong = async_to_sync(run)()

        self.assertTrue(connected)
        self.assertEqual(welcome, {'type': 'connected', 'user_id': 7})
        self.assertEqual(pushed, {'type': 'notification', 'notification': {'id': 1}})
        self.assertEqual(pong, {'type': 'pong'})

    def test_anonymous_refused(self):
        async def run():
            communicator = WebsocketCommunicator(with_user(NotificationConsumer.as_asgi(), AnonymousUser()),
                                                 '/ws/notifications/')
            return await communicator.connect()

        connected, code = async_to_sync(run)()

        self.assertFalse(connected)
        self.assertEqual(code, 4401)
