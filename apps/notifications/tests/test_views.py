"""
Notification Views Tests

Test Coverage:
1. List / stats / categories / poll
2. SSE stream response
3. Read state and deletion
4. Preferences
5. Announcements

Run tests:
    pytest apps/notifications/tests/test_views.py
"""

import json

from asgiref.sync import async_to_sync
from django.test import TestCase, Client, RequestFactory
from django.urls import reverse

from apps.accounts.models import User, UserProfile, ROLE_TELECALLER, ROLE_INSTITUTION_ADMIN, ROLE_FINANCE_TEAM
from apps.core.models import Institution
from apps.notifications import services
from apps.notifications.models import Notification
from apps.notifications.views import notification_stream_view


class NotificationViewTestCase(TestCase):

    def setUp(self):
        self.client = Client()
        self.institution = Institution.objects.create(name='Sunrise College')
        self.telecaller = User.objects.create_user(
            email='caller@sunrise.edu', password='testpass123',
            institution=self.institution, role=ROLE_TELECALLER,
        )
        self.admin = User.objects.create_user(
            email='admin@sunrise.edu', password='testpass123',
            institution=self.institution, role=ROLE_INSTITUTION_ADMIN,
        )
        self.finance = User.objects.create_user(
            email='finance@sunrise.edu', password='testpass123',
            institution=self.institution, role=ROLE_FINANCE_TEAM,
        )
        self.first = services.send_notification(self.telecaller, 'Lead assigned', 'Priya Nair', category='lead')
        self.second = services.send_notification(self.telecaller, 'Payment', 'Received', category='payment')
        self.client.login(email='caller@sunrise.edu', password='testpass123')

    def url(self, name, *args):
        return reverse(f'notifications:{name}', args=[self.institution.slug, *args])

    def post_json(self, url, data, method='post'):
        return getattr(self.client, method)(url, data=json.dumps(data), content_type='application/json')


class NotificationListViewTest(NotificationViewTestCase):

    def test_list(self):
        services.send_notification(self.admin, 'Not mine', 'Hidden')

        response = self.client.get(self.url('notification_list'))

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual([n['id'] for n in data['results']], [self.second.pk, self.first.pk])
        self.assertEqual(data['unread_count'], 2)

    def test_filters(self):
        self.first.mark_as_read()

        response = self.client.get(self.url('notification_list'), {'unread_only': 'true'})
        self.assertEqual([n['id'] for n in response.json()['results']], [self.second.pk])

        response = self.client.get(self.url('notification_list'), {'category': 'lead'})
        self.assertEqual([n['id'] for n in response.json()['results']], [self.first.pk])

    def test_requires_login(self):
        self.client.logout()
        response = self.client.get(self.url('notification_list'))

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['code'], 'UNAUTHENTICATED')

    def test_stats(self):
        response = self.client.get(self.url('notification_stats'))

        stats = response.json()['stats']
        self.assertEqual(stats['unread'], 2)
        self.assertEqual(stats['by_category']['payment'], {'total': 1, 'unread': 1})

    def test_categories(self):
        response = self.client.get(self.url('notification_categories'))
        self.assertIn({'value': 'finance', 'label': 'Finance'}, response.json()['categories'])

    def test_poll(self):
        response = self.client.get(self.url('notification_poll'), {'after': self.first.pk})

        data = response.json()
        self.assertEqual([n['id'] for n in data['notifications']], [self.second.pk])
        self.assertEqual(data['last_id'], self.second.pk)

        response = self.client.get(self.url('notification_poll'), {'after': self.second.pk})
        self.assertEqual(response.json()['last_id'], self.second.pk)

    def test_stream(self):
        """
        Test: Open the SSE stream the way the ASGI server reads it
        Expected: Async event-stream response whose first chunk is the connected frame
        """
        request = RequestFactory().get(self.url('notification_stream'))
        request.user = self.telecaller

        response = notification_stream_view(request, tenant=self.institution.slug)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'text/event-stream')
        self.assertEqual(response['Cache-Control'], 'no-cache')
        self.assertTrue(response.is_async)

        async def first_chunk():
            chunks = response.__aiter__()
            chunk = await chunks.__anext__()
            await chunks.aclose()
            return chunk

        self.assertIn(b'event: connected', async_to_sync(first_chunk)())


class NotificationReadViewTest(NotificationViewTestCase):

    def test_mark_one_read(self):
        response = self.client.patch(self.url('notification_read', self.first.pk))

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()['notification']['is_read'])

    def test_cannot_read_others(self):
        other = services.send_notification(self.admin, 'Admin only', 'Hidden')
        response = self.client.patch(self.url('notification_read', other.pk))
        self.assertEqual(response.status_code, 404)

    def test_mark_read_bulk(self):
        other = services.send_notification(self.admin, 'Admin only', 'Hidden')

        response = self.post_json(self.url('notification_mark_read'),
                                  {'notification_ids': [self.first.pk, other.pk]}, method='patch')

        self.assertEqual(response.json()['updated'], 1)
        other.refresh_from_db()
        self.assertFalse(other.is_read)

    def test_mark_read_requires_ids(self):
        response = self.post_json(self.url('notification_mark_read'), {'notification_ids': []})
        self.assertEqual(response.status_code, 400)

    def test_mark_all_read(self):
        response = self.client.post(self.url('notification_mark_all_read'))

        self.assertEqual(response.json()['updated'], 2)
        self.assertFalse(Notification.objects.filter(user=self.telecaller, is_read=False).exists())

    def test_delete(self):
        response = self.client.delete(self.url('notification_delete', self.first.pk))

        self.assertEqual(response.status_code, 200)
        self.assertFalse(Notification.objects.filter(pk=self.first.pk).exists())

    def test_delete_all_read_only(self):
        self.first.mark_as_read()

        response = self.client.delete(self.url('notification_delete_all') + '?read_only=true')

        self.assertEqual(response.json()['deleted'], 1)
        self.assertTrue(Notification.objects.filter(pk=self.second.pk).exists())


class PreferencesViewTest(NotificationViewTestCase):

    def test_get(self):
        response = self.client.get(self.url('notification_preferences'))

        self.assertEqual(response.json()['preferences'], {
            'email': True, 'sms': False, 'whatsapp': False, 'push': True,
            'frequency': 'immediate', 'muted_categories': [],
        })

    def test_update(self):
        response = self.post_json(self.url('notification_preferences'),
                                  {'whatsapp_notifications': True, 'muted_categories': ['performance']},
                                  method='patch')

        self.assertEqual(response.status_code, 200)
        profile = UserProfile.objects.get(user=self.telecaller)
        self.assertTrue(profile.whatsapp_notifications)
        self.assertTrue(profile.email_notifications)
        self.assertEqual(profile.muted_categories, ['performance'])

    def test_unknown_category(self):
        response = self.post_json(self.url('notification_preferences'), {'muted_categories': ['gossip']}, method='patch')

        self.assertEqual(response.status_code, 400)
        self.assertIn('muted_categories', response.json()['errors'])


class AnnouncementViewTest(NotificationViewTestCase):

    def setUp(self):
        super().setUp()
        self.client.login(email='admin@sunrise.edu', password='testpass123')

    def test_announce_to_everyone(self):
        response = self.post_json(self.url('announcement'), {'title': 'Holiday', 'message': 'Campus closed Monday'})

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['message'], 'Announcement sent to 3 users')
        notification = Notification.objects.get(user=self.finance)
        self.assertEqual(notification.notification_type, Notification.TYPE_SYSTEM)
        self.assertEqual(notification.data, {'sender_id': self.admin.pk})

    def test_announce_to_roles(self):
        response = self.post_json(self.url('announcement'), {
            'title': 'Targets', 'message': 'New monthly targets', 'target_roles': ['telecaller'], 'priority': 'high',
        })

        self.assertEqual(len(response.json()['notification_ids']), 1)
        self.assertEqual(Notification.objects.get(pk=response.json()['notification_ids'][0]).priority, 'high')

    def test_missing_message(self):
        response = self.post_json(self.url('announcement'), {'title': 'Holiday'})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Title and message are required')

    def test_unknown_role(self):
        response = self.post_json(self.url('announcement'), {'title': 'A', 'message': 'B', 'target_roles': ['wizard']})
        self.assertEqual(response.status_code, 400)

    def test_telecaller_forbidden(self):
        self.client.login(email='caller@sunrise.edu', password='testpass123')
        response = self.post_json(self.url('announcement'), {'title': 'Holiday', 'message': 'Closed'})
        self.assertEqual(response.status_code, 403)
