"""
Communication Views Tests

Test Coverage:
1. Message template CRUD and permissions
2. Template / direct / bulk sending
3. Stats, communication log, per-application history

Run tests:
    pytest apps/communications/tests/test_views.py
"""

import json

from django.test import TestCase, Client
from django.urls import reverse

from apps.accounts.models import (
    User, ROLE_INSTITUTION_ADMIN, ROLE_ADMISSION_TEAM, ROLE_TELECALLER, ROLE_FINANCE_TEAM,
)
from apps.admissions.services import convert_lead
from apps.communications import services
from apps.communications.models import Communication, MessageTemplate
from apps.core.models import Institution
from apps.leads.models import Lead


class CommunicationViewTestCase(TestCase):

    def setUp(self):
        self.client = Client()
        self.institution = Institution.objects.create(name='Sunrise College')
        self.admin = User.objects.create_user(
            email='admin@sunrise.edu', password='testpass123',
            institution=self.institution, role=ROLE_INSTITUTION_ADMIN,
        )
        self.team_member = User.objects.create_user(
            email='team@sunrise.edu', password='testpass123',
            institution=self.institution, role=ROLE_ADMISSION_TEAM,
        )
        self.telecaller = User.objects.create_user(
            email='caller@sunrise.edu', password='testpass123',
            institution=self.institution, role=ROLE_TELECALLER,
        )
        self.lead = Lead.objects.create(institution=self.institution, name='Priya Nair', email='priya@example.com',
                                        phone='+919876543210', course_interest='BBA')
        self.application = convert_lead(self.lead)
        self.template = MessageTemplate.objects.create(
            institution=self.institution, name='Welcome', subject='Welcome to {{institution_name}}',
            body='Dear {{student_name}}, thank you for applying to {{course}}.',
        )

    def url(self, name, *args):
        return reverse(f'communications:{name}', args=[self.institution.slug, *args])

    def post_json(self, url, data, method='post'):
        return getattr(self.client, method)(url, data=json.dumps(data), content_type='application/json')


class MessageTemplateViewTest(CommunicationViewTestCase):

    def setUp(self):
        super().setUp()
        self.client.login(email='admin@sunrise.edu', password='testpass123')

    def test_list_includes_defaults(self):
        response = self.client.get(self.url('template_list'))

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual([t['name'] for t in data['templates']], ['Welcome'])
        self.assertIn('offer_letter', data['defaults'])

    def test_create(self):
        response = self.post_json(self.url('template_list'), {
            'name': 'Documents pending', 'channel': 'whatsapp', 'category': 'document',
            'body': 'Hi {{student_name}}, please upload your documents.',
        })

        self.assertEqual(response.status_code, 201)
        data = response.json()['template']
        self.assertEqual(data['variables'], ['student_name'])
        self.assertTrue(data['is_active'])
        self.assertEqual(MessageTemplate.objects.get(pk=data['id']).created_by, self.admin)

    def test_email_needs_subject(self):
        response = self.post_json(self.url('template_list'), {'name': 'No subject', 'channel': 'email', 'body': 'Hi'})

        self.assertEqual(response.status_code, 400)
        self.assertIn('subject', response.json()['errors'])

    def test_duplicate_name_per_channel(self):
        response = self.post_json(self.url('template_list'), {
            'name': 'Welcome', 'channel': 'email', 'subject': 'Hi', 'body': 'Hi',
        })
        self.assertEqual(response.status_code, 400)
        self.assertIn('name', response.json()['errors'])

        # Same name on another channel is fine
        response = self.post_json(self.url('template_list'), {'name': 'Welcome', 'channel': 'sms', 'body': 'Hi'})
        self.assertEqual(response.status_code, 201)

    def test_partial_update(self):
        response = self.post_json(self.url('template_detail', self.template.pk),
                                  {'body': 'Hello {{student_name}} from {{institution_name}}'}, method='patch')

        self.assertEqual(response.status_code, 200)
        self.template.refresh_from_db()
        self.assertEqual(self.template.subject, 'Welcome to {{institution_name}}')
        self.assertEqual(self.template.variables, ['institution_name', 'student_name'])

    def test_delete(self):
        response = self.client.delete(self.url('template_detail', self.template.pk))

        self.assertEqual(response.status_code, 200)
        self.assertFalse(MessageTemplate.objects.exists())

    def test_telecaller_reads_but_cannot_edit(self):
        self.client.login(email='caller@sunrise.edu', password='testpass123')

        self.assertEqual(self.client.get(self.url('template_detail', self.template.pk)).status_code, 200)
        response = self.post_json(self.url('template_detail', self.template.pk), {'body': 'x'}, method='patch')
        self.assertEqual(response.status_code, 403)
        response = self.post_json(self.url('template_list'), {'name': 'Mine', 'channel': 'sms', 'body': 'x'})
        self.assertEqual(response.status_code, 403)

    def test_finance_team_forbidden(self):
        User.objects.create_user(email='finance@sunrise.edu', password='testpass123',
                                 institution=self.institution, role=ROLE_FINANCE_TEAM)
        self.client.login(email='finance@sunrise.edu', password='testpass123')

        self.assertEqual(self.client.get(self.url('template_list')).status_code, 403)


class SendViewTest(CommunicationViewTestCase):

    def setUp(self):
        super().setUp()
        self.client.login(email='team@sunrise.edu', password='testpass123')

    def test_send_template(self):
        response = self.post_json(self.url('send_template'), {
            'template_id': self.template.pk, 'application_id': self.application.pk,
        })

        self.assertEqual(response.status_code, 202)
        data = response.json()
        self.assertEqual(data['communication']['subject'], 'Welcome to Sunrise College')
        self.assertEqual(data['communication']['status'], 'queued')
        self.assertEqual(data['missing_variables'], [])

    def test_send_template_needs_target(self):
        response = self.post_json(self.url('send_template'), {'template_id': self.template.pk})

        self.assertEqual(response.status_code, 400)
        self.assertIn('__all__', response.json()['errors'])

    def test_send_template_from_other_institution(self):
        other = Institution.objects.create(name='Lakeside University')
        foreign = MessageTemplate.objects.create(institution=other, name='Hi', subject='Hi', body='Hi')

        response = self.post_json(self.url('send_template'), {'template_id': foreign.pk, 'to': 'x@example.com'})

        self.assertEqual(response.status_code, 400)
        self.assertIn('template_id', response.json()['errors'])

    def test_send_direct(self):
        response = self.post_json(self.url('send_direct'), {
            'channel': 'sms', 'lead_id': self.lead.pk, 'content': 'Call us back today',
        })

        self.assertEqual(response.status_code, 202)
        communication = Communication.objects.get()
        self.assertEqual(communication.recipient, '+919876543210')
        self.assertEqual(communication.sender, self.team_member)

    def test_send_direct_invalid_email(self):
        response = self.post_json(self.url('send_direct'), {'channel': 'email', 'to': 'not-an-email', 'content': 'Hi'})

        self.assertEqual(response.status_code, 400)
        self.assertIn('to', response.json()['errors'])

    def test_send_direct_without_recipient(self):
        lead = Lead.objects.create(institution=self.institution, name='Rahul', phone='+919876543211')

        response = self.post_json(self.url('send_direct'), {'channel': 'email', 'lead_id': lead.pk, 'content': 'Hi'})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'MESSAGING_ERROR')

    def test_send_bulk(self):
        other_lead = Lead.objects.create(institution=self.institution, name='Rahul', phone='+919876543211')
        other = convert_lead(other_lead)

        response = self.post_json(self.url('send_bulk'), {
            'application_ids': [self.application.pk, other.pk], 'template_id': self.template.pk,
        })

        self.assertEqual(response.status_code, 202)
        data = response.json()
        self.assertEqual(data['queued'], 1)
        self.assertEqual(data['skipped'][0]['application_id'], other.pk)

    def test_send_bulk_unknown_application(self):
        response = self.post_json(self.url('send_bulk'), {
            'application_ids': [self.application.pk, 9999], 'channel': 'sms', 'content': 'Hi',
        })

        self.assertEqual(response.status_code, 400)
        self.assertIn('application_ids', response.json()['errors'])

    def test_send_bulk_needs_content(self):
        response = self.post_json(self.url('send_bulk'), {'application_ids': [self.application.pk], 'channel': 'sms'})
        self.assertEqual(response.status_code, 400)

    def test_telecaller_cannot_bulk_send(self):
        self.client.login(email='caller@sunrise.edu', password='testpass123')

        response = self.post_json(self.url('send_bulk'), {
            'application_ids': [self.application.pk], 'channel': 'sms', 'content': 'Hi',
        })
        self.assertEqual(response.status_code, 403)


class CommunicationReportViewTest(CommunicationViewTestCase):

    def setUp(self):
        super().setUp()
        self.client.login(email='team@sunrise.edu', password='testpass123')
        self.email = services.queue_communication(self.institution, 'email', 'priya@example.com', 'Hi',
                                                  subject='Hi', application=self.application)
        services.deliver_communication(self.email)
        self.sms = services.queue_communication(self.institution, 'sms', '+919876543210', 'Hi',
                                                application=self.application)

    def test_stats(self):
        response = self.client.get(self.url('communication_stats'), {'days': 7})

        stats = response.json()['stats']
        self.assertEqual(stats['period_days'], 7)
        self.assertEqual(stats['total'], 2)
        self.assertEqual(stats['templates'], 1)

    def test_stats_bad_days(self):
        response = self.client.get(self.url('communication_stats'), {'days': 'week'})
        self.assertEqual(response.status_code, 400)

    def test_list_filters(self):
        response = self.client.get(self.url('communication_list'), {'channel': 'sms'})
        self.assertEqual([c['id'] for c in response.json()['results']], [self.sms.pk])

        response = self.client.get(self.url('communication_list'), {'status': 'sent'})
        self.assertEqual([c['id'] for c in response.json()['results']], [self.email.pk])

    def test_application_history(self):
        response = self.client.get(self.url('application_communications', self.application.pk))

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['application_id'], self.application.pk)
        self.assertEqual(data['total'], 2)
        self.assertEqual(len(data['by_channel']['sms']), 1)
