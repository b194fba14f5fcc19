"""
Appointment Tests

Test Coverage:
1. Scheduling (validation, student notification)
2. Listing filters
3. Updates and counselor ownership
4. Reminder task

Run tests:
    pytest apps/appointments/tests/test_views.py
"""

import json
from datetime import timedelta

from django.test import TestCase, Client
from django.urls import reverse
from django.utils import timezone

from apps.accounts.models import User, ROLE_ADMISSION_TEAM, ROLE_ADMISSION_HEAD, ROLE_STUDENT, ROLE_TELECALLER
from apps.admissions.services import convert_lead
from apps.appointments.models import Appointment
from apps.appointments.tasks import send_reminders
from apps.core.models import Institution
from apps.leads.models import Lead
from apps.notifications.models import Notification


class AppointmentTestCase(TestCase):

    def setUp(self):
        self.client = Client()
        self.institution = Institution.objects.create(name='Sunrise College')
        self.counselor = User.objects.create_user(
            email='team@sunrise.edu', password='testpass123', first_name='Kiran', last_name='Das',
            institution=self.institution, role=ROLE_ADMISSION_TEAM,
        )
        self.other_counselor = User.objects.create_user(
            email='team2@sunrise.edu', password='testpass123',
            institution=self.institution, role=ROLE_ADMISSION_TEAM,
        )
        self.head = User.objects.create_user(
            email='head@sunrise.edu', password='testpass123',
            institution=self.institution, role=ROLE_ADMISSION_HEAD,
        )
        self.student = User.objects.create_user(
            email='priya@example.com', password='testpass123',
            institution=self.institution, role=ROLE_STUDENT,
        )
        lead = Lead.objects.create(institution=self.institution, name='Priya Nair', email='priya@example.com',
                                   phone='+919876543210', course_interest='BBA')
        self.application = convert_lead(lead)
        # Whole seconds keep form change detection exact
        self.tomorrow = (timezone.now() + timedelta(days=1)).replace(microsecond=0)

    def url(self, name, *args):
        return reverse(f'appointments:{name}', args=[self.institution.slug, *args])

    def post_json(self, url, data, method='post'):
        return getattr(self.client, method)(url, data=json.dumps(data), content_type='application/json')

    def make_appointment(self, counselor=None, scheduled_at=None, **kwargs):
        return Appointment.objects.create(
            institution=self.institution, application=self.application, counselor=counselor or self.counselor,
            scheduled_at=scheduled_at or self.tomorrow, **kwargs
        )


class ScheduleAppointmentTest(AppointmentTestCase):

    def setUp(self):
        super().setUp()
        self.client.login(email='team@sunrise.edu', password='testpass123')

    def test_schedule(self):
        """
        Test: Counselor schedules a session
        Expected: 201, default duration, counselor is the caller, student notified
        """
        response = self.post_json(self.url('appointment_list'), {
            'application_id': self.application.pk,
            'scheduled_at': self.tomorrow.isoformat(),
            'notes': 'Discuss scholarship',
        })

        self.assertEqual(response.status_code, 201)
        data = response.json()['appointment']
        self.assertEqual(data['duration_minutes'], 30)
        self.assertEqual(data['status'], 'scheduled')
        self.assertEqual(data['counselor']['name'], 'Kiran Das')

        notification = Notification.objects.get(user=self.student, action_type='appointment_scheduled')
        self.assertEqual(notification.data['appointment_id'], data['id'])

    def test_schedule_in_past(self):
        response = self.post_json(self.url('appointment_list'), {
            'application_id': self.application.pk,
            'scheduled_at': (timezone.now() - timedelta(hours=2)).isoformat(),
        })

        self.assertEqual(response.status_code, 400)
        self.assertIn('scheduled_at', response.json()['errors'])

    def test_duration_bounds(self):
        response = self.post_json(self.url('appointment_list'), {
            'application_id': self.application.pk,
            'scheduled_at': self.tomorrow.isoformat(),
            'duration_minutes': 180,
        })

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['errors']['duration_minutes'],
                         ['Duration must be between 15 and 120 minutes.'])

    def test_application_from_other_institution(self):
        other = Institution.objects.create(name='Lakeside University')
        other_lead = Lead.objects.create(institution=other, name='Rahul', phone='+919876543211')
        other_application = convert_lead(other_lead)

        response = self.post_json(self.url('appointment_list'), {
            'application_id': other_application.pk, 'scheduled_at': self.tomorrow.isoformat(),
        })

        self.assertEqual(response.status_code, 400)
        self.assertIn('application_id', response.json()['errors'])

    def test_telecaller_forbidden(self):
        User.objects.create_user(email='caller@sunrise.edu', password='testpass123',
                                 institution=self.institution, role=ROLE_TELECALLER)
        self.client.login(email='caller@sunrise.edu', password='testpass123')

        response = self.client.get(self.url('appointment_list'))
        self.assertEqual(response.status_code, 403)


class AppointmentListTest(AppointmentTestCase):

    def setUp(self):
        super().setUp()
        self.client.login(email='team@sunrise.edu', password='testpass123')
        self.mine = self.make_appointment()
        self.theirs = self.make_appointment(counselor=self.other_counselor, scheduled_at=self.tomorrow + timedelta(days=3))

    def test_list_all(self):
        response = self.client.get(self.url('appointment_list'))

        self.assertEqual(response.status_code, 200)
        self.assertEqual([a['id'] for a in response.json()['appointments']], [self.mine.pk, self.theirs.pk])

    def test_filter_mine(self):
        response = self.client.get(self.url('appointment_list'), {'mine': '1'})
        self.assertEqual([a['id'] for a in response.json()['appointments']], [self.mine.pk])

    def test_filter_date(self):
        day = timezone.localtime(self.theirs.scheduled_at).strftime('%Y-%m-%d')

        response = self.client.get(self.url('appointment_list'), {'date': day})
        self.assertEqual([a['id'] for a in response.json()['appointments']], [self.theirs.pk])

    def test_filter_bad_date(self):
        response = self.client.get(self.url('appointment_list'), {'date': '19/10/2026'})
        self.assertEqual(response.status_code, 400)

    def test_filter_status(self):
        self.theirs.status = Appointment.STATUS_CANCELLED
        self.theirs.save()

        response = self.client.get(self.url('appointment_list'), {'status': 'cancelled'})
        self.assertEqual([a['id'] for a in response.json()['appointments']], [self.theirs.pk])


class UpdateAppointmentTest(AppointmentTestCase):

    def setUp(self):
        super().setUp()
        self.appointment = self.make_appointment(reminder_sent=True)

    def test_counselor_updates_status(self):
        self.client.login(email='team@sunrise.edu', password='testpass123')

        response = self.post_json(self.url('appointment_detail', self.appointment.pk),
                                  {'status': 'confirmed'}, method='patch')

        self.assertEqual(response.status_code, 200)
        self.appointment.refresh_from_db()
        self.assertEqual(self.appointment.status, Appointment.STATUS_CONFIRMED)
        self.assertTrue(self.appointment.reminder_sent)

    def test_reschedule_resets_reminder(self):
        self.client.login(email='team@sunrise.edu', password='testpass123')
        later = self.tomorrow + timedelta(hours=3)

        response = self.post_json(self.url('appointment_detail', self.appointment.pk),
                                  {'scheduled_at': later.isoformat()}, method='patch')

        self.assertEqual(response.status_code, 200)
        self.appointment.refresh_from_db()
        self.assertEqual(self.appointment.scheduled_at, later)
        self.assertFalse(self.appointment.reminder_sent)

    def test_other_counselor_cannot_edit(self):
        self.client.login(email='team2@sunrise.edu', password='testpass123')

        response = self.post_json(self.url('appointment_detail', self.appointment.pk),
                                  {'status': 'cancelled'}, method='patch')
        self.assertEqual(response.status_code, 404)

        # Viewing is still allowed
        response = self.client.get(self.url('appointment_detail', self.appointment.pk))
        self.assertEqual(response.status_code, 200)

    def test_head_can_edit_any(self):
        self.client.login(email='head@sunrise.edu', password='testpass123')

        response = self.post_json(self.url('appointment_detail', self.appointment.pk),
                                  {'status': 'no_show'}, method='patch')
        self.assertEqual(response.status_code, 200)

    def test_invalid_status(self):
        self.client.login(email='team@sunrise.edu', password='testpass123')

        response = self.post_json(self.url('appointment_detail', self.appointment.pk),
                                  {'status': 'postponed'}, method='patch')
        self.assertEqual(response.status_code, 400)


class ReminderTaskTest(AppointmentTestCase):

    def test_reminds_sessions_within_the_hour(self):
        soon = self.make_appointment(scheduled_at=timezone.now() + timedelta(minutes=30))
        self.make_appointment(scheduled_at=timezone.now() + timedelta(hours=3))
        self.make_appointment(scheduled_at=timezone.now() + timedelta(minutes=20), status=Appointment.STATUS_CANCELLED)

        result = send_reminders()

        self.assertEqual(result, '1 appointment reminders sent.')
        soon.refresh_from_db()
        self.assertTrue(soon.reminder_sent)
        self.assertEqual(Notification.objects.filter(user=self.counselor, action_type='appointment_reminder').count(), 1)
        self.assertEqual(Notification.objects.filter(user=self.student, action_type='appointment_reminder').count(), 1)

    def test_reminder_sent_once(self):
        self.make_appointment(scheduled_at=timezone.now() + timedelta(minutes=30))

        send_reminders()
        self.assertEqual(send_reminders(), '0 appointment reminders sent.')
