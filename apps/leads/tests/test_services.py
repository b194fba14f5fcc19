"""
Tests for the lead intake pipeline

Test Coverage:
1. capture_lead (create, merge, external id tracking, extra data)
2. Auto-assignment and notifications on intake
3. CSV import with per-row errors
4. record_call / schedule_follow_up side effects

Run tests:
    pytest apps/leads/tests/test_services.py
"""

from datetime import timedelta

from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import TestCase
from django.utils import timezone

from apps.accounts.models import User, ROLE_INSTITUTION_ADMIN, ROLE_TELECALLER
from apps.core.models import Institution
from apps.leads.models import Activity, AssignmentConfig, CallLog, FollowUp, Lead, LeadSourceTracking
from apps.leads.services import LeadIntakeError, capture_lead, import_leads, record_call, schedule_follow_up
from apps.notifications.models import Notification


class CaptureLeadTest(TestCase):
    """Test capture_lead de-duplication and field handling"""

    def setUp(self):
        self.institution = Institution.objects.create(name='Sunrise College')
        AssignmentConfig.objects.create(institution=self.institution, auto_assign=False)

    def test_creates_lead_from_raw_form(self):
        """
        Test: A website form is captured
        Expected: Lead created with normalized phone and a 'created' activity
        """
        result = capture_lead(self.institution, {
            'Student Name': 'Priya Nair',
            'Email Address': 'Priya@Example.com',
            'Mobile': '98765 43210',
            'Programme': 'B.Tech Computer Science',
        })

        lead = result['lead']
        self.assertTrue(result['created'])
        self.assertEqual(lead.name, 'Priya Nair')
        self.assertEqual(lead.email, 'priya@example.com')
        self.assertEqual(lead.phone, '+919876543210')
        self.assertEqual(lead.course_interest, 'B.Tech Computer Science')
        self.assertEqual(lead.source, 'Website Form')
        self.assertEqual(lead.platform, 'website')
        self.assertTrue(lead.activities.filter(activity_type='created').exists())
        self.assertTrue(result['validation']['is_valid'])
        self.assertGreater(lead.score, 0)

    def test_duplicate_email_is_merged(self):
        """
        Test: Second submission with the same email (different case)
        Expected: No new lead, blank fields filled, existing values kept
        """
        first = capture_lead(self.institution, {'name': 'Priya Nair', 'email': 'priya@example.com'})['lead']
        result = capture_lead(self.institution, {
            'name': 'P. Nair',
            'email': 'PRIYA@EXAMPLE.COM',
            'city': 'Kochi',
        })

        self.assertFalse(result['created'])
        self.assertEqual(result['lead'].pk, first.pk)
        self.assertEqual(Lead.objects.filter(institution=self.institution).count(), 1)

        first.refresh_from_db()
        self.assertEqual(first.name, 'Priya Nair')
        self.assertEqual(first.city, 'Kochi')
        self.assertTrue(first.activities.filter(activity_type='merged').exists())

    def test_duplicate_phone_is_merged(self):
        capture_lead(self.institution, {'name': 'Arjun', 'phone': '9876543210'})
        result = capture_lead(self.institution, {'name': 'Arjun K', 'phone': '+91 98765 43210'})

        self.assertFalse(result['created'])
        self.assertEqual(Lead.objects.count(), 1)

    def test_same_external_id_resolves_to_existing_lead(self):
        """
        Test: The same platform delivers the same submission twice
        Expected: Second delivery merges into the first lead
        """
        first = capture_lead(self.institution, {'name': 'Ravi', 'email': 'ravi@example.com'},
                             platform='facebook_ads', external_id='lg-1')['lead']
        result = capture_lead(self.institution, {'name': 'Ravi', 'email': 'other@example.com'},
                              platform='facebook_ads', external_id='lg-1')

        self.assertFalse(result['created'])
        self.assertEqual(result['lead'].pk, first.pk)
        self.assertEqual(LeadSourceTracking.objects.filter(external_id='lg-1').count(), 1)

    def test_leads_are_not_shared_between_institutions(self):
        other = Institution.objects.create(name='Lakeside University')
        AssignmentConfig.objects.create(institution=other, auto_assign=False)

        capture_lead(self.institution, {'name': 'Asha', 'email': 'asha@example.com'})
        result = capture_lead(other, {'name': 'Asha', 'email': 'asha@example.com'})

        self.assertTrue(result['created'])
        self.assertEqual(Lead.objects.count(), 2)

    def test_submission_without_contact_details_is_rejected(self):
        with self.assertRaises(LeadIntakeError):
            capture_lead(self.institution, {'name': 'Nobody'})
        self.assertEqual(Lead.objects.count(), 0)

    def test_unmapped_fields_and_invalid_email_kept_as_extra_data(self):
        result = capture_lead(self.institution, {
            'name': 'Meera',
            'email': 'not-an-email',
            'phone': '9123456780',
            'favourite_colour': 'blue',
        })

        lead = result['lead']
        self.assertEqual(lead.email, '')
        self.assertEqual(lead.extra_data['invalid_email'], 'not-an-email')
        self.assertEqual(lead.extra_data['favourite_colour'], 'blue')

    def test_explicit_source_overrides_platform_source(self):
        result = capture_lead(self.institution, {'name': 'Kiran', 'phone': '9000000001'},
                              platform='manual', source='Walk-in')
        self.assertEqual(result['lead'].source, 'Walk-in')


class CaptureLeadAssignmentTest(TestCase):
    """Test assignment and notifications for new leads"""

    def setUp(self):
        self.institution = Institution.objects.create(name='Sunrise College')
        self.admin = User.objects.create_user(
            email='admin@sunrise.edu', password='testpass123',
            institution=self.institution, role=ROLE_INSTITUTION_ADMIN,
        )
        self.telecaller = User.objects.create_user(
            email='caller@sunrise.edu', password='testpass123', first_name='Divya',
            institution=self.institution, role=ROLE_TELECALLER,
        )

    def test_new_lead_auto_assigned_and_assignee_notified(self):
        result = capture_lead(self.institution, {'name': 'Priya', 'email': 'priya@example.com'})

        self.assertEqual(result['assigned_to'], self.telecaller)
        self.assertEqual(result['lead'].assigned_to, self.telecaller)
        self.assertTrue(
            Notification.objects.filter(user=self.telecaller, action_type='lead_assigned').exists()
        )

    def test_unassigned_lead_notifies_institution_admins(self):
        result = capture_lead(self.institution, {'name': 'Priya', 'email': 'priya@example.com'},
                              auto_assign=False)

        self.assertIsNone(result['assigned_to'])
        self.assertTrue(
            Notification.objects.filter(user=self.admin, action_type='lead_created').exists()
        )

    def test_merged_lead_keeps_assignee(self):
        first = capture_lead(self.institution, {'name': 'Priya', 'email': 'priya@example.com'})
        second = capture_lead(self.institution, {'name': 'Priya', 'email': 'priya@example.com'})

        self.assertFalse(second['created'])
        self.assertEqual(second['assigned_to'], first['assigned_to'])
        self.assertEqual(Notification.objects.filter(action_type='lead_assigned').count(), 1)


class ImportLeadsTest(TestCase):
    """Test spreadsheet import"""

    def setUp(self):
        self.institution = Institution.objects.create(name='Sunrise College')

    def test_csv_import_counts_created_merged_and_failed(self):
        content = (
            'Full Name,Email,Mobile\n'
            'Priya Nair,priya@example.com,9876543210\n'
            'Priya N,PRIYA@example.com,\n'
            'No Contact,,\n'
            ',,\n'
        ).encode('utf-8')
        upload = SimpleUploadedFile('leads.csv', content, content_type='text/csv')

        results = import_leads(self.institution, upload, source='Education Fair')

        self.assertEqual(results['total'], 3)
        self.assertEqual(results['created'], 1)
        self.assertEqual(results['merged'], 1)
        self.assertEqual(results['failed'], 1)
        self.assertTrue(results['errors'][0].startswith('Row 4:'))

        lead = Lead.objects.get()
        self.assertEqual(lead.source, 'Education Fair')
        self.assertEqual(lead.platform, 'import')
        self.assertIsNone(lead.assigned_to)

    def test_csv_with_byte_order_mark(self):
        content = '\ufeffname,phone\nArjun,9123456789\n'.encode('utf-8')
        upload = SimpleUploadedFile('leads.csv', content, content_type='text/csv')

        results = import_leads(self.institution, upload)

        self.assertEqual(results['created'], 1)
        self.assertEqual(Lead.objects.get().name, 'Arjun')


class TelecallingServicesTest(TestCase):
    """Test record_call and schedule_follow_up"""

    def setUp(self):
        self.institution = Institution.objects.create(name='Sunrise College')
        self.telecaller = User.objects.create_user(
            email='caller@sunrise.edu', password='testpass123', first_name='Divya',
            institution=self.institution, role=ROLE_TELECALLER,
        )
        self.lead = Lead.objects.create(
            institution=self.institution, name='Priya Nair', phone='+919876543210',
            assigned_to=self.telecaller,
        )

    def _call(self, outcome, status='completed', duration=120):
        return CallLog.objects.create(
            institution=self.institution, lead=self.lead, telecaller=self.telecaller,
            status=status, outcome=outcome, duration_seconds=duration,
        )

    def test_interested_outcome_moves_lead(self):
        """
        Test: Connected call with outcome 'interested'
        Expected: Lead becomes interested and last_contacted_at is set
        """
        record_call(self._call('interested'), user=self.telecaller)

        self.lead.refresh_from_db()
        self.assertEqual(self.lead.status, Lead.STATUS_INTERESTED)
        self.assertIsNotNone(self.lead.last_contacted_at)
        self.assertTrue(Activity.objects.filter(lead=self.lead, activity_type='call_logged').exists())

    def test_unanswered_call_does_not_update_last_contacted(self):
        record_call(self._call('no_answer', status='no_answer', duration=0), user=self.telecaller)

        self.lead.refresh_from_db()
        self.assertEqual(self.lead.status, Lead.STATUS_NEW)
        self.assertIsNone(self.lead.last_contacted_at)

    def test_outcome_does_not_reopen_closed_lead(self):
        self.lead.status = Lead.STATUS_ENROLLED
        self.lead.save()

        record_call(self._call('not_interested'), user=self.telecaller)

        self.lead.refresh_from_db()
        self.assertEqual(self.lead.status, Lead.STATUS_ENROLLED)

    def test_schedule_follow_up_sets_next_follow_up(self):
        later = timezone.now() + timedelta(days=2)
        sooner = timezone.now() + timedelta(hours=3)

        for when in (later, sooner):
            follow_up = FollowUp.objects.create(
                institution=self.institution, lead=self.lead, assigned_to=self.telecaller,
                created_by=self.telecaller, scheduled_at=when,
            )
            schedule_follow_up(follow_up, user=self.telecaller)

        self.lead.refresh_from_db()
        self.assertEqual(self.lead.next_follow_up, sooner)
        self.assertEqual(self.lead.activities.filter(activity_type='follow_up_scheduled').count(), 2)
