"""
Tests for lead periodic tasks

Test Coverage:
1. mark_overdue_follow_ups
2. send_follow_up_reminders (window, once per follow-up)

Run tests:
    pytest apps/leads/tests/test_tasks.py
"""

from datetime import timedelta

from django.test import TestCase
from django.utils import timezone

from apps.accounts.models import User, ROLE_TELECALLER
from apps.core.models import Institution
from apps.leads.models import FollowUp, Lead
from apps.leads.tasks import mark_overdue_follow_ups, send_follow_up_reminders
from apps.notifications.models import Notification


class FollowUpTasksTest(TestCase):

    def setUp(self):
        self.institution = Institution.objects.create(name='Sunrise College')
        self.telecaller = User.objects.create_user(
            email='caller@sunrise.edu', password='testpass123', first_name='Divya', last_name='Iyer',
            institution=self.institution, role=ROLE_TELECALLER,
        )
        self.lead = Lead.objects.create(institution=self.institution, name='Priya Nair', phone='+919876543210',
                                        assigned_to=self.telecaller)

    def _follow_up(self, delta, **kwargs):
        return FollowUp.objects.create(
            institution=self.institution, lead=self.lead, assigned_to=self.telecaller,
            scheduled_at=timezone.now() + delta, **kwargs
        )

    def test_mark_overdue(self):
        past = self._follow_up(timedelta(hours=-1))
        future = self._follow_up(timedelta(hours=1))
        done = self._follow_up(timedelta(hours=-3), status=FollowUp.STATUS_COMPLETED)

        result = mark_overdue_follow_ups()

        self.assertEqual(result, '1 follow-ups marked overdue.')
        past.refresh_from_db()
        future.refresh_from_db()
        done.refresh_from_db()
        self.assertEqual(past.status, FollowUp.STATUS_OVERDUE)
        self.assertEqual(future.status, FollowUp.STATUS_PENDING)
        self.assertEqual(done.status, FollowUp.STATUS_COMPLETED)

    def test_reminders_sent_once_within_window(self):
        """
        Test: One follow-up due in 10 minutes, one in 3 hours
        Expected: Only the first is reminded, and only on the first run
        """
        soon = self._follow_up(timedelta(minutes=10), priority='high')
        later = self._follow_up(timedelta(hours=3))

        self.assertEqual(send_follow_up_reminders(), '1 follow-up reminders sent.')
        self.assertEqual(send_follow_up_reminders(), '0 follow-up reminders sent.')

        soon.refresh_from_db()
        later.refresh_from_db()
        self.assertTrue(soon.reminder_sent)
        self.assertFalse(later.reminder_sent)

        notification = Notification.objects.get(user=self.telecaller)
        self.assertEqual(notification.title, 'Follow-up due soon')
        self.assertEqual(notification.priority, 'high')
        self.assertTrue(self.lead.activities.filter(activity_type='follow_up_reminder').exists())

    def test_overdue_reminder(self):
        self._follow_up(timedelta(hours=-2), status=FollowUp.STATUS_OVERDUE)

        send_follow_up_reminders()

        notification = Notification.objects.get(user=self.telecaller)
        self.assertEqual(notification.title, 'Overdue follow-up')
        self.assertEqual(notification.notification_type, 'warning')

    def test_unassigned_follow_ups_skipped(self):
        FollowUp.objects.create(institution=self.institution, lead=self.lead, assigned_to=None,
                                scheduled_at=timezone.now() + timedelta(minutes=5))

        self.assertEqual(send_follow_up_reminders(), '0 follow-up reminders sent.')
