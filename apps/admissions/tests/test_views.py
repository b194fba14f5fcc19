"""
Admissions Views Tests
======================

Test Coverage:
1. Admission team: dashboard, application list/detail, review
2. Admission head: approvals, decisions, reports, offer templates, offers
3. Student / parent portal: applications, offer letter view / accept / decline
4. Role and tenant isolation

Run tests:
    pytest apps/admissions/tests/test_views.py
"""

import json
from decimal import Decimal

from django.test import TestCase, Client
from django.urls import reverse

from apps.accounts.models import (
    User, ROLE_ADMISSION_TEAM, ROLE_ADMISSION_HEAD, ROLE_STUDENT, ROLE_PARENT,
)
from apps.admissions import services
from apps.admissions.models import Application, AdmissionReview, OfferLetter, OfferLetterTemplate
from apps.core.models import Institution
from apps.leads.models import Lead


class AdmissionViewTestCase(TestCase):

    def setUp(self):
        self.client = Client()
        self.institution = Institution.objects.create(name='Sunrise College', settings={'academic_year': '2026-27'})
        self.team_member = User.objects.create_user(
            email='team@sunrise.edu', password='testpass123', first_name='Kiran', last_name='Das',
            institution=self.institution, role=ROLE_ADMISSION_TEAM,
        )
        self.head = User.objects.create_user(
            email='head@sunrise.edu', password='testpass123', first_name='Meera', last_name='Pillai',
            institution=self.institution, role=ROLE_ADMISSION_HEAD,
        )
        self.student = User.objects.create_user(
            email='priya@example.com', password='testpass123', first_name='Priya',
            institution=self.institution, role=ROLE_STUDENT,
        )
        self.parent = User.objects.create_user(
            email='parent@example.com', password='testpass123',
            institution=self.institution, role=ROLE_PARENT,
        )
        self.lead = Lead.objects.create(
            institution=self.institution, name='Priya Nair', email='priya@example.com', phone='+919876543210',
            course_interest='B.Tech Computer Science',
        )
        self.application = services.convert_lead(self.lead, fee_amount=Decimal('150000.00'))
        self.application.parents.add(self.parent)

    def url(self, name, *args):
        return reverse(f'admissions:{name}', args=[self.institution.slug, *args])

    def login(self, user):
        self.client.login(email=user.email, password='testpass123')

    def post_json(self, url, data, method='post'):
        return getattr(self.client, method)(url, data=json.dumps(data), content_type='application/json')

    def approve(self):
        review = services.save_review(self.application, self.team_member, {'recommendation': 'recommend'})
        return services.decide(review, self.head, AdmissionReview.DECISION_APPROVED)

    def send_offer(self):
        self.approve()
        offer = services.generate_offer_letter(self.application, self.head)
        services.distribute_offer_letter(offer, ['email'], self.head)
        return offer


class AdmissionTeamViewTest(AdmissionViewTestCase):

    def setUp(self):
        super().setUp()
        self.login(self.team_member)

    def test_dashboard(self):
        response = self.client.get(self.url('team_dashboard'))

        self.assertEqual(response.status_code, 200)
        stats = response.json()['stats']
        self.assertEqual(stats['total_applications'], 1)
        self.assertEqual(stats['pending_reviews'], 1)
        self.assertEqual(stats['new_this_week'], 1)

    def test_application_list_filters(self):
        other_lead = Lead.objects.create(institution=self.institution, name='Rahul Verma', phone='+919811111111',
                                         course_interest='MBA')
        services.convert_lead(other_lead)

        response = self.client.get(self.url('application_list'), {'course': 'mba'})
        self.assertEqual([a['student_name'] for a in response.json()['results']], ['Rahul Verma'])

        response = self.client.get(self.url('application_list'), {'search': 'priya'})
        self.assertEqual([a['id'] for a in response.json()['results']], [self.application.pk])

    def test_application_list_priority_sort(self):
        other_lead = Lead.objects.create(institution=self.institution, name='Rahul Verma', phone='+919811111111')
        other = services.convert_lead(other_lead)
        other.change_status(Application.STATUS_DOCUMENTS_PENDING)

        response = self.client.get(self.url('application_list'), {'sort': 'priority'})

        results = response.json()['results']
        self.assertEqual(results[0]['id'], other.pk)
        self.assertGreater(results[0]['priority_score'], results[1]['priority_score'])

    def test_application_detail(self):
        response = self.client.get(self.url('application_detail', self.application.pk))

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['application']['fee_amount'], 150000.0)
        self.assertEqual(data['application']['lead']['id'], self.lead.pk)
        self.assertIsNone(data['review'])
        self.assertIsNone(data['offer_letter'])
        self.assertEqual(data['communications']['total'], 0)

    def test_application_update_mirrors_status(self):
        response = self.post_json(self.url('application_detail', self.application.pk),
                                  {'status': 'documents_pending', 'notes': 'Waiting on marksheet'}, method='patch')

        self.assertEqual(response.status_code, 200)
        self.application.refresh_from_db()
        self.assertEqual(self.application.status, Application.STATUS_DOCUMENTS_PENDING)
        self.assertEqual(self.application.notes, 'Waiting on marksheet')
        self.assertEqual(self.application.course, 'B.Tech Computer Science')

    def test_application_update_rejects_decision_status(self):
        response = self.post_json(self.url('application_detail', self.application.pk), {'status': 'admitted'},
                                  method='patch')

        self.assertEqual(response.status_code, 400)
        self.assertIn('status', response.json()['errors'])

    def test_submit_review(self):
        response = self.post_json(self.url('application_review', self.application.pk), {
            'interview_notes': 'Confident, good communication',
            'academic_score': 88,
            'recommendation': 'recommend',
        })

        self.assertEqual(response.status_code, 200)
        review = response.json()['review']
        self.assertEqual(review['status'], AdmissionReview.STATUS_COMPLETED)
        self.assertEqual(review['academic_score'], 88.0)
        self.assertEqual(review['reviewer'], 'Kiran Das')

        self.application.refresh_from_db()
        self.assertEqual(self.application.status, Application.STATUS_UNDER_REVIEW)

    def test_review_score_out_of_range(self):
        response = self.post_json(self.url('application_review', self.application.pk), {'academic_score': 120})

        self.assertEqual(response.status_code, 400)
        self.assertIn('academic_score', response.json()['errors'])

    def test_review_after_decision(self):
        self.approve()
        response = self.post_json(self.url('application_review', self.application.pk), {'interview_notes': 'late'})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['code'], 'INVALID_APPLICATION_STATE')

    def test_team_cannot_decide(self):
        review = services.save_review(self.application, self.team_member, {'recommendation': 'recommend'})
        response = self.post_json(self.url('approval_decide', review.pk), {'decision': 'approved'})
        self.assertEqual(response.status_code, 403)

    def test_other_tenant_application_not_found(self):
        other = Institution.objects.create(name='Lakeside University')
        response = self.client.get(reverse('admissions:application_detail', args=[other.slug, self.application.pk]))
        self.assertEqual(response.status_code, 404)


class AdmissionHeadViewTest(AdmissionViewTestCase):

    def setUp(self):
        super().setUp()
        self.login(self.head)
        self.review = services.save_review(self.application, self.team_member, {'recommendation': 'recommend'})

    def test_dashboard(self):
        response = self.client.get(self.url('head_dashboard'))

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['pending_approvals'], 1)
        self.assertEqual(data['ready_for_decision'][0]['student_name'], 'Priya Nair')

    def test_approval_list(self):
        response = self.client.get(self.url('approval_list'))
        self.assertEqual([r['id'] for r in response.json()['results']], [self.review.pk])

        response = self.client.get(self.url('approval_list'), {'status': 'approved'})
        self.assertEqual(response.json()['results'], [])

        response = self.client.get(self.url('approval_list'), {'status': 'bogus'})
        self.assertEqual(response.status_code, 400)

    def test_decide_approve(self):
        response = self.post_json(self.url('approval_decide', self.review.pk), {'decision': 'approved'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['application']['status'], Application.STATUS_ADMITTED)
        self.assertEqual(response.json()['review']['decided_by'], 'Meera Pillai')

    def test_reject_requires_reason(self):
        response = self.post_json(self.url('approval_decide', self.review.pk), {'decision': 'rejected'})

        self.assertEqual(response.status_code, 400)
        self.assertIn('reason', response.json()['errors'])

    def test_reports(self):
        response = self.client.get(self.url('reports'), {'period': '30d'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['report']['total_applications'], 1)

        response = self.client.get(self.url('reports'), {'period': '2y'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'INVALID_PERIOD')

    def test_offer_template_crud(self):
        response = self.post_json(self.url('offer_template_list'), {
            'name': 'Engineering Offer', 'subject': 'Offer for {{course}}',
            'body': 'Dear {{student_name}}', 'is_active': True, 'is_default': True,
        })
        self.assertEqual(response.status_code, 201)
        template_id = response.json()['template']['id']

        duplicate = self.post_json(self.url('offer_template_list'), {
            'name': 'Engineering Offer', 'subject': 's', 'body': 'b', 'is_active': True,
        })
        self.assertEqual(duplicate.status_code, 400)
        self.assertIn('name', duplicate.json()['errors'])

        response = self.post_json(self.url('offer_template_detail', template_id), {'subject': 'Your offer'},
                                  method='patch')
        self.assertEqual(response.json()['template']['subject'], 'Your offer')
        self.assertEqual(response.json()['template']['body'], 'Dear {{student_name}}')

        response = self.client.delete(self.url('offer_template_detail', template_id))
        self.assertEqual(response.status_code, 200)
        self.assertFalse(OfferLetterTemplate.objects.exists())

    def test_inactive_template_cannot_be_default(self):
        response = self.post_json(self.url('offer_template_list'), {
            'name': 'Old', 'subject': 's', 'body': 'b', 'is_active': False, 'is_default': True,
        })
        self.assertEqual(response.status_code, 400)
        self.assertIn('is_default', response.json()['errors'])

    def test_generate_offer(self):
        services.decide(self.review, self.head, AdmissionReview.DECISION_APPROVED)

        response = self.post_json(self.url('offer_generate'), {'application_id': self.application.pk})

        self.assertEqual(response.status_code, 201)
        offer = response.json()['offer_letter']
        self.assertEqual(offer['status'], OfferLetter.STATUS_DRAFT)
        self.assertIn('Dear Priya Nair', offer['body'])

    def test_generate_offer_not_approved(self):
        response = self.post_json(self.url('offer_generate'), {'application_id': self.application.pk})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['code'], 'OFFER_LETTER_ERROR')

    def test_generate_offer_unknown_application(self):
        response = self.post_json(self.url('offer_generate'), {'application_id': 9999})
        self.assertEqual(response.status_code, 400)
        self.assertIn('application_id', response.json()['errors'])

    def test_bulk_generate(self):
        services.decide(self.review, self.head, AdmissionReview.DECISION_APPROVED)
        other_lead = Lead.objects.create(institution=self.institution, name='Rahul', phone='+919811111111')
        other = services.convert_lead(other_lead)

        response = self.post_json(self.url('offer_bulk_generate'), {'application_ids': [self.application.pk, other.pk]})

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(len(data['generated']), 1)
        self.assertEqual(data['errors'][0]['application_id'], other.pk)

    def test_distribute(self):
        services.decide(self.review, self.head, AdmissionReview.DECISION_APPROVED)
        offer = services.generate_offer_letter(self.application, self.head)

        response = self.post_json(self.url('offer_distribute'), {'offer_letter_id': offer.pk, 'channels': ['email', 'sms']})

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['offer_letter']['status'], OfferLetter.STATUS_SENT)
        self.assertEqual(len(data['queued']), 2)

        response = self.client.get(self.url('offer_list'), {'status': 'sent'})
        self.assertEqual(response.json()['results'][0]['student_name'], 'Priya Nair')

    def test_distribute_unknown_channel(self):
        services.decide(self.review, self.head, AdmissionReview.DECISION_APPROVED)
        offer = services.generate_offer_letter(self.application, self.head)

        response = self.post_json(self.url('offer_distribute'), {'offer_letter_id': offer.pk, 'channels': ['pigeon']})
        self.assertEqual(response.status_code, 400)
        self.assertIn('channels', response.json()['errors'])


class StudentPortalViewTest(AdmissionViewTestCase):

    def test_student_sees_own_applications(self):
        self.login(self.student)
        response = self.client.get(self.url('student_application_list'))

        self.assertEqual(response.status_code, 200)
        self.assertEqual([a['id'] for a in response.json()['applications']], [self.application.pk])

    def test_parent_sees_linked_application(self):
        self.login(self.parent)
        response = self.client.get(self.url('student_application_detail', self.application.pk))

        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.json()['offer_letter'])

    def test_other_student_gets_404(self):
        User.objects.create_user(email='someone@example.com', password='testpass123',
                                 institution=self.institution, role=ROLE_STUDENT)
        self.client.login(email='someone@example.com', password='testpass123')

        response = self.client.get(self.url('student_application_detail', self.application.pk))
        self.assertEqual(response.status_code, 404)

    def test_staff_cannot_use_portal(self):
        self.login(self.team_member)
        response = self.client.get(self.url('student_application_list'))
        self.assertEqual(response.status_code, 403)

    def test_draft_offer_hidden(self):
        self.approve()
        services.generate_offer_letter(self.application, self.head)
        self.login(self.student)

        response = self.client.get(self.url('student_offer', self.application.pk))
        self.assertEqual(response.status_code, 404)

    def test_student_view_marks_viewed(self):
        offer = self.send_offer()
        self.login(self.student)

        response = self.client.get(self.url('student_offer', self.application.pk))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['offer_letter']['status'], OfferLetter.STATUS_VIEWED)
        offer.refresh_from_db()
        self.assertIsNotNone(offer.viewed_at)

    def test_parent_view_does_not_mark_viewed(self):
        offer = self.send_offer()
        self.login(self.parent)

        response = self.client.get(self.url('student_offer', self.application.pk))

        self.assertEqual(response.status_code, 200)
        offer.refresh_from_db()
        self.assertEqual(offer.status, OfferLetter.STATUS_SENT)

    def test_accept(self):
        self.send_offer()
        self.login(self.student)

        response = self.client.post(self.url('student_offer_accept', self.application.pk))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['application_status'], Application.STATUS_ENROLLED)

        again = self.client.post(self.url('student_offer_accept', self.application.pk))
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.json()['code'], 'OFFER_LETTER_CLOSED')

    def test_decline(self):
        self.send_offer()
        self.login(self.student)

        response = self.post_json(self.url('student_offer_decline', self.application.pk),
                                  {'reason': 'Joining another college'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['offer_letter']['status'], OfferLetter.STATUS_DECLINED)
        self.application.refresh_from_db()
        self.assertEqual(self.application.status, Application.STATUS_ADMITTED)
