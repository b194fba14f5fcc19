"""
Document Service Tests

Test Coverage:
1. Upload validation (size, MIME type, document type formats)
2. Upload side effects (lead status, verifier notification)
3. Verification / rejection and the required-documents check

Run tests:
    pytest apps/documents/tests/test_services.py
"""

import shutil
import tempfile

from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import TestCase, override_settings

from apps.accounts.models import User, ROLE_ADMISSION_TEAM, ROLE_DOCUMENT_VERIFIER, ROLE_STUDENT
from apps.admissions.services import convert_lead
from apps.core.models import Institution
from apps.documents import services
from apps.documents.models import Document, DocumentType
from apps.documents.services import DocumentValidationError
from apps.leads.models import Lead
from apps.notifications.models import Notification

MEDIA_ROOT = tempfile.mkdtemp()


def pdf_file(name='marksheet.pdf', size=1024):
    return SimpleUploadedFile(name, b'%PDF-1.4' + b'0' * size, content_type='application/pdf')


@override_settings(MEDIA_ROOT=MEDIA_ROOT)
class DocumentServiceTestCase(TestCase):

    @classmethod
    def tearDownClass(cls):
        shutil.rmtree(MEDIA_ROOT, ignore_errors=True)
        super().tearDownClass()

    def setUp(self):
        self.institution = Institution.objects.create(name='Sunrise College')
        self.verifier = User.objects.create_user(
            email='verifier@sunrise.edu', password='testpass123', first_name='Anita', last_name='Joseph',
            institution=self.institution, role=ROLE_DOCUMENT_VERIFIER,
        )
        self.team_member = User.objects.create_user(
            email='team@sunrise.edu', password='testpass123',
            institution=self.institution, role=ROLE_ADMISSION_TEAM,
        )
        self.student = User.objects.create_user(
            email='priya@example.com', password='testpass123', first_name='Priya',
            institution=self.institution, role=ROLE_STUDENT,
        )
        self.lead = Lead.objects.create(institution=self.institution, name='Priya Nair', email='priya@example.com',
                                        phone='+919876543210', course_interest='BBA')
        self.application = convert_lead(self.lead)
        self.marksheet = DocumentType.objects.create(institution=self.institution, name='Class 12 Marksheet',
                                                     category='academic', allowed_formats=['pdf'])
        self.id_proof = DocumentType.objects.create(institution=self.institution, name='ID Proof', category='identity')

    def upload(self, uploaded_file=None, document_type=None):
        return services.upload_document(
            self.institution, uploaded_file or pdf_file(), self.student,
            application=self.application, document_type=document_type or self.marksheet,
        )


class UploadValidationTest(DocumentServiceTestCase):

    def test_valid_upload(self):
        document = self.upload()

        self.assertEqual(document.status, Document.STATUS_PENDING)
        self.assertEqual(document.original_name, 'marksheet.pdf')
        self.assertEqual(document.mime_type, 'application/pdf')
        self.assertEqual(document.file_size, 1032)
        self.assertTrue(document.file.name.startswith(f'documents/{self.institution.pk}/'))

    def test_file_too_large_for_type(self):
        self.marksheet.max_file_size = 1024
        self.marksheet.save()

        with self.assertRaises(DocumentValidationError) as ctx:
            self.upload(pdf_file(size=4096))
        self.assertEqual(ctx.exception.code, 'FILE_TOO_LARGE')

    @override_settings(DOCUMENT_MAX_UPLOAD_SIZE=2048)
    def test_global_limit_applies(self):
        with self.assertRaises(DocumentValidationError) as ctx:
            self.upload(pdf_file(size=4096), document_type=self.id_proof)
        self.assertEqual(ctx.exception.code, 'FILE_TOO_LARGE')

    def test_disallowed_mime_type(self):
        script = SimpleUploadedFile('run.sh', b'echo hi', content_type='application/x-sh')

        with self.assertRaises(DocumentValidationError) as ctx:
            self.upload(script, document_type=self.id_proof)
        self.assertEqual(ctx.exception.code, 'INVALID_FILE_TYPE')

    def test_document_type_formats(self):
        photo = SimpleUploadedFile('marksheet.jpg', b'\xff\xd8\xff', content_type='image/jpeg')

        with self.assertRaisesMessage(DocumentValidationError, 'Class 12 Marksheet accepts only: pdf'):
            self.upload(photo)

        # No format list: any supported type is accepted
        self.assertEqual(self.upload(photo, document_type=self.id_proof).mime_type, 'image/jpeg')

    def test_accepts_mime_type_entries(self):
        self.marksheet.allowed_formats = ['image/png']
        self.assertTrue(self.marksheet.accepts('scan.PNG', 'image/png'))
        self.assertTrue(self.marksheet.accepts('scan', 'image/png'))
        self.assertFalse(self.marksheet.accepts('scan.pdf', 'application/pdf'))


class UploadEffectsTest(DocumentServiceTestCase):

    def test_lead_moves_to_documents_submitted(self):
        self.upload()

        self.lead.refresh_from_db()
        self.assertEqual(self.lead.status, Lead.STATUS_DOCUMENTS_SUBMITTED)

    def test_verifiers_notified(self):
        document = self.upload()

        notification = Notification.objects.get(user=self.verifier)
        self.assertEqual(notification.action_type, 'document_uploaded')
        self.assertEqual(notification.data['document_id'], document.pk)

    def test_lead_further_along_is_untouched(self):
        self.lead.change_status(Lead.STATUS_ADMITTED)
        self.upload()

        self.lead.refresh_from_db()
        self.assertEqual(self.lead.status, Lead.STATUS_ADMITTED)


class VerificationTest(DocumentServiceTestCase):

    def test_verify(self):
        document = self.upload()

        services.verify_document(document, self.verifier, Document.STATUS_VERIFIED, comments='Clear scan')

        document.refresh_from_db()
        self.assertEqual(document.status, Document.STATUS_VERIFIED)
        self.assertEqual(document.verifier, self.verifier)
        self.assertIsNotNone(document.verified_at)
        self.assertEqual(document.reviewed_at, document.verified_at)

        notification = Notification.objects.get(user=self.student)
        self.assertEqual(notification.title, 'Document verified')
        self.assertEqual(notification.notification_type, Notification.TYPE_SUCCESS)

    def test_reject_requires_reason(self):
        document = self.upload()
        with self.assertRaisesMessage(DocumentValidationError, 'rejection reason is required'):
            services.verify_document(document, self.verifier, Document.STATUS_REJECTED)

    def test_unknown_status(self):
        with self.assertRaises(DocumentValidationError):
            services.verify_documents([], self.verifier, Document.STATUS_PENDING)

    def test_reject_then_verify_clears_reason(self):
        document = self.upload()
        services.verify_document(document, self.verifier, Document.STATUS_REJECTED, rejection_reason='Blurry')
        self.assertEqual(document.rejection_reason, 'Blurry')
        self.assertIsNotNone(document.rejected_at)

        services.verify_document(document, self.verifier, Document.STATUS_VERIFIED)
        self.assertEqual(document.rejection_reason, '')
        self.assertIsNone(document.rejected_at)

    def test_required_documents_status(self):
        status = services.required_documents_status(self.application)
        self.assertEqual(status, {
            'required': 2, 'verified': 0, 'missing': ['Class 12 Marksheet', 'ID Proof'], 'complete': False,
        })

    def test_admission_team_notified_once_complete(self):
        """
        Test: Both required types verified in one batch
        Expected: Application reported complete and admission team notified once
        """
        first = self.upload()
        second = self.upload(document_type=self.id_proof)

        completed = services.verify_documents([first, second], self.verifier, Document.STATUS_VERIFIED)

        self.assertEqual(completed, [self.application])
        self.assertEqual(
            Notification.objects.filter(user=self.team_member, action_type='documents_complete').count(), 1
        )

        # Verifying again does not repeat the notification
        self.assertEqual(services.verify_documents([first], self.verifier, Document.STATUS_VERIFIED), [])

    def test_optional_types_do_not_block_completion(self):
        self.id_proof.is_required = False
        self.id_proof.save()
        document = self.upload()

        completed = services.verify_documents([document], self.verifier, Document.STATUS_VERIFIED)
        self.assertEqual(completed, [self.application])

    def test_verifier_dashboard(self):
        first = self.upload()
        self.upload(document_type=self.id_proof)
        services.verify_document(first, self.verifier, Document.STATUS_VERIFIED)

        dashboard = services.get_verifier_dashboard(self.institution, self.verifier)

        self.assertEqual(dashboard['pending'], 1)
        self.assertEqual(dashboard['verified_today'], 1)
        self.assertEqual(dashboard['pending_by_category'], {'identity': 1})
        self.assertEqual(dashboard['my_stats']['verified'], 1)
