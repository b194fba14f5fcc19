"""
Document upload and verification

Uploads are checked against the global size / MIME limits and the
document type's own limits. Verification notifies the uploader and, once
every required document type of an application is verified, the
admission team.
"""

import logging
from datetime import timedelta

from django.conf import settings
from django.db.models import Count, Q
from django.template.defaultfilters import filesizeformat
from django.utils import timezone

from apps.accounts.models import ROLE_ADMISSION_TEAM, ROLE_DOCUMENT_VERIFIER
from apps.leads.models import Lead
from apps.notifications.models import Notification
from apps.notifications.services import send_notification, send_role_notification
from .models import Document, DocumentType

logger = logging.getLogger(__name__)

# Lead statuses that an upload moves forward to documents_submitted
LEAD_STATUSES_BEFORE_DOCUMENTS = Lead.ACTIVE_STATUSES + [Lead.STATUS_APPLICATION_STARTED]


class DocumentValidationError(Exception):
    """Raised when an upload or a verification request is not acceptable"""

    def __init__(self, message, code='VALIDATION_ERROR'):
        self.code = code
        super().__init__(message)


# UPLOAD
def validate_upload(uploaded_file, document_type=None):
    """
    Raises:
        DocumentValidationError: File too large or of a disallowed type
    """
    max_size = settings.DOCUMENT_MAX_UPLOAD_SIZE
    if document_type is not None:
        max_size = min(max_size, document_type.max_file_size)

    if uploaded_file.size > max_size:
        raise DocumentValidationError(f'File is too large (maximum {filesizeformat(max_size)})', 'FILE_TOO_LARGE')

    mime_type = (uploaded_file.content_type or '').lower()
    if mime_type not in settings.DOCUMENT_ALLOWED_MIME_TYPES:
        raise DocumentValidationError(
            'Invalid file type. Only images, documents, and text files are allowed.', 'INVALID_FILE_TYPE'
        )

    if document_type is not None and not document_type.accepts(uploaded_file.name, mime_type):
        raise DocumentValidationError(
            f'{document_type.name} accepts only: {", ".join(document_type.allowed_formats)}', 'INVALID_FILE_TYPE'
        )


def upload_document(institution, uploaded_file, user, application=None, document_type=None, description=''):
    validate_upload(uploaded_file, document_type)

    document = Document.objects.create(
        institution=institution,
        application=application,
        document_type=document_type,
        uploaded_by=user,
        file=uploaded_file,
        original_name=uploaded_file.name[:255],
        mime_type=uploaded_file.content_type,
        file_size=uploaded_file.size,
        description=description,
    )

    if application is not None:
        lead = application.lead
        if lead is not None and lead.status in LEAD_STATUSES_BEFORE_DOCUMENTS:
            lead.change_status(Lead.STATUS_DOCUMENTS_SUBMITTED, user=user, note=document.original_name)

        send_role_notification(
            institution,
            [ROLE_DOCUMENT_VERIFIER],
            'New document to verify',
            f'{application.student_name} uploaded {document_type.name if document_type else document.original_name}',
            category='document',
            lead=lead,
            action_type='document_uploaded',
            data={'document_id': document.pk, 'application_id': application.pk},
            deliver_externally=False,
        )

    logger.info("Document %s uploaded by %s (%s, %d bytes)", document.pk, user.email, document.mime_type, document.file_size)
    return document


# VERIFICATION
def required_documents_status(application):
    required = DocumentType.objects.filter(institution=application.institution, is_required=True, is_active=True)
    verified_type_ids = set(
        application.documents.filter(status=Document.STATUS_VERIFIED).values_list('document_type_id', flat=True)
    )
    missing = [t for t in required if t.pk not in verified_type_ids]
    return {
        'required': required.count(),
        'verified': len(required) - len(missing),
        'missing': [t.name for t in missing],
        'complete': not missing,
    }


def _notify_result(document):
    if not document.uploaded_by_id:
        return
    if document.status == Document.STATUS_VERIFIED:
        title, notification_type = 'Document verified', Notification.TYPE_SUCCESS
        message = f'{document.original_name} has been verified.'
    else:
        title, notification_type = 'Document rejected', Notification.TYPE_ERROR
        message = f'{document.original_name} was rejected: {document.rejection_reason}'

    send_notification(
        document.uploaded_by,
        title,
        message,
        notification_type=notification_type,
        category='document',
        institution=document.institution,
        action_type='document_verification',
        data={'document_id': document.pk, 'application_id': document.application_id, 'status': document.status},
    )


def _notify_complete(application):
    send_role_notification(
        application.institution,
        [ROLE_ADMISSION_TEAM],
        'All required documents verified',
        f'{application.student_name} ({application.course or "no course"}) is ready for review',
        notification_type=Notification.TYPE_SUCCESS,
        category='document',
        lead=application.lead,
        action_type='documents_complete',
        data={'application_id': application.pk},
    )
    logger.info("All required documents verified for application %s", application.pk)


def _apply_verification(document, user, status, comments, rejection_reason):
    now = timezone.now()
    document.status = status
    document.verifier = user
    document.comments = comments or ''
    if status == Document.STATUS_VERIFIED:
        document.verified_at, document.rejected_at, document.rejection_reason = now, None, ''
    else:
        document.rejected_at, document.verified_at, document.rejection_reason = now, None, rejection_reason
    document.save(update_fields=['status', 'verifier', 'comments', 'verified_at', 'rejected_at', 'rejection_reason', 'updated_at'])


def _check_status(status, rejection_reason):
    if status not in (Document.STATUS_VERIFIED, Document.STATUS_REJECTED):
        raise DocumentValidationError('Status must be verified or rejected')
    if status == Document.STATUS_REJECTED and not (rejection_reason or '').strip():
        raise DocumentValidationError('A rejection reason is required')


def verify_documents(documents, user, status, comments='', rejection_reason=''):
    """
    Verify or reject documents

    Returns:
        list: Applications whose required documents became complete

    Raises:
        DocumentValidationError: Unknown status or rejection without reason
    """
    _check_status(status, rejection_reason)

    applications = {}
    was_complete = {}
    for document in documents:
        application = document.application
        if application is not None and application.pk not in was_complete:
            was_complete[application.pk] = required_documents_status(application)['complete']
            applications[application.pk] = application

        _apply_verification(document, user, status, comments, rejection_reason)
        _notify_result(document)

    completed = []
    for pk, application in applications.items():
        if not was_complete[pk] and required_documents_status(application)['complete']:
            _notify_complete(application)
            completed.append(application)
    return completed


def verify_document(document, user, status, comments='', rejection_reason=''):
    verify_documents([document], user, status, comments, rejection_reason)
    return document


# REPORTING
def get_verifier_dashboard(institution, user):
    today = timezone.localtime().replace(hour=0, minute=0, second=0, microsecond=0)
    week_ago = timezone.now() - timedelta(days=7)
    documents = Document.objects.filter(institution=institution)

    mine = documents.filter(verifier=user)
    return {
        'pending': documents.filter(status=Document.STATUS_PENDING).count(),
        'verified_today': documents.filter(verified_at__gte=today).count(),
        'rejected_today': documents.filter(rejected_at__gte=today).count(),
        'pending_by_category': dict(
            documents.filter(status=Document.STATUS_PENDING, document_type__isnull=False)
            .values_list('document_type__category').annotate(count=Count('id'))
        ),
        'oldest_pending': [
            d.to_dict() for d in documents.filter(status=Document.STATUS_PENDING)
            .select_related('document_type', 'application', 'uploaded_by').order_by('created_at')[:5]
        ],
        'my_stats': mine.aggregate(
            verified=Count('id', filter=Q(status=Document.STATUS_VERIFIED)),
            rejected=Count('id', filter=Q(status=Document.STATUS_REJECTED)),
            last_7_days=Count('id', filter=Q(updated_at__gte=week_ago)),
        ),
    }
