import logging

from django.db.models import Q
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from apps.accounts.decorators import tenant_required, role_required, json_view
from apps.accounts.models import (
    ROLE_INSTITUTION_ADMIN, ROLE_DOCUMENT_VERIFIER, ROLE_ADMISSION_TEAM, ROLE_ADMISSION_HEAD,
    ROLE_STUDENT, ROLE_PARENT,
)
from apps.admissions.models import Application
from apps.core.utils import parse_json_body, json_error, form_errors, paginate
from . import services
from .forms import DocumentUploadForm, DocumentTypeForm, VerifyDocumentForm, BatchVerifyForm
from .models import Document, DocumentType
from .services import DocumentValidationError

logger = logging.getLogger(__name__)

VERIFIERS = (ROLE_DOCUMENT_VERIFIER, ROLE_INSTITUTION_ADMIN)
DOCUMENT_STAFF = (ROLE_DOCUMENT_VERIFIER, ROLE_INSTITUTION_ADMIN, ROLE_ADMISSION_TEAM, ROLE_ADMISSION_HEAD)
APPLICANTS = (ROLE_STUDENT, ROLE_PARENT)


def _documents(tenant):
    return Document.objects.filter(institution=tenant).select_related('document_type', 'application', 'uploaded_by', 'verifier')


def _is_applicant(user):
    return user.role in APPLICANTS


@require_POST
@tenant_required
@role_required(*(DOCUMENT_STAFF + APPLICANTS))
def document_upload_view(request, tenant):
    form = DocumentUploadForm(request.POST, request.FILES, institution=tenant)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    application = form.cleaned_data['application_id']
    if _is_applicant(request.user):
        if application is None or not application.is_visible_to(request.user):
            return json_error('Application not found', 404, 'NOT_FOUND')

    try:
        document = services.upload_document(
            tenant,
            form.cleaned_data['file'],
            request.user,
            application=application,
            document_type=form.cleaned_data['document_type_id'],
            description=form.cleaned_data['description'],
        )
    except DocumentValidationError as e:
        return json_error(e, 400, e.code)

    return JsonResponse({'success': True, 'document': document.to_dict()}, status=201)


@require_GET
@tenant_required
@role_required(*DOCUMENT_STAFF)
def document_queue_view(request, tenant):
    documents = _documents(tenant).filter(status=request.GET.get('status') or Document.STATUS_PENDING)

    application_id = request.GET.get('application_id')
    if application_id:
        documents = documents.filter(application_id=application_id)
    document_type = request.GET.get('document_type')
    if document_type:
        documents = documents.filter(document_type_id=document_type)
    category = request.GET.get('category')
    if category:
        documents = documents.filter(document_type__category=category)
    search = request.GET.get('search', '').strip()
    if search:
        documents = documents.filter(
            Q(original_name__icontains=search) |
            Q(application__student_name__icontains=search) |
            Q(application__student_email__icontains=search)
        )

    # Oldest first so nothing waits forever
    documents = documents.order_by('created_at')
    return JsonResponse({'success': True, **paginate(request, documents, lambda d: d.to_dict())})


@require_http_methods(['GET', 'DELETE'])
@tenant_required
@role_required(*(DOCUMENT_STAFF + APPLICANTS))
def document_detail_view(request, tenant, pk):
    document = get_object_or_404(_documents(tenant), pk=pk)

    if _is_applicant(request.user):
        owns = document.uploaded_by_id == request.user.pk or (
            document.application is not None and document.application.is_visible_to(request.user)
        )
        if not owns:
            return json_error('Document not found', 404, 'NOT_FOUND')

    if request.method == 'GET':
        return JsonResponse({'success': True, 'document': document.to_dict()})

    if _is_applicant(request.user) and document.status != Document.STATUS_PENDING:
        return json_error('Reviewed documents cannot be deleted', 409, 'DOCUMENT_REVIEWED')
    if request.user.role in (ROLE_ADMISSION_TEAM, ROLE_ADMISSION_HEAD):
        return json_error('You do not have permission to perform this action', 403, 'FORBIDDEN')

    document.file.delete(save=False)
    document.delete()
    logger.info("Document %s deleted by %s", pk, request.user.email)
    return JsonResponse({'success': True})


@require_POST
@tenant_required
@role_required(*VERIFIERS)
@json_view
def document_verify_view(request, tenant, pk):
    document = get_object_or_404(_documents(tenant), pk=pk)
    form = VerifyDocumentForm(parse_json_body(request))
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    data = form.cleaned_data
    try:
        services.verify_document(document, request.user, data['status'], data['comments'], data['rejection_reason'])
    except DocumentValidationError as e:
        return json_error(e, 400, e.code)
    return JsonResponse({'success': True, 'document': document.to_dict()})


@require_POST
@tenant_required
@role_required(*VERIFIERS)
@json_view
def document_batch_verify_view(request, tenant):
    form = BatchVerifyForm(parse_json_body(request))
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))

    data = form.cleaned_data
    documents = list(_documents(tenant).filter(pk__in=data['document_ids']))
    try:
        completed = services.verify_documents(documents, request.user, data['status'], data['comments'], data['rejection_reason'])
    except DocumentValidationError as e:
        return json_error(e, 400, e.code)

    found = {d.pk for d in documents}
    return JsonResponse({
        'success': True,
        'updated_count': len(documents),
        'document_ids': sorted(found),
        'not_found': [pk for pk in data['document_ids'] if pk not in found],
        'completed_application_ids': [a.pk for a in completed],
    })


@require_http_methods(['GET', 'POST'])
@tenant_required
@role_required(*(DOCUMENT_STAFF + APPLICANTS))
@json_view
def document_type_list_view(request, tenant):
    if request.method == 'GET':
        types = DocumentType.objects.filter(institution=tenant)
        if _is_applicant(request.user) or request.GET.get('active_only') in ('1', 'true'):
            types = types.filter(is_active=True)
        return JsonResponse({'success': True, 'document_types': [t.to_dict() for t in types]})

    if request.user.role not in VERIFIERS and not request.user.is_super_admin():
        return json_error('You do not have permission to perform this action', 403, 'FORBIDDEN')

    form = DocumentTypeForm(parse_json_body(request), institution=tenant)
    if not form.is_valid():
        return json_error('Please correct the errors below.', 400, 'VALIDATION_ERROR', errors=form_errors(form))
    document_type = form.save()
    return JsonResponse({'success': True, 'document_type': document_type.to_dict()}, status=201)


@require_GET
@tenant_required
@role_required(*VERIFIERS)
def verifier_dashboard_view(request, tenant):
    return JsonResponse({'success': True, 'dashboard': services.get_verifier_dashboard(tenant, request.user)})


@require_GET
@tenant_required
@role_required(*VERIFIERS)
def verifier_history_view(request, tenant):
    documents = _documents(tenant).exclude(status=Document.STATUS_PENDING)
    if request.user.role == ROLE_DOCUMENT_VERIFIER or request.GET.get('mine') in ('1', 'true'):
        documents = documents.filter(verifier=request.user)

    status = request.GET.get('status')
    if status:
        documents = documents.filter(status=status)

    documents = documents.order_by('-updated_at')
    return JsonResponse({'success': True, **paginate(request, documents, lambda d: d.to_dict())})


@require_GET
@tenant_required
@role_required(*(APPLICANTS + DOCUMENT_STAFF))
def student_documents_view(request, tenant, application_id):
    application = get_object_or_404(Application, pk=application_id, institution=tenant)
    if _is_applicant(request.user) and not application.is_visible_to(request.user):
        return json_error('Application not found', 404, 'NOT_FOUND')

    documents = _documents(tenant).filter(application=application)
    return JsonResponse({
        'success': True,
        'documents': [d.to_dict() for d in documents],
        'required': services.required_documents_status(application),
        'document_types': [t.to_dict() for t in DocumentType.objects.filter(institution=tenant, is_active=True)],
    })
