import os

from django.conf import settings
from django.db import models
from django.utils import timezone

from apps.core.models import Institution


def document_upload_path(instance, filename):
    return f'documents/{instance.institution_id}/{timezone.now():%Y/%m}/{filename}'


class DocumentType(models.Model):
    """A kind of document an institution asks applicants for (marksheet, ID proof...)"""

    CATEGORY_CHOICES = [
        ('general', 'General'),
        ('academic', 'Academic'),
        ('identity', 'Identity'),
        ('financial', 'Financial'),
    ]

    institution = models.ForeignKey(Institution, on_delete=models.CASCADE, related_name='document_types')
    name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES, default='general')
    is_required = models.BooleanField(default=True)
    max_file_size = models.PositiveIntegerField(default=10 * 1024 * 1024, help_text='Bytes')
    allowed_formats = models.JSONField(default=list, blank=True, help_text='File extensions ("pdf") or MIME types; empty allows every supported type')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['category', 'name']
        constraints = [
            models.UniqueConstraint(fields=['institution', 'name'], name='unique_document_type_name'),
        ]

    def __str__(self):
        return self.name

    def accepts(self, filename, mime_type):
        if not self.allowed_formats:
            return True
        extension = os.path.splitext(filename)[1].lower().lstrip('.')
        allowed = {f.lower().lstrip('.') for f in self.allowed_formats}
        return extension in allowed or (mime_type or '').lower() in allowed

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'category': self.category,
            'is_required': self.is_required,
            'max_file_size': self.max_file_size,
            'allowed_formats': self.allowed_formats,
            'is_active': self.is_active,
        }


class Document(models.Model):

    STATUS_PENDING = 'pending'
    STATUS_VERIFIED = 'verified'
    STATUS_REJECTED = 'rejected'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_VERIFIED, 'Verified'),
        (STATUS_REJECTED, 'Rejected'),
    ]

    institution = models.ForeignKey(Institution, on_delete=models.CASCADE, related_name='documents')
    application = models.ForeignKey('admissions.Application', on_delete=models.CASCADE, null=True, blank=True, related_name='documents')
    document_type = models.ForeignKey(DocumentType, on_delete=models.SET_NULL, null=True, blank=True, related_name='documents')
    uploaded_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, related_name='uploaded_documents')

    file = models.FileField(upload_to=document_upload_path)
    original_name = models.CharField(max_length=255)
    mime_type = models.CharField(max_length=100)
    file_size = models.PositiveIntegerField(help_text='Bytes')
    description = models.TextField(blank=True)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    verifier = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='verified_documents')
    comments = models.TextField(blank=True)
    rejection_reason = models.TextField(blank=True)
    verified_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['institution', 'status']),
            models.Index(fields=['application', 'status']),
        ]

    def __str__(self):
        return f"{self.original_name} ({self.get_status_display()})"

    @property
    def reviewed_at(self):
        return self.verified_at or self.rejected_at

    def to_dict(self):
        application = self.application
        return {
            'id': self.id,
            'original_name': self.original_name,
            'url': self.file.url if self.file else None,
            'mime_type': self.mime_type,
            'file_size': self.file_size,
            'description': self.description,
            'status': self.status,
            'document_type': self.document_type.to_dict() if self.document_type_id else None,
            'application': {
                'id': application.id,
                'student_name': application.student_name,
                'course': application.course,
            } if application else None,
            'uploaded_by': self.uploaded_by.get_full_name() if self.uploaded_by_id else None,
            'verifier': self.verifier.get_full_name() if self.verifier_id else None,
            'comments': self.comments,
            'rejection_reason': self.rejection_reason,
            'verified_at': self.verified_at.isoformat() if self.verified_at else None,
            'rejected_at': self.rejected_at.isoformat() if self.rejected_at else None,
            'created_at': self.created_at.isoformat(),
        }
