from django import forms
from django.core.exceptions import ValidationError

from apps.admissions.models import Application
from .models import Document, DocumentType


class DocumentUploadForm(forms.Form):
    file = forms.FileField(error_messages={'required': 'No file provided'})
    application_id = forms.IntegerField(required=False)
    document_type_id = forms.IntegerField(required=False)
    description = forms.CharField(required=False, max_length=1000)

    def __init__(self, *args, institution=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.institution = institution

    def clean_application_id(self):
        pk = self.cleaned_data.get('application_id')
        if not pk:
            return None
        try:
            return Application.objects.select_related('lead').get(pk=pk, institution=self.institution)
        except Application.DoesNotExist:
            raise ValidationError('Application not found.')

    def clean_document_type_id(self):
        pk = self.cleaned_data.get('document_type_id')
        if not pk:
            return None
        try:
            return DocumentType.objects.get(pk=pk, institution=self.institution, is_active=True)
        except DocumentType.DoesNotExist:
            raise ValidationError('Document type not found.')


class DocumentTypeForm(forms.ModelForm):

    class Meta:
        model = DocumentType
        fields = ['name', 'description', 'category', 'is_required', 'max_file_size', 'allowed_formats', 'is_active']

    def __init__(self, *args, institution=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.institution = institution
        for name in ('category', 'is_required', 'max_file_size', 'allowed_formats', 'is_active'):
            self.fields[name].required = False

    def clean_name(self):
        name = self.cleaned_data.get('name')
        duplicates = DocumentType.objects.filter(institution=self.institution, name__iexact=name)
        if self.instance.pk:
            duplicates = duplicates.exclude(pk=self.instance.pk)
        if duplicates.exists():
            raise ValidationError('A document type with this name already exists.')
        return name

    def clean_category(self):
        return self.cleaned_data.get('category') or 'general'

    def clean_is_required(self):
        value = self.data.get('is_required')
        return True if value is None else self.cleaned_data.get('is_required')

    def clean_is_active(self):
        value = self.data.get('is_active')
        return True if value is None else self.cleaned_data.get('is_active')

    def clean_max_file_size(self):
        size = self.cleaned_data.get('max_file_size') or 10 * 1024 * 1024
        if not 1024 <= size <= 50 * 1024 * 1024:
            raise ValidationError('Maximum file size must be between 1 KB and 50 MB.')
        return size

    def clean_allowed_formats(self):
        formats = self.cleaned_data.get('allowed_formats') or []
        if not isinstance(formats, list) or not all(isinstance(f, str) for f in formats):
            raise ValidationError('Allowed formats must be a list of strings.')
        return formats

    def save(self, commit=True):
        document_type = super().save(commit=False)
        document_type.institution = self.institution
        if commit:
            document_type.save()
        return document_type


class VerifyDocumentForm(forms.Form):
    status = forms.ChoiceField(choices=[(Document.STATUS_VERIFIED, 'Verified'), (Document.STATUS_REJECTED, 'Rejected')])
    comments = forms.CharField(required=False)
    rejection_reason = forms.CharField(required=False)

    def clean(self):
        cleaned_data = super().clean()
        if cleaned_data.get('status') == Document.STATUS_REJECTED and not (cleaned_data.get('rejection_reason') or '').strip():
            self.add_error('rejection_reason', 'A rejection reason is required.')
        return cleaned_data


class BatchVerifyForm(VerifyDocumentForm):
    document_ids = forms.JSONField()

    def clean_document_ids(self):
        ids = self.cleaned_data.get('document_ids')
        if not isinstance(ids, list) or not ids:
            raise ValidationError('At least one document ID is required.')
        try:
            return [int(i) for i in ids]
        except (TypeError, ValueError):
            raise ValidationError('Document ids must be integers.')
