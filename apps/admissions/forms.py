from django import forms
from django.core.exceptions import ValidationError

from apps.communications.models import CHANNELS
from .models import Application, AdmissionReview, OfferLetterTemplate


class ConvertLeadForm(forms.Form):
    course = forms.CharField(max_length=200, required=False)
    academic_year = forms.CharField(max_length=20, required=False)
    fee_amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    program_start_date = forms.DateField(required=False)
    notes = forms.CharField(required=False)


class ApplicationUpdateForm(forms.ModelForm):

    # Statuses set by decisions and offer responses are not editable by hand
    EDITABLE_STATUSES = [
        Application.STATUS_DRAFT,
        Application.STATUS_SUBMITTED,
        Application.STATUS_UNDER_REVIEW,
        Application.STATUS_DOCUMENTS_PENDING,
        Application.STATUS_WITHDRAWN,
    ]

    class Meta:
        model = Application
        fields = ['student_name', 'student_email', 'student_phone', 'course', 'academic_year', 'fee_amount',
                  'program_start_date', 'notes', 'status']

    def clean_status(self):
        status = self.cleaned_data.get('status')
        if status != self.instance.status and status not in self.EDITABLE_STATUSES:
            raise ValidationError('This status is set by the admission decision workflow.')
        return status


class ReviewForm(forms.ModelForm):

    class Meta:
        model = AdmissionReview
        fields = ['interview_notes', 'academic_score', 'recommendations', 'recommendation']
        error_messages = {
            'academic_score': {
                'min_value': 'Academic score must be between 0 and 100.',
                'max_value': 'Academic score must be between 0 and 100.',
            },
        }


class DecisionForm(forms.Form):
    decision = forms.ChoiceField(choices=AdmissionReview.DECISION_CHOICES)
    reason = forms.CharField(required=False)

    def clean(self):
        cleaned_data = super().clean()
        if cleaned_data.get('decision') == AdmissionReview.DECISION_REJECTED and not (cleaned_data.get('reason') or '').strip():
            self.add_error('reason', 'A reason is required to reject an application.')
        return cleaned_data


class OfferLetterTemplateForm(forms.ModelForm):

    class Meta:
        model = OfferLetterTemplate
        fields = ['name', 'subject', 'body', 'is_active', 'is_default']

    def __init__(self, *args, institution=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.institution = institution

    def clean_name(self):
        name = self.cleaned_data.get('name')
        duplicates = OfferLetterTemplate.objects.filter(institution=self.institution, name=name)
        if self.instance.pk:
            duplicates = duplicates.exclude(pk=self.instance.pk)
        if duplicates.exists():
            raise ValidationError('A template with this name already exists.')
        return name

    def clean_is_active(self):
        value = self.data.get('is_active')
        return True if value is None else self.cleaned_data.get('is_active')

    def clean(self):
        cleaned_data = super().clean()
        if cleaned_data.get('is_default') and cleaned_data.get('is_active') is False:
            self.add_error('is_default', 'An inactive template cannot be the default.')
        return cleaned_data

    def save(self, commit=True):
        template = super().save(commit=False)
        template.institution = self.institution
        if commit:
            template.save()
        return template


class _InstitutionForm(forms.Form):

    def __init__(self, *args, institution=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.institution = institution

    def clean_template_id(self):
        pk = self.cleaned_data.get('template_id')
        if not pk:
            return None
        try:
            return OfferLetterTemplate.objects.get(pk=pk, institution=self.institution, is_active=True)
        except OfferLetterTemplate.DoesNotExist:
            raise ValidationError('Template not found.')


class GenerateOfferForm(_InstitutionForm):
    application_id = forms.IntegerField()
    template_id = forms.IntegerField(required=False)

    def clean_application_id(self):
        pk = self.cleaned_data.get('application_id')
        try:
            return Application.objects.select_related('institution', 'review').get(pk=pk, institution=self.institution)
        except Application.DoesNotExist:
            raise ValidationError('Application not found.')


class BulkGenerateForm(_InstitutionForm):
    application_ids = forms.JSONField()
    template_id = forms.IntegerField(required=False)

    def clean_application_ids(self):
        ids = self.cleaned_data.get('application_ids')
        if not isinstance(ids, list) or not ids:
            raise ValidationError('Provide a non-empty list of application ids.')
        try:
            ids = [int(i) for i in ids]
        except (TypeError, ValueError):
            raise ValidationError('Application ids must be integers.')
        return list(Application.objects.filter(institution=self.institution, pk__in=ids).select_related('institution'))


class DistributeOfferForm(forms.Form):
    offer_letter_id = forms.IntegerField()
    channels = forms.JSONField()

    def clean_channels(self):
        channels = self.cleaned_data.get('channels')
        if isinstance(channels, str):
            channels = [channels]
        if not isinstance(channels, list) or not channels:
            raise ValidationError('Choose at least one channel.')
        unknown = [c for c in channels if c not in CHANNELS]
        if unknown:
            raise ValidationError(f'Unknown channels: {", ".join(map(str, unknown))}')
        return list(dict.fromkeys(channels))


class DeclineOfferForm(forms.Form):
    reason = forms.CharField(required=False, max_length=1000)
