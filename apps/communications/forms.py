from django import forms
from django.core.exceptions import ValidationError

from apps.admissions.models import Application
from apps.leads.models import Lead
from .models import MessageTemplate, CHANNEL_CHOICES, CHANNEL_EMAIL


class MessageTemplateForm(forms.ModelForm):

    class Meta:
        model = MessageTemplate
        fields = ['name', 'channel', 'category', 'subject', 'body', 'is_active']

    def __init__(self, *args, institution=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.institution = institution
        for name in ('channel', 'category', 'is_active'):
            self.fields[name].required = False

    def clean_channel(self):
        return self.cleaned_data.get('channel') or CHANNEL_EMAIL

    def clean_category(self):
        return self.cleaned_data.get('category') or 'general'

    def clean_is_active(self):
        value = self.data.get('is_active')
        return True if value is None else self.cleaned_data.get('is_active')

    def clean(self):
        cleaned_data = super().clean()
        name = cleaned_data.get('name')
        channel = cleaned_data.get('channel')

        if channel == CHANNEL_EMAIL and not cleaned_data.get('subject'):
            self.add_error('subject', 'Email templates need a subject.')

        if name and channel:
            duplicates = MessageTemplate.objects.filter(institution=self.institution, name=name, channel=channel)
            if self.instance.pk:
                duplicates = duplicates.exclude(pk=self.instance.pk)
            if duplicates.exists():
                self.add_error('name', 'A template with this name already exists for this channel.')
        return cleaned_data

    def save(self, commit=True):
        template = super().save(commit=False)
        template.institution = self.institution
        if commit:
            template.save()
        return template


class _TargetMixin:
    """Resolve ``application_id`` / ``lead_id`` inside the form's institution"""

    def clean_application_id(self):
        pk = self.cleaned_data.get('application_id')
        if not pk:
            return None
        try:
            return Application.objects.select_related('institution', 'lead').get(pk=pk, institution=self.institution)
        except Application.DoesNotExist:
            raise ValidationError('Application not found.')

    def clean_lead_id(self):
        pk = self.cleaned_data.get('lead_id')
        if not pk:
            return None
        try:
            return Lead.objects.select_related('institution').get(pk=pk, institution=self.institution)
        except Lead.DoesNotExist:
            raise ValidationError('Lead not found.')


class TemplateSendForm(_TargetMixin, forms.Form):
    template_id = forms.IntegerField()
    application_id = forms.IntegerField(required=False)
    lead_id = forms.IntegerField(required=False)
    to = forms.CharField(max_length=255, required=False, help_text='Overrides the applicant address')
    variables = forms.JSONField(required=False)

    def __init__(self, *args, institution=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.institution = institution

    def clean_template_id(self):
        pk = self.cleaned_data.get('template_id')
        try:
            return MessageTemplate.objects.get(pk=pk, institution=self.institution, is_active=True)
        except MessageTemplate.DoesNotExist:
            raise ValidationError('Template not found.')

    def clean_variables(self):
        variables = self.cleaned_data.get('variables') or {}
        if not isinstance(variables, dict):
            raise ValidationError('Variables must be an object.')
        return variables

    def clean(self):
        cleaned_data = super().clean()
        if not (cleaned_data.get('application_id') or cleaned_data.get('lead_id') or cleaned_data.get('to')):
            raise ValidationError('Provide an application, a lead or a recipient.')
        return cleaned_data


class DirectSendForm(_TargetMixin, forms.Form):
    channel = forms.ChoiceField(choices=CHANNEL_CHOICES)
    to = forms.CharField(max_length=255, required=False)
    subject = forms.CharField(max_length=200, required=False)
    content = forms.CharField()
    application_id = forms.IntegerField(required=False)
    lead_id = forms.IntegerField(required=False)

    def __init__(self, *args, institution=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.institution = institution

    def clean(self):
        cleaned_data = super().clean()
        channel = cleaned_data.get('channel')
        to = cleaned_data.get('to')
        if channel == CHANNEL_EMAIL and to:
            try:
                forms.EmailField().clean(to)
            except ValidationError:
                self.add_error('to', 'Enter a valid email address.')
        if not (to or cleaned_data.get('application_id') or cleaned_data.get('lead_id')):
            raise ValidationError('Provide an application, a lead or a recipient.')
        return cleaned_data


class BulkSendForm(forms.Form):
    application_ids = forms.JSONField()
    channel = forms.ChoiceField(choices=CHANNEL_CHOICES, required=False)
    template_id = forms.IntegerField(required=False)
    subject = forms.CharField(max_length=200, required=False)
    content = forms.CharField(required=False)

    def __init__(self, *args, institution=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.institution = institution

    def clean_application_ids(self):
        ids = self.cleaned_data.get('application_ids')
        if not isinstance(ids, list) or not ids:
            raise ValidationError('Provide a non-empty list of application ids.')
        try:
            ids = [int(i) for i in ids]
        except (TypeError, ValueError):
            raise ValidationError('Application ids must be integers.')

        applications = list(Application.objects.filter(institution=self.institution, pk__in=ids).select_related('institution', 'lead'))
        if len(applications) != len(set(ids)):
            raise ValidationError('Some applications were not found.')
        return applications

    def clean_template_id(self):
        pk = self.cleaned_data.get('template_id')
        if not pk:
            return None
        try:
            return MessageTemplate.objects.get(pk=pk, institution=self.institution, is_active=True)
        except MessageTemplate.DoesNotExist:
            raise ValidationError('Template not found.')

    def clean(self):
        cleaned_data = super().clean()
        template = cleaned_data.get('template_id')
        if template is not None:
            cleaned_data['channel'] = template.channel
        elif not cleaned_data.get('channel') or not cleaned_data.get('content'):
            raise ValidationError('Provide a template or a channel with content.')
        return cleaned_data
