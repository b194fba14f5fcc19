from django import forms
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db.models import Q

from apps.accounts.models import User, ROLE_TELECALLER
from .field_mapping import normalize_phone
from .models import Lead, CallLog, FollowUp, AssignmentConfig


class LeadForm(forms.ModelForm):
    """Manual lead entry and edits (institution admin / telecaller)"""

    tags = forms.CharField(required=False, help_text='Comma-separated tags')

    class Meta:
        model = Lead
        fields = ['name', 'email', 'phone', 'source', 'status', 'course_interest', 'qualification',
                  'city', 'state', 'notes', 'next_follow_up', 'extra_data']
        error_messages = {
            'name': {'required': 'Name is required', 'max_length': 'Name is too long (max 200 characters)'},
        }

    def __init__(self, *args, **kwargs):
        self.institution = kwargs.pop('institution', None)
        super().__init__(*args, **kwargs)
        self.fields['source'].required = False
        self.fields['status'].required = False
        self.fields['extra_data'].required = False

    def clean_phone(self):
        phone = (self.cleaned_data.get('phone') or '').strip()
        if not phone:
            return ''

        phone = normalize_phone(phone)
        digits = phone.lstrip('+')
        if not digits.isdigit():
            raise ValidationError('Phone number must contain only digits after +')
        if len(digits) < 10 or len(digits) > 15:
            raise ValidationError('Phone number must be between 10 and 15 digits')
        return phone

    def clean_email(self):
        return (self.cleaned_data.get('email') or '').strip().lower()

    def clean_source(self):
        return self.cleaned_data.get('source') or self.instance.source or 'Manual Entry'

    def clean_status(self):
        return self.cleaned_data.get('status') or self.instance.status or Lead.STATUS_NEW

    def clean_extra_data(self):
        value = self.cleaned_data.get('extra_data')
        if value in (None, ''):
            return self.instance.extra_data or {}
        if not isinstance(value, dict):
            raise ValidationError('Extra data must be an object.')
        return value

    def clean_tags(self):
        raw = self.cleaned_data.get('tags') or ''
        if isinstance(raw, (list, tuple)):
            raw = ','.join(str(t) for t in raw)
        return [tag.strip() for tag in raw.split(',') if tag.strip()]

    def clean(self):
        cleaned_data = super().clean()
        if not cleaned_data.get('email') and not cleaned_data.get('phone'):
            raise ValidationError('Provide at least an email address or a phone number.')
        return cleaned_data


class LeadFilterForm(forms.Form):
    """Query-string filters for the lead list and export"""

    search = forms.CharField(required=False)
    status = forms.ChoiceField(choices=[('', 'All')] + Lead.STATUS_CHOICES, required=False)
    source = forms.CharField(required=False)
    assigned_to = forms.CharField(required=False, help_text='User id, or "unassigned"')
    course = forms.CharField(required=False)
    min_score = forms.IntegerField(required=False, min_value=0, max_value=100)
    date_from = forms.DateField(required=False)
    date_to = forms.DateField(required=False)
    sort = forms.ChoiceField(required=False, choices=[
        ('', 'Newest'),
        ('-created_at', 'Newest'),
        ('created_at', 'Oldest'),
        ('-score', 'Highest score'),
        ('score', 'Lowest score'),
        ('name', 'Name'),
    ])

    def filter(self, queryset):
        data = self.cleaned_data

        if data.get('search'):
            search = data['search'].strip()
            queryset = queryset.filter(
                Q(name__icontains=search) |
                Q(email__icontains=search) |
                Q(phone__icontains=search)
            )
        if data.get('status'):
            queryset = queryset.filter(status=data['status'])
        if data.get('source'):
            queryset = queryset.filter(source__iexact=data['source'])
        if data.get('assigned_to') == 'unassigned':
            queryset = queryset.filter(assigned_to__isnull=True)
        elif data.get('assigned_to', '').isdigit():
            queryset = queryset.filter(assigned_to_id=int(data['assigned_to']))
        if data.get('course'):
            queryset = queryset.filter(course_interest__icontains=data['course'])
        if data.get('min_score') is not None:
            queryset = queryset.filter(score__gte=data['min_score'])
        if data.get('date_from'):
            queryset = queryset.filter(created_at__date__gte=data['date_from'])
        if data.get('date_to'):
            queryset = queryset.filter(created_at__date__lte=data['date_to'])

        return queryset.order_by(data.get('sort') or '-created_at')


class AssignLeadsForm(forms.Form):
    lead_ids = forms.JSONField()
    algorithm = forms.ChoiceField(choices=AssignmentConfig.ALGORITHM_CHOICES, required=False)
    assigned_to = forms.IntegerField(required=False, help_text='Explicit telecaller (skips the algorithm)')

    def clean_lead_ids(self):
        ids = self.cleaned_data.get('lead_ids')
        if not isinstance(ids, list) or not ids:
            raise ValidationError('Provide a non-empty list of lead ids.')
        try:
            return [int(i) for i in ids]
        except (TypeError, ValueError):
            raise ValidationError('Lead ids must be integers.')


class ReassignLeadForm(forms.Form):
    assigned_to = forms.IntegerField()
    reason = forms.CharField(required=False, max_length=500)

    def __init__(self, *args, **kwargs):
        self.institution = kwargs.pop('institution')
        super().__init__(*args, **kwargs)

    def clean_assigned_to(self):
        try:
            return User.objects.get(
                pk=self.cleaned_data['assigned_to'],
                institution=self.institution,
                role=ROLE_TELECALLER,
                is_active=True,
            )
        except User.DoesNotExist:
            raise ValidationError('Telecaller not found in this institution.')


class AssignmentConfigForm(forms.ModelForm):

    class Meta:
        model = AssignmentConfig
        fields = ['algorithm', 'auto_assign', 'max_leads_per_user', 'skill_requirements']

    def clean_skill_requirements(self):
        value = self.cleaned_data.get('skill_requirements')
        if value in (None, ''):
            return {}
        if not isinstance(value, dict):
            raise ValidationError('Skill requirements must map course keywords to skills.')

        requirements = {}
        for keyword, skills in value.items():
            keyword = str(keyword).strip().lower()
            if not keyword:
                continue
            if isinstance(skills, str):
                skills = [skills]
            if not isinstance(skills, list) or not all(isinstance(skill, str) for skill in skills):
                raise ValidationError(f'Skills for "{keyword}" must be a skill name or a list of skill names.')
            cleaned = [skill.strip().lower() for skill in skills if skill.strip()]
            if not cleaned:
                raise ValidationError(f'Give at least one skill for "{keyword}".')
            requirements[keyword] = list(dict.fromkeys(cleaned))
        return requirements


class LeadImportForm(forms.Form):
    file = forms.FileField()
    source = forms.CharField(required=False, max_length=100)
    auto_assign = forms.BooleanField(required=False)

    def clean_file(self):
        uploaded = self.cleaned_data['file']
        name = uploaded.name.lower()
        if not name.endswith(('.csv', '.xlsx')):
            raise ValidationError('Only .csv and .xlsx files are supported.')
        if uploaded.size > settings.LEAD_IMPORT_MAX_FILE_SIZE:
            raise ValidationError('File is too large.')
        return uploaded


class LeadStatusForm(forms.Form):
    status = forms.ChoiceField(choices=Lead.STATUS_CHOICES)
    note = forms.CharField(required=False, max_length=1000)


class CallLogForm(forms.ModelForm):
    lead = forms.IntegerField()

    class Meta:
        model = CallLog
        fields = ['call_type', 'status', 'outcome', 'duration_seconds', 'started_at', 'ended_at', 'notes', 'recording_url']

    def __init__(self, *args, **kwargs):
        self.institution = kwargs.pop('institution')
        self.user = kwargs.pop('user')
        super().__init__(*args, **kwargs)
        for name in ('call_type', 'status', 'duration_seconds', 'started_at'):
            self.fields[name].required = False

    def clean_lead(self):
        leads = Lead.objects.filter(institution=self.institution)
        if self.user.role == ROLE_TELECALLER:
            leads = leads.filter(assigned_to=self.user)
        try:
            return leads.get(pk=self.cleaned_data['lead'])
        except Lead.DoesNotExist:
            raise ValidationError('Lead not found.')

    def clean(self):
        cleaned_data = super().clean()
        cleaned_data['call_type'] = cleaned_data.get('call_type') or 'outbound'
        cleaned_data['status'] = cleaned_data.get('status') or 'completed'
        cleaned_data['duration_seconds'] = cleaned_data.get('duration_seconds') or 0
        started, ended = cleaned_data.get('started_at'), cleaned_data.get('ended_at')
        if started and ended and ended < started:
            raise ValidationError('Call cannot end before it started.')
        return cleaned_data


class CallLogUpdateForm(forms.ModelForm):

    class Meta:
        model = CallLog
        fields = ['status', 'outcome', 'duration_seconds', 'ended_at', 'notes', 'recording_url']


class FollowUpForm(forms.ModelForm):
    lead = forms.IntegerField()

    class Meta:
        model = FollowUp
        fields = ['follow_up_type', 'priority', 'scheduled_at', 'notes']

    def __init__(self, *args, **kwargs):
        self.institution = kwargs.pop('institution')
        self.user = kwargs.pop('user')
        super().__init__(*args, **kwargs)
        self.fields['follow_up_type'].required = False
        self.fields['priority'].required = False

    def clean_lead(self):
        leads = Lead.objects.filter(institution=self.institution)
        if self.user.role == ROLE_TELECALLER:
            leads = leads.filter(assigned_to=self.user)
        try:
            return leads.get(pk=self.cleaned_data['lead'])
        except Lead.DoesNotExist:
            raise ValidationError('Lead not found.')

    def clean_follow_up_type(self):
        return self.cleaned_data.get('follow_up_type') or 'call'

    def clean_priority(self):
        return self.cleaned_data.get('priority') or 'medium'


class FollowUpUpdateForm(forms.ModelForm):

    class Meta:
        model = FollowUp
        fields = ['follow_up_type', 'priority', 'scheduled_at', 'status', 'notes', 'outcome_notes']
