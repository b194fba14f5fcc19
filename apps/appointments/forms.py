from django import forms
from django.core.exceptions import ValidationError
from django.utils import timezone

from apps.admissions.models import Application
from .models import Appointment


class AppointmentForm(forms.ModelForm):
    application_id = forms.IntegerField()

    class Meta:
        model = Appointment
        fields = ['scheduled_at', 'duration_minutes', 'notes']
        error_messages = {
            'duration_minutes': {
                'min_value': 'Duration must be between 15 and 120 minutes.',
                'max_value': 'Duration must be between 15 and 120 minutes.',
            },
        }

    def __init__(self, *args, institution=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.institution = institution
        self.fields['duration_minutes'].required = False

    def clean_application_id(self):
        pk = self.cleaned_data.get('application_id')
        try:
            return Application.objects.get(pk=pk, institution=self.institution)
        except Application.DoesNotExist:
            raise ValidationError('Application not found.')

    def clean_duration_minutes(self):
        return self.cleaned_data.get('duration_minutes') or 30

    def clean_scheduled_at(self):
        scheduled_at = self.cleaned_data.get('scheduled_at')
        if scheduled_at and scheduled_at < timezone.now():
            raise ValidationError('Appointments cannot be scheduled in the past.')
        return scheduled_at

    def save(self, commit=True):
        appointment = super().save(commit=False)
        appointment.institution = self.institution
        appointment.application = self.cleaned_data['application_id']
        if commit:
            appointment.save()
        return appointment


class AppointmentUpdateForm(forms.ModelForm):

    class Meta:
        model = Appointment
        fields = ['scheduled_at', 'duration_minutes', 'status', 'notes']
        error_messages = AppointmentForm.Meta.error_messages

    def clean(self):
        cleaned_data = super().clean()
        if 'scheduled_at' in self.changed_data:
            # Moving a session means reminding again
            self.instance.reminder_sent = False
        return cleaned_data
