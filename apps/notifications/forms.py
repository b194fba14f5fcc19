from django import forms
from django.core.exceptions import ValidationError

from apps.accounts.models import ROLE_CHOICES, ROLE_SUPER_ADMIN, UserProfile
from .models import Notification


class MarkReadForm(forms.Form):
    notification_ids = forms.JSONField()

    def clean_notification_ids(self):
        ids = self.cleaned_data.get('notification_ids')
        if not isinstance(ids, list) or not ids:
            raise ValidationError('Provide a non-empty list of notification ids.')
        try:
            return [int(i) for i in ids]
        except (TypeError, ValueError):
            raise ValidationError('Notification ids must be integers.')


class PreferencesForm(forms.ModelForm):

    class Meta:
        model = UserProfile
        fields = ['email_notifications', 'sms_notifications', 'whatsapp_notifications', 'push_notifications',
                  'notification_frequency', 'muted_categories']

    def clean_muted_categories(self):
        value = self.cleaned_data.get('muted_categories') or []
        if not isinstance(value, list):
            raise ValidationError('Muted categories must be a list.')
        unknown = [c for c in value if c not in Notification.CATEGORIES]
        if unknown:
            raise ValidationError(f'Unknown categories: {", ".join(map(str, unknown))}')
        return value


class AnnouncementForm(forms.Form):
    title = forms.CharField(max_length=200, error_messages={'required': 'Title and message are required'})
    message = forms.CharField(error_messages={'required': 'Title and message are required'})
    priority = forms.ChoiceField(choices=Notification.PRIORITY_CHOICES, required=False)
    target_roles = forms.JSONField(required=False)

    def clean_priority(self):
        return self.cleaned_data.get('priority') or 'medium'

    def clean_target_roles(self):
        roles = self.cleaned_data.get('target_roles') or []
        if not isinstance(roles, list):
            raise ValidationError('Target roles must be a list.')
        valid = {value for value, _label in ROLE_CHOICES if value != ROLE_SUPER_ADMIN}
        invalid = [r for r in roles if r not in valid]
        if invalid:
            raise ValidationError(f'Unknown roles: {", ".join(map(str, invalid))}')
        return roles
