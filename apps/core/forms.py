from django import forms
from django.core.exceptions import ValidationError

from .models import Institution, RESERVED_SLUGS


class InstitutionForm(forms.ModelForm):

    class Meta:
        model = Institution
        fields = ['name', 'slug', 'description', 'email', 'phone', 'website', 'address',
                  'city', 'state', 'country', 'subscription_tier', 'status', 'settings']

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['slug'].required = False
        self.fields['status'].required = False
        self.fields['subscription_tier'].required = False
        self.fields['settings'].required = False

    def clean_slug(self):
        slug = (self.cleaned_data.get('slug') or '').strip().lower()
        if slug in RESERVED_SLUGS:
            raise ValidationError('This slug is reserved.')
        return slug

    def clean_status(self):
        return self.cleaned_data.get('status') or self.instance.status or Institution.STATUS_ACTIVE

    def clean_subscription_tier(self):
        return self.cleaned_data.get('subscription_tier') or self.instance.subscription_tier or Institution.TIER_STARTER

    def clean_settings(self):
        value = self.cleaned_data.get('settings')
        if value is None:
            return self.instance.settings or {}
        if not isinstance(value, dict):
            raise ValidationError('Settings must be an object.')
        return value


class InstitutionSettingsForm(forms.ModelForm):
    """What an institution admin may change about their own institution"""

    class Meta:
        model = Institution
        fields = ['description', 'email', 'phone', 'website', 'address', 'city', 'state', 'country', 'settings']

    def clean_settings(self):
        value = self.cleaned_data.get('settings')
        if value is None:
            return self.instance.settings or {}
        if not isinstance(value, dict):
            raise ValidationError('Settings must be an object.')
        # Merge so partial updates keep unrelated keys
        merged = dict(self.instance.settings or {})
        merged.update(value)
        return merged


class StatusChangeForm(forms.Form):
    status = forms.ChoiceField(choices=Institution.STATUS_CHOICES)
    reason = forms.CharField(required=False, max_length=500)
