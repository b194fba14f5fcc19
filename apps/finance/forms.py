from decimal import Decimal

from django import forms
from django.core.exceptions import ValidationError

from apps.admissions.models import Application
from apps.core.models import Institution
from .models import Payment

ACTION_APPROVE = 'approve'
ACTION_REJECT = 'reject'


class FeeCalculationForm(forms.Form):
    amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('1'),
                                error_messages={'min_value': 'Amount must be greater than 0'})
    subscription_tier = forms.ChoiceField(choices=Institution.TIER_CHOICES, required=False)


class PaymentForm(forms.Form):
    amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('1'),
                                error_messages={'min_value': 'Amount must be greater than 0'})
    application_id = forms.IntegerField(required=False)
    payment_type = forms.ChoiceField(choices=Payment.TYPE_CHOICES, required=False)
    currency = forms.CharField(max_length=3, required=False)
    gateway = forms.CharField(max_length=50, required=False)
    gateway_transaction_id = forms.CharField(max_length=200, required=False)
    gateway_response = forms.JSONField(required=False)

    def __init__(self, *args, institution=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.institution = institution

    def clean_application_id(self):
        pk = self.cleaned_data.get('application_id')
        if not pk:
            return None
        try:
            return Application.objects.select_related('student').get(pk=pk, institution=self.institution)
        except Application.DoesNotExist:
            raise ValidationError('Application not found.')

    def clean_payment_type(self):
        return self.cleaned_data.get('payment_type') or 'application_fee'

    def clean_gateway(self):
        return self.cleaned_data.get('gateway') or 'cashfree'

    def clean_currency(self):
        return (self.cleaned_data.get('currency') or '').upper()


class PaymentStatusForm(forms.Form):
    status = forms.ChoiceField(choices=Payment.STATUS_CHOICES, error_messages={'invalid_choice': 'Invalid payment status'})
    gateway_transaction_id = forms.CharField(max_length=200, required=False)
    gateway_response = forms.JSONField(required=False)


class RefundDecisionForm(forms.Form):
    action = forms.ChoiceField(choices=[(ACTION_APPROVE, 'Approve'), (ACTION_REJECT, 'Reject')])
    notes = forms.CharField(required=False)


class RefundRequestForm(forms.Form):
    payment_id = forms.IntegerField()
    amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    reason = forms.CharField(min_length=10, error_messages={'min_length': 'Please describe the reason (at least 10 characters).'})
