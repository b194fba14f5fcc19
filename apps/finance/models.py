from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Sum
from django.utils import timezone

from apps.core.models import Institution


class Payment(models.Model):
    """
    A fee payment made through a gateway

    Fee split (platform_fee, processing_fee, institution_amount) is fixed
    when the payment is created, from the institution's subscription tier.
    """

    STATUS_CREATED = 'created'
    STATUS_COMPLETED = 'completed'
    STATUS_FAILED = 'failed'
    STATUS_REFUNDED = 'refunded'
    STATUS_CHOICES = [
        (STATUS_CREATED, 'Created'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_FAILED, 'Failed'),
        (STATUS_REFUNDED, 'Refunded'),
    ]

    TYPE_CHOICES = [
        ('application_fee', 'Application Fee'),
        ('tuition_fee', 'Tuition Fee'),
        ('hostel_fee', 'Hostel Fee'),
        ('exam_fee', 'Exam Fee'),
        ('other', 'Other'),
    ]

    institution = models.ForeignKey(Institution, on_delete=models.CASCADE, related_name='payments')
    application = models.ForeignKey('admissions.Application', on_delete=models.SET_NULL, null=True, blank=True, related_name='payments')
    payer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='payments')

    amount = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(Decimal('1'))])
    currency = models.CharField(max_length=3, default='INR')
    payment_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default='application_fee')
    platform_fee = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    processing_fee = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    institution_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_CREATED, db_index=True)
    gateway = models.CharField(max_length=50, default='cashfree')
    gateway_transaction_id = models.CharField(max_length=200, blank=True, db_index=True)
    gateway_response = models.JSONField(default=dict, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['institution', 'status', '-created_at']),
        ]

    def __str__(self):
        return f"{self.amount} {self.currency} ({self.get_status_display()})"

    def committed_refund_amount(self):
        """Refunds that are requested, approved or processed (rejected ones free the amount again)"""
        total = self.refund_requests.exclude(status=RefundRequest.STATUS_REJECTED).aggregate(total=Sum('amount'))['total']
        return total or Decimal('0')

    def processed_refund_amount(self):
        total = self.refund_requests.filter(status=RefundRequest.STATUS_PROCESSED).aggregate(total=Sum('amount'))['total']
        return total or Decimal('0')

    def refundable_amount(self):
        if self.status != self.STATUS_COMPLETED:
            return Decimal('0')
        return max(self.amount - self.committed_refund_amount(), Decimal('0'))

    def to_dict(self):
        return {
            'id': self.id,
            'application_id': self.application_id,
            'student_name': self.application.student_name if self.application_id else None,
            'payer': self.payer.get_full_name() if self.payer_id else None,
            'amount': float(self.amount),
            'currency': self.currency,
            'payment_type': self.payment_type,
            'platform_fee': float(self.platform_fee),
            'processing_fee': float(self.processing_fee),
            'institution_amount': float(self.institution_amount),
            'status': self.status,
            'gateway': self.gateway,
            'gateway_transaction_id': self.gateway_transaction_id,
            'paid_at': self.paid_at.isoformat() if self.paid_at else None,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class RefundRequest(models.Model):

    STATUS_PENDING = 'pending'
    STATUS_APPROVED = 'approved'
    STATUS_REJECTED = 'rejected'
    STATUS_PROCESSED = 'processed'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_PROCESSED, 'Processed'),
    ]

    institution = models.ForeignKey(Institution, on_delete=models.CASCADE, related_name='refund_requests')
    payment = models.ForeignKey(Payment, on_delete=models.CASCADE, related_name='refund_requests')
    application = models.ForeignKey('admissions.Application', on_delete=models.SET_NULL, null=True, blank=True, related_name='refund_requests')
    requested_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, related_name='refund_requests')
    amount = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(Decimal('0.01'))])
    reason = models.TextField()

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    reviewed_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='reviewed_refunds')
    review_notes = models.TextField(blank=True)
    reviewed_at = models.DateTimeField(null=True, blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"Refund of {self.amount} on payment {self.payment_id} ({self.get_status_display()})"

    def to_dict(self):
        return {
            'id': self.id,
            'payment_id': self.payment_id,
            'application_id': self.application_id,
            'student_name': self.application.student_name if self.application_id else None,
            'requested_by': self.requested_by.get_full_name() if self.requested_by_id else None,
            'amount': float(self.amount),
            'currency': self.payment.currency,
            'reason': self.reason,
            'status': self.status,
            'reviewed_by': self.reviewed_by.get_full_name() if self.reviewed_by_id else None,
            'review_notes': self.review_notes,
            'reviewed_at': self.reviewed_at.isoformat() if self.reviewed_at else None,
            'processed_at': self.processed_at.isoformat() if self.processed_at else None,
            'created_at': self.created_at.isoformat(),
        }
