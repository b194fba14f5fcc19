from django.conf import settings
from django.db import models
from django.utils import timezone

from apps.core.models import Institution
from .templating import extract_variables


CHANNEL_EMAIL = 'email'
CHANNEL_SMS = 'sms'
CHANNEL_WHATSAPP = 'whatsapp'
CHANNEL_CHOICES = [
    (CHANNEL_EMAIL, 'Email'),
    (CHANNEL_SMS, 'SMS'),
    (CHANNEL_WHATSAPP, 'WhatsApp'),
]
CHANNELS = [value for value, _label in CHANNEL_CHOICES]


class MessageTemplate(models.Model):

    CATEGORY_CHOICES = [
        ('general', 'General'),
        ('lead', 'Lead'),
        ('admission', 'Admission'),
        ('document', 'Document'),
        ('payment', 'Payment'),
        ('reminder', 'Reminder'),
    ]

    institution = models.ForeignKey(Institution, on_delete=models.CASCADE, related_name='message_templates')
    name = models.CharField(max_length=100)
    channel = models.CharField(max_length=20, choices=CHANNEL_CHOICES, default=CHANNEL_EMAIL)
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES, default='general')
    subject = models.CharField(max_length=200, blank=True, help_text='Email only')
    body = models.TextField(help_text='Text with {{variable}} / {{object.property}} placeholders')
    variables = models.JSONField(default=list, blank=True, help_text='Placeholders found in subject and body (kept in sync on save)')
    is_active = models.BooleanField(default=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['channel', 'name']
        constraints = [
            models.UniqueConstraint(fields=['institution', 'name', 'channel'], name='unique_message_template'),
        ]

    def __str__(self):
        return f"{self.name} ({self.get_channel_display()})"

    def save(self, *args, **kwargs):
        self.variables = extract_variables(f'{self.subject}\n{self.body}')
        super().save(*args, **kwargs)


class Communication(models.Model):
    """One outbound message on one channel (the communication log)"""

    STATUS_QUEUED = 'queued'
    STATUS_SENT = 'sent'
    STATUS_FAILED = 'failed'
    STATUS_CHOICES = [
        (STATUS_QUEUED, 'Queued'),
        (STATUS_SENT, 'Sent'),
        (STATUS_FAILED, 'Failed'),
    ]

    institution = models.ForeignKey(Institution, on_delete=models.CASCADE, related_name='communications')
    application = models.ForeignKey('admissions.Application', on_delete=models.CASCADE, null=True, blank=True, related_name='communications')
    lead = models.ForeignKey('leads.Lead', on_delete=models.SET_NULL, null=True, blank=True, related_name='communications')
    sender = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='sent_communications', help_text='Empty for system messages')
    template = models.ForeignKey(MessageTemplate, on_delete=models.SET_NULL, null=True, blank=True, related_name='communications')
    channel = models.CharField(max_length=20, choices=CHANNEL_CHOICES, db_index=True)
    recipient = models.CharField(max_length=255, help_text='Email address or phone number')
    subject = models.CharField(max_length=200, blank=True)
    content = models.TextField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_QUEUED, db_index=True)
    error_message = models.TextField(blank=True)
    external_id = models.CharField(max_length=100, blank=True, help_text='Provider message id (Twilio SID, WhatsApp message id)')
    retry_count = models.PositiveSmallIntegerField(default=0)
    sent_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['institution', 'channel', 'status']),
            models.Index(fields=['application', '-created_at']),
        ]

    def __str__(self):
        return f"{self.get_channel_display()} to {self.recipient} ({self.get_status_display()})"

    def mark_as_sent(self, external_id=''):
        self.status = self.STATUS_SENT
        self.external_id = external_id or ''
        self.error_message = ''
        self.sent_at = timezone.now()
        self.save(update_fields=['status', 'external_id', 'error_message', 'sent_at', 'updated_at'])

    def mark_as_failed(self, error):
        self.status = self.STATUS_FAILED
        self.error_message = str(error)
        self.save(update_fields=['status', 'error_message', 'updated_at'])

    def can_retry(self):
        return self.status == self.STATUS_FAILED and self.retry_count < settings.COMMUNICATION_MAX_RETRIES
