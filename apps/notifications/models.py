from django.conf import settings
from django.db import models
from django.utils import timezone

from apps.core.models import Institution


class Notification(models.Model):
    """
    In-app notification for one user

    Created through apps.notifications.services, which also pushes it to
    the user's WebSocket group and fans it out to email/SMS/WhatsApp.
    """

    TYPE_INFO = 'info'
    TYPE_SUCCESS = 'success'
    TYPE_WARNING = 'warning'
    TYPE_ERROR = 'error'
    TYPE_SYSTEM = 'system'
    TYPE_CHOICES = [
        (TYPE_INFO, 'Info'),
        (TYPE_SUCCESS, 'Success'),
        (TYPE_WARNING, 'Warning'),
        (TYPE_ERROR, 'Error'),
        (TYPE_SYSTEM, 'System'),
    ]

    CATEGORY_CHOICES = [
        ('general', 'General'),
        ('system', 'System'),
        ('lead', 'Lead'),
        ('payment', 'Payment'),
        ('document', 'Document'),
        ('admission', 'Admission'),
        ('finance', 'Finance'),
        ('communication', 'Communication'),
        ('performance', 'Performance'),
    ]
    CATEGORIES = [value for value, _label in CATEGORY_CHOICES]

    PRIORITY_CHOICES = [
        ('low', 'Low'),
        ('medium', 'Medium'),
        ('high', 'High'),
        ('urgent', 'Urgent'),
    ]

    institution = models.ForeignKey(Institution, on_delete=models.CASCADE, null=True, blank=True, related_name='notifications', help_text='Empty for platform-level notifications')
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='notifications')
    title = models.CharField(max_length=200)
    message = models.TextField()
    notification_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default=TYPE_INFO)
    category = models.CharField(max_length=30, choices=CATEGORY_CHOICES, default='general', db_index=True)
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default='medium')
    action_type = models.CharField(max_length=50, blank=True, help_text='Machine-readable event, e.g. lead_assigned, document_verified')
    lead = models.ForeignKey('leads.Lead', on_delete=models.SET_NULL, null=True, blank=True, related_name='notifications')
    data = models.JSONField(default=dict, blank=True, help_text='Extra payload for the frontend (ids, links)')
    is_read = models.BooleanField(default=False, db_index=True)
    read_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['user', 'is_read', '-created_at']),
            models.Index(fields=['institution', '-created_at']),
        ]

    def __str__(self):
        return f"{self.title} → {self.user}"

    def mark_as_read(self):
        if self.is_read:
            return False
        self.is_read = True
        self.read_at = timezone.now()
        self.save(update_fields=['is_read', 'read_at'])
        return True

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'message': self.message,
            'type': self.notification_type,
            'category': self.category,
            'priority': self.priority,
            'action_type': self.action_type,
            'lead_id': self.lead_id,
            'data': self.data,
            'is_read': self.is_read,
            'read_at': self.read_at.isoformat() if self.read_at else None,
            'created_at': self.created_at.isoformat(),
        }
