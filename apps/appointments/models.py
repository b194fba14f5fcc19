from datetime import timedelta

from django.conf import settings
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from django.utils import timezone

from apps.core.models import Institution


class Appointment(models.Model):
    """Counselling session between an admission counselor and an applicant"""

    STATUS_SCHEDULED = 'scheduled'
    STATUS_CONFIRMED = 'confirmed'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_NO_SHOW = 'no_show'
    STATUS_CHOICES = [
        (STATUS_SCHEDULED, 'Scheduled'),
        (STATUS_CONFIRMED, 'Confirmed'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_NO_SHOW, 'No Show'),
    ]

    # Appointments that still take place
    UPCOMING_STATUSES = [STATUS_SCHEDULED, STATUS_CONFIRMED]

    institution = models.ForeignKey(Institution, on_delete=models.CASCADE, related_name='appointments')
    application = models.ForeignKey('admissions.Application', on_delete=models.CASCADE, related_name='appointments')
    counselor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, related_name='appointments')
    scheduled_at = models.DateTimeField(db_index=True)
    duration_minutes = models.PositiveSmallIntegerField(default=30, validators=[MinValueValidator(15), MaxValueValidator(120)])
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_SCHEDULED, db_index=True)
    notes = models.TextField(blank=True)
    reminder_sent = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['scheduled_at']
        indexes = [
            models.Index(fields=['institution', 'scheduled_at']),
            models.Index(fields=['status', 'scheduled_at']),
        ]

    def __str__(self):
        return f"{self.application.student_name} at {self.scheduled_at:%Y-%m-%d %H:%M} ({self.get_status_display()})"

    @property
    def ends_at(self):
        return self.scheduled_at + timedelta(minutes=self.duration_minutes)

    def is_upcoming(self):
        return self.status in self.UPCOMING_STATUSES and self.scheduled_at >= timezone.now()

    def to_dict(self):
        application = self.application
        return {
            'id': self.id,
            'application': {
                'id': application.id,
                'student_name': application.student_name,
                'student_email': application.student_email,
                'course': application.course,
            },
            'counselor': {'id': self.counselor_id, 'name': self.counselor.get_full_name()} if self.counselor_id else None,
            'scheduled_at': self.scheduled_at.isoformat(),
            'ends_at': self.ends_at.isoformat(),
            'duration_minutes': self.duration_minutes,
            'status': self.status,
            'notes': self.notes,
            'reminder_sent': self.reminder_sent,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
