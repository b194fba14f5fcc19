from django.db import models
from django.utils import timezone
from django.conf import settings
from taggit.managers import TaggableManager

from apps.core.models import Institution


class Lead(models.Model):

    # Status choices (admission funnel order)
    STATUS_NEW = 'new'
    STATUS_CONTACTED = 'contacted'
    STATUS_QUALIFIED = 'qualified'
    STATUS_INTERESTED = 'interested'
    STATUS_APPLICATION_STARTED = 'application_started'
    STATUS_DOCUMENTS_SUBMITTED = 'documents_submitted'
    STATUS_UNDER_REVIEW = 'under_review'
    STATUS_ADMITTED = 'admitted'
    STATUS_ENROLLED = 'enrolled'
    STATUS_REJECTED = 'rejected'
    STATUS_LOST = 'lost'

    STATUS_CHOICES = [
        (STATUS_NEW, 'New'),
        (STATUS_CONTACTED, 'Contacted'),
        (STATUS_QUALIFIED, 'Qualified'),
        (STATUS_INTERESTED, 'Interested'),
        (STATUS_APPLICATION_STARTED, 'Application Started'),
        (STATUS_DOCUMENTS_SUBMITTED, 'Documents Submitted'),
        (STATUS_UNDER_REVIEW, 'Under Review'),
        (STATUS_ADMITTED, 'Admitted'),
        (STATUS_ENROLLED, 'Enrolled'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_LOST, 'Lost'),
    ]

    # Leads a telecaller is still actively working (counted for load balancing)
    ACTIVE_STATUSES = [STATUS_NEW, STATUS_CONTACTED, STATUS_QUALIFIED, STATUS_INTERESTED]
    CLOSED_STATUSES = [STATUS_ENROLLED, STATUS_REJECTED, STATUS_LOST]

    # Basic Information
    institution = models.ForeignKey(Institution, on_delete=models.CASCADE, related_name='leads', help_text='Which institution owns this lead')
    name = models.CharField(max_length=200, help_text="Lead's full name")
    email = models.EmailField(blank=True, db_index=True, help_text='Email address (lowercased)')
    phone = models.CharField(max_length=20, blank=True, db_index=True, help_text='Phone number in international format')

    # Lead Classification
    source = models.CharField(max_length=100, default='Website Form', db_index=True, help_text='Where did this lead come from? (e.g. Website Form, Google Ads, Walk-in)')
    platform = models.CharField(max_length=50, blank=True, help_text='Intake platform key (website, google_ads, facebook_ads, manual, import...)')
    status = models.CharField(max_length=30, choices=STATUS_CHOICES, default=STATUS_NEW, db_index=True)
    score = models.PositiveSmallIntegerField(default=0, help_text='Lead quality score (0-100)')
    score_breakdown = models.JSONField(default=dict, blank=True, help_text='Per-factor scores from the last scoring run')

    # Academic interest
    course_interest = models.CharField(max_length=200, blank=True, help_text='Course or program the lead asked about')
    qualification = models.CharField(max_length=200, blank=True)
    city = models.CharField(max_length=100, blank=True)
    state = models.CharField(max_length=100, blank=True)
    extra_data = models.JSONField(default=dict, blank=True, help_text='Normalized inbound fields without a dedicated column')

    # Assignment & Management
    assigned_to = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='assigned_leads', help_text='Telecaller responsible for this lead')
    assigned_at = models.DateTimeField(null=True, blank=True)
    last_contacted_at = models.DateTimeField(null=True, blank=True)
    next_follow_up = models.DateTimeField(null=True, blank=True, db_index=True)

    # Additional Information
    notes = models.TextField(blank=True, help_text='General notes about this lead')
    tags = TaggableManager(blank=True)

    # Timestamps
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Lead'
        verbose_name_plural = 'Leads'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['institution', 'status']),
            models.Index(fields=['institution', 'assigned_to']),
            models.Index(fields=['institution', 'email']),
            models.Index(fields=['institution', 'phone']),
        ]

    def __str__(self):
        return f"{self.name} ({self.phone or self.email}) - {self.get_status_display()}"

    def get_initials(self):
        """Returns first letters for avatar: 'Rahul Sharma' → 'RS'"""
        parts = self.name.split()
        if len(parts) >= 2:
            return f"{parts[0][0]}{parts[1][0]}".upper()
        elif len(parts) == 1:
            return parts[0][0].upper()
        return "?"

    def is_active(self):
        return self.status in self.ACTIVE_STATUSES

    def can_be_assigned(self):
        """Closed leads (enrolled/rejected/lost) are not routed to telecallers"""
        return self.status not in self.CLOSED_STATUSES

    def log_activity(self, activity_type, description, user=None, metadata=None):
        return Activity.objects.create(
            lead=self,
            user=user,
            activity_type=activity_type,
            description=description,
            metadata=metadata or {},
        )

    def assign_to(self, user, assigned_by=None, reason=''):
        """
        Assign lead to a telecaller

        Updates assigned_to, creates activity log, updates user statistics

        Returns:
            bool: False when the lead is closed and cannot be assigned
        """
        if not self.can_be_assigned():
            return False

        old_assignee = self.assigned_to
        if old_assignee == user:
            return True

        self.assigned_to = user
        self.assigned_at = timezone.now()
        self.save(update_fields=['assigned_to', 'assigned_at', 'updated_at'])

        if old_assignee:
            description = f'Reassigned from {old_assignee.get_full_name()} to {user.get_full_name()}'
            if reason:
                description += f' ({reason})'
            activity_type = 'reassigned'
        else:
            description = f'Assigned to {user.get_full_name()}'
            activity_type = 'assigned'

        self.log_activity(activity_type, description, user=assigned_by,
                          metadata={'from': old_assignee.pk if old_assignee else None, 'to': user.pk})

        user.increment_leads_assigned()
        if old_assignee and old_assignee.total_leads_assigned > 0:
            old_assignee.increment_leads_assigned(-1)

        return True

    def change_status(self, new_status, user=None, note=''):
        old_status = self.status
        if old_status == new_status:
            return False

        self.status = new_status
        update_fields = ['status', 'updated_at']
        if new_status == self.STATUS_CONTACTED and not self.last_contacted_at:
            self.last_contacted_at = timezone.now()
            update_fields.append('last_contacted_at')
        self.save(update_fields=update_fields)

        # Update user statistics
        if self.assigned_to and new_status == self.STATUS_ENROLLED:
            self.assigned_to.increment_leads_converted()

        status_labels = dict(self.STATUS_CHOICES)
        description = f'Status changed from "{status_labels.get(old_status, old_status)}" to "{status_labels.get(new_status, new_status)}"'
        if note:
            description += f': {note}'
        self.log_activity('status_changed', description, user=user,
                          metadata={'from': old_status, 'to': new_status})
        return True

    def add_note(self, content, user):
        note = LeadNote.objects.create(lead=self, user=user, content=content)
        self.log_activity('note_added', 'Added a note', user=user)
        return note

    def time_since_created(self):
        """Returns time elapsed since lead was created"""
        delta = timezone.now() - self.created_at

        if delta.days > 30:
            months = delta.days // 30
            return f"{months} month{'s' if months > 1 else ''} ago"
        elif delta.days > 0:
            return f"{delta.days} day{'s' if delta.days > 1 else ''} ago"
        elif delta.seconds >= 3600:
            hours = delta.seconds // 3600
            return f"{hours} hour{'s' if hours > 1 else ''} ago"
        elif delta.seconds >= 60:
            minutes = delta.seconds // 60
            return f"{minutes} minute{'s' if minutes > 1 else ''} ago"
        return "Just now"


class LeadNote(models.Model):

    lead = models.ForeignKey(Lead, on_delete=models.CASCADE, related_name='lead_notes')
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, related_name='lead_notes', help_text='Who wrote this note')
    content = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'Note'
        verbose_name_plural = 'Notes'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['lead', '-created_at']),
        ]

    def __str__(self):
        preview = self.content[:50] + '...' if len(self.content) > 50 else self.content
        return f"Note by {self.user.get_full_name() if self.user else 'Unknown'}: {preview}"


class Activity(models.Model):

    ACTIVITY_TYPE_CHOICES = [
        ('created', 'Created'),
        ('merged', 'Duplicate Merged'),
        ('assigned', 'Assigned'),
        ('reassigned', 'Reassigned'),
        ('status_changed', 'Status Changed'),
        ('score_updated', 'Score Updated'),
        ('note_added', 'Note Added'),
        ('call_logged', 'Call Logged'),
        ('follow_up_scheduled', 'Follow-up Scheduled'),
        ('follow_up_completed', 'Follow-up Completed'),
        ('follow_up_reminder', 'Follow-up Reminder'),
        ('converted', 'Converted to Application'),
        ('message_sent', 'Message Sent'),
    ]

    lead = models.ForeignKey(Lead, on_delete=models.CASCADE, related_name='activities')
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='lead_activities', help_text='Who performed this action (empty for system)')
    activity_type = models.CharField(max_length=30, choices=ACTIVITY_TYPE_CHOICES)
    description = models.TextField(help_text='Human-readable description of what happened')
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        verbose_name = 'Activity'
        verbose_name_plural = 'Activities'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['lead', '-created_at']),
            models.Index(fields=['user', '-created_at']),
        ]

    def __str__(self):
        user_name = self.user.get_full_name() if self.user else 'System'
        return f"{user_name}: {self.description}"


class CallLog(models.Model):
    """A phone call between a telecaller and a lead"""

    TYPE_CHOICES = [
        ('inbound', 'Inbound'),
        ('outbound', 'Outbound'),
        ('follow_up', 'Follow-up'),
        ('scheduled', 'Scheduled'),
    ]

    STATUS_CHOICES = [
        ('initiated', 'Initiated'),
        ('ringing', 'Ringing'),
        ('answered', 'Answered'),
        ('busy', 'Busy'),
        ('no_answer', 'No Answer'),
        ('failed', 'Failed'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    ]

    OUTCOME_CHOICES = [
        ('successful', 'Successful'),
        ('no_answer', 'No Answer'),
        ('busy', 'Busy'),
        ('wrong_number', 'Wrong Number'),
        ('not_interested', 'Not Interested'),
        ('callback_requested', 'Callback Requested'),
        ('interested', 'Interested'),
        ('qualified', 'Qualified'),
        ('not_qualified', 'Not Qualified'),
        ('follow_up_scheduled', 'Follow-up Scheduled'),
    ]

    # Outcomes that move the lead forward in the funnel
    OUTCOME_STATUS_MAP = {
        'successful': Lead.STATUS_CONTACTED,
        'interested': Lead.STATUS_INTERESTED,
        'qualified': Lead.STATUS_QUALIFIED,
        'not_interested': Lead.STATUS_LOST,
        'not_qualified': Lead.STATUS_LOST,
        'wrong_number': Lead.STATUS_LOST,
    }

    institution = models.ForeignKey(Institution, on_delete=models.CASCADE, related_name='call_logs')
    lead = models.ForeignKey(Lead, on_delete=models.CASCADE, related_name='call_logs')
    telecaller = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, related_name='call_logs')
    call_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default='outbound')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='completed')
    outcome = models.CharField(max_length=30, choices=OUTCOME_CHOICES, blank=True)
    duration_seconds = models.PositiveIntegerField(default=0)
    started_at = models.DateTimeField(default=timezone.now)
    ended_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)
    recording_url = models.URLField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-started_at']
        indexes = [
            models.Index(fields=['institution', 'telecaller', '-started_at']),
            models.Index(fields=['lead', '-started_at']),
        ]

    def __str__(self):
        return f"{self.get_call_type_display()} call with {self.lead.name} ({self.get_status_display()})"

    def is_connected(self):
        return self.status in ('answered', 'completed') and self.duration_seconds > 0


class FollowUp(models.Model):

    TYPE_CHOICES = [
        ('call', 'Call'),
        ('email', 'Email'),
        ('sms', 'SMS'),
        ('whatsapp', 'WhatsApp'),
        ('meeting', 'Meeting'),
    ]

    PRIORITY_CHOICES = [
        ('low', 'Low'),
        ('medium', 'Medium'),
        ('high', 'High'),
        ('urgent', 'Urgent'),
    ]

    STATUS_PENDING = 'pending'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_OVERDUE = 'overdue'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_OVERDUE, 'Overdue'),
    ]

    institution = models.ForeignKey(Institution, on_delete=models.CASCADE, related_name='follow_ups')
    lead = models.ForeignKey(Lead, on_delete=models.CASCADE, related_name='follow_ups')
    assigned_to = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, related_name='follow_ups')
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, related_name='created_follow_ups')
    follow_up_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default='call')
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default='medium')
    scheduled_at = models.DateTimeField(db_index=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    notes = models.TextField(blank=True)
    outcome_notes = models.TextField(blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    reminder_sent = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['scheduled_at']
        indexes = [
            models.Index(fields=['institution', 'assigned_to', 'status']),
            models.Index(fields=['status', 'scheduled_at']),
        ]

    def __str__(self):
        return f"{self.get_follow_up_type_display()} follow-up with {self.lead.name} at {self.scheduled_at:%Y-%m-%d %H:%M}"

    def is_overdue(self):
        return self.status in (self.STATUS_PENDING, self.STATUS_OVERDUE) and self.scheduled_at < timezone.now()

    def complete(self, user=None, outcome_notes=''):
        self.status = self.STATUS_COMPLETED
        self.completed_at = timezone.now()
        self.outcome_notes = outcome_notes
        self.save(update_fields=['status', 'completed_at', 'outcome_notes', 'updated_at'])
        self.lead.log_activity('follow_up_completed', f'{self.get_follow_up_type_display()} follow-up completed', user=user)


class LeadSourceTracking(models.Model):
    """
    Links a lead to the record it came from on an external platform

    Lets repeated webhook deliveries for the same submission resolve to the
    existing lead instead of creating a duplicate.
    """

    institution = models.ForeignKey(Institution, on_delete=models.CASCADE, related_name='lead_source_tracking')
    lead = models.ForeignKey(Lead, on_delete=models.CASCADE, related_name='source_tracking')
    platform = models.CharField(max_length=50, help_text='website, google_ads, facebook_ads, ...')
    external_id = models.CharField(max_length=200, blank=True, help_text='Submission id on the source platform')
    campaign_id = models.CharField(max_length=200, blank=True)
    form_id = models.CharField(max_length=200, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['institution', 'platform', 'external_id'],
                condition=~models.Q(external_id=''),
                name='unique_lead_source_external_id',
            ),
        ]

    def __str__(self):
        return f"{self.platform}:{self.external_id or '-'} → lead {self.lead_id}"


class AssignmentConfig(models.Model):
    """Per-institution lead routing settings"""

    ALGORITHM_ROUND_ROBIN = 'round_robin'
    ALGORITHM_LOAD_BASED = 'load_based'
    ALGORITHM_SKILL_BASED = 'skill_based'
    ALGORITHM_CHOICES = [
        (ALGORITHM_ROUND_ROBIN, 'Round Robin'),
        (ALGORITHM_LOAD_BASED, 'Load Based'),
        (ALGORITHM_SKILL_BASED, 'Skill Based'),
    ]

    institution = models.OneToOneField(Institution, on_delete=models.CASCADE, related_name='assignment_config')
    algorithm = models.CharField(max_length=20, choices=ALGORITHM_CHOICES, default=ALGORITHM_ROUND_ROBIN)
    auto_assign = models.BooleanField(default=True, help_text='Assign new leads automatically on intake')
    max_leads_per_user = models.PositiveIntegerField(default=50, help_text='Cap on active leads per telecaller (0 = unlimited)')
    skill_requirements = models.JSONField(default=dict, blank=True, help_text='Course keyword → accepted skills, e.g. {"mbbs": ["medicine", "biology"]}')
    last_assigned_user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+', help_text='Round-robin cursor')
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Assignment configuration'

    def __str__(self):
        return f"{self.institution}: {self.get_algorithm_display()}"

    @classmethod
    def for_institution(cls, institution):
        config, _ = cls.objects.get_or_create(institution=institution)
        return config
