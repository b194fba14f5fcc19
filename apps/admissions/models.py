from datetime import timedelta

from django.conf import settings
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from django.utils import timezone

from apps.core.models import Institution
from apps.leads.models import Lead


class Application(models.Model):
    """
    A lead that entered formal admission processing

    Status changes are mirrored onto the lead (see LEAD_STATUS_MAP) so the
    telecalling funnel and the admission funnel stay consistent.
    """

    STATUS_DRAFT = 'draft'
    STATUS_SUBMITTED = 'submitted'
    STATUS_UNDER_REVIEW = 'under_review'
    STATUS_DOCUMENTS_PENDING = 'documents_pending'
    STATUS_ADMITTED = 'admitted'
    STATUS_WAITLISTED = 'waitlisted'
    STATUS_REJECTED = 'rejected'
    STATUS_ENROLLED = 'enrolled'
    STATUS_WITHDRAWN = 'withdrawn'
    STATUS_CHOICES = [
        (STATUS_DRAFT, 'Draft'),
        (STATUS_SUBMITTED, 'Submitted'),
        (STATUS_UNDER_REVIEW, 'Under Review'),
        (STATUS_DOCUMENTS_PENDING, 'Documents Pending'),
        (STATUS_ADMITTED, 'Admitted'),
        (STATUS_WAITLISTED, 'Waitlisted'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_ENROLLED, 'Enrolled'),
        (STATUS_WITHDRAWN, 'Withdrawn'),
    ]

    # Applications still waiting for an admission decision
    OPEN_STATUSES = [STATUS_SUBMITTED, STATUS_UNDER_REVIEW, STATUS_DOCUMENTS_PENDING]

    LEAD_STATUS_MAP = {
        STATUS_SUBMITTED: Lead.STATUS_APPLICATION_STARTED,
        STATUS_UNDER_REVIEW: Lead.STATUS_UNDER_REVIEW,
        STATUS_ADMITTED: Lead.STATUS_ADMITTED,
        STATUS_REJECTED: Lead.STATUS_REJECTED,
        STATUS_ENROLLED: Lead.STATUS_ENROLLED,
        STATUS_WITHDRAWN: Lead.STATUS_LOST,
    }

    institution = models.ForeignKey(Institution, on_delete=models.CASCADE, related_name='applications')
    lead = models.OneToOneField(Lead, on_delete=models.SET_NULL, null=True, blank=True, related_name='application', help_text='Lead this application was converted from')
    student = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='applications', help_text='Student portal account')
    parents = models.ManyToManyField(settings.AUTH_USER_MODEL, blank=True, related_name='child_applications', help_text='Parent portal accounts with read access')

    # Applicant
    student_name = models.CharField(max_length=200)
    student_email = models.EmailField(blank=True)
    student_phone = models.CharField(max_length=20, blank=True)

    # Program
    course = models.CharField(max_length=200, blank=True)
    academic_year = models.CharField(max_length=20, blank=True, help_text='e.g. 2025-26')
    fee_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True, help_text='Annual program fee')
    program_start_date = models.DateField(null=True, blank=True)

    status = models.CharField(max_length=30, choices=STATUS_CHOICES, default=STATUS_SUBMITTED, db_index=True)
    notes = models.TextField(blank=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['institution', 'status']),
            models.Index(fields=['institution', '-created_at']),
        ]

    def __str__(self):
        return f"{self.student_name} - {self.course or 'No course'} ({self.get_status_display()})"

    def save(self, *args, **kwargs):
        if self.status != self.STATUS_DRAFT and not self.submitted_at:
            self.submitted_at = timezone.now()
        super().save(*args, **kwargs)

    def change_status(self, new_status, user=None, note=''):
        """
        Move the application and mirror the change onto its lead

        Returns:
            bool: False when the status did not change
        """
        if self.status == new_status:
            return False

        self.status = new_status
        self.save(update_fields=['status', 'submitted_at', 'updated_at'])

        lead_status = self.LEAD_STATUS_MAP.get(new_status)
        if self.lead_id and lead_status:
            self.lead.change_status(lead_status, user=user, note=note or f'Application {self.get_status_display().lower()}')
        return True

    def is_visible_to(self, user):
        """Student portal access: own application, or a linked parent"""
        if self.student_id == user.pk:
            return True
        return self.parents.filter(pk=user.pk).exists()

    def get_final_decision(self):
        review = getattr(self, 'review', None)
        return review.decision if review else ''

    def priority_score(self):
        """
        Review queue priority

        Older applications rise (2 points a day, up to 50), then status,
        academic score and an approved decision add weight. Rejected
        applications drop to 0.
        """
        reference = self.submitted_at or self.created_at
        score = min((timezone.now() - reference).days * 2, 50)
        score += {
            self.STATUS_SUBMITTED: 30,
            self.STATUS_UNDER_REVIEW: 20,
            self.STATUS_DOCUMENTS_PENDING: 40,
        }.get(self.status, 10)

        review = getattr(self, 'review', None)
        if review and review.academic_score is not None:
            score += float(review.academic_score) * 0.3
        if review and review.decision == AdmissionReview.DECISION_APPROVED:
            score += 100
        elif review and review.decision == AdmissionReview.DECISION_REJECTED:
            score = 0
        return round(score)


class AdmissionReview(models.Model):
    """
    Admission team review plus the admission head's final decision

    The team fills interview notes, academic score and a recommendation;
    the head records the decision (approved / rejected / waitlisted).
    """

    STATUS_PENDING = 'pending'
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_COMPLETED = 'completed'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_IN_PROGRESS, 'In Progress'),
        (STATUS_COMPLETED, 'Completed'),
    ]

    RECOMMENDATION_CHOICES = [
        ('recommend', 'Recommend'),
        ('not_recommend', 'Do Not Recommend'),
        ('waitlist', 'Waitlist'),
    ]

    DECISION_APPROVED = 'approved'
    DECISION_REJECTED = 'rejected'
    DECISION_WAITLISTED = 'waitlisted'
    DECISION_CHOICES = [
        (DECISION_APPROVED, 'Approved'),
        (DECISION_REJECTED, 'Rejected'),
        (DECISION_WAITLISTED, 'Waitlisted'),
    ]

    # Application status that follows each decision
    DECISION_APPLICATION_STATUS = {
        DECISION_APPROVED: Application.STATUS_ADMITTED,
        DECISION_REJECTED: Application.STATUS_REJECTED,
        DECISION_WAITLISTED: Application.STATUS_WAITLISTED,
    }

    application = models.OneToOneField(Application, on_delete=models.CASCADE, related_name='review')
    reviewer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, related_name='admission_reviews')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    interview_notes = models.TextField(blank=True, max_length=1000)
    academic_score = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True, validators=[MinValueValidator(0), MaxValueValidator(100)])
    recommendations = models.TextField(blank=True, max_length=1000)
    recommendation = models.CharField(max_length=20, choices=RECOMMENDATION_CHOICES, blank=True, help_text="Admission team's recommendation")

    decision = models.CharField(max_length=20, choices=DECISION_CHOICES, blank=True, db_index=True)
    decision_reason = models.TextField(blank=True)
    decided_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='admission_decisions')
    decided_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-updated_at']

    def __str__(self):
        return f"Review of {self.application.student_name} ({self.get_decision_display() or 'undecided'})"

    def is_decided(self):
        return bool(self.decision)


class OfferLetterTemplate(models.Model):

    institution = models.ForeignKey(Institution, on_delete=models.CASCADE, related_name='offer_letter_templates')
    name = models.CharField(max_length=100)
    subject = models.CharField(max_length=200)
    body = models.TextField(help_text='Text with {{variable}} / {{object.property}} placeholders')
    is_active = models.BooleanField(default=True)
    is_default = models.BooleanField(default=False, help_text='Used when no template is picked')
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-is_default', 'name']
        constraints = [
            models.UniqueConstraint(fields=['institution', 'name'], name='unique_offer_template_name'),
        ]

    def __str__(self):
        return f"{self.name} ({self.institution})"

    def save(self, *args, **kwargs):
        super().save(*args, **kwargs)
        if self.is_default:
            # Only one default per institution
            OfferLetterTemplate.objects.filter(institution=self.institution, is_default=True).exclude(pk=self.pk).update(is_default=False)


class OfferLetter(models.Model):

    STATUS_DRAFT = 'draft'
    STATUS_SENT = 'sent'
    STATUS_VIEWED = 'viewed'
    STATUS_ACCEPTED = 'accepted'
    STATUS_DECLINED = 'declined'
    STATUS_EXPIRED = 'expired'
    STATUS_CHOICES = [
        (STATUS_DRAFT, 'Draft'),
        (STATUS_SENT, 'Sent'),
        (STATUS_VIEWED, 'Viewed'),
        (STATUS_ACCEPTED, 'Accepted'),
        (STATUS_DECLINED, 'Declined'),
        (STATUS_EXPIRED, 'Expired'),
    ]

    TERMINAL_STATUSES = [STATUS_ACCEPTED, STATUS_DECLINED, STATUS_EXPIRED]
    # The student can answer a letter in these states
    RESPONDABLE_STATUSES = [STATUS_SENT, STATUS_VIEWED]

    institution = models.ForeignKey(Institution, on_delete=models.CASCADE, related_name='offer_letters')
    application = models.OneToOneField(Application, on_delete=models.CASCADE, related_name='offer_letter')
    template = models.ForeignKey(OfferLetterTemplate, on_delete=models.SET_NULL, null=True, blank=True, related_name='offer_letters')
    subject = models.CharField(max_length=200)
    body = models.TextField(help_text='Rendered letter text')
    variables = models.JSONField(default=dict, blank=True, help_text='Values used to render the letter')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_DRAFT, db_index=True)
    generated_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, related_name='generated_offer_letters')
    distribution_channels = models.JSONField(default=list, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    viewed_at = models.DateTimeField(null=True, blank=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    declined_at = models.DateTimeField(null=True, blank=True)
    decline_reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['institution', 'status']),
            models.Index(fields=['status', 'expires_at']),
        ]

    def __str__(self):
        return f"Offer for {self.application.student_name} ({self.get_status_display()})"

    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def is_expired(self):
        return self.status == self.STATUS_EXPIRED or (
            self.expires_at is not None and self.expires_at < timezone.now() and not self.is_terminal()
        )

    def default_expiry(self):
        return timezone.now() + timedelta(days=settings.OFFER_LETTER_VALIDITY_DAYS)
