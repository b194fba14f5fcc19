import secrets

from django.db import models
from django.core.exceptions import ValidationError
from django.utils.text import slugify
from django.utils.translation import gettext_lazy as _


# Slugs that would collide with top-level API routes
RESERVED_SLUGS = {'auth', 'super-admin', 'webhooks', 'health', 'public', 'admin', 'static', 'media', 'ws'}


def generate_intake_secret():
    return secrets.token_urlsafe(24)


class Institution(models.Model):
    """
    A tenant of the platform (school, college, university)

    Every lead, application, document, payment and notification is scoped
    to exactly one institution. API routes address it by ``slug``.
    """

    TIER_STARTER = 'starter'
    TIER_PRO = 'pro'
    TIER_MAX = 'max'
    TIER_CHOICES = [
        (TIER_STARTER, _('Starter')),
        (TIER_PRO, _('Pro')),
        (TIER_MAX, _('Max')),
    ]

    STATUS_ACTIVE = 'active'
    STATUS_SUSPENDED = 'suspended'
    STATUS_INACTIVE = 'inactive'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, _('Active')),
        (STATUS_SUSPENDED, _('Suspended')),
        (STATUS_INACTIVE, _('Inactive')),
    ]

    # Basic Information
    name = models.CharField(max_length=200, unique=True, help_text="Institution name")
    slug = models.SlugField(max_length=100, unique=True, help_text="URL-friendly name (auto-generated)")
    logo = models.ImageField(upload_to='institutions/logos/', null=True, blank=True, help_text="Institution logo")
    description = models.TextField(blank=True, help_text="Brief description about the institution")

    # Contact Information
    email = models.EmailField(blank=True, help_text="Admissions contact email")
    phone = models.CharField(max_length=20, blank=True, help_text="Admissions contact phone number")
    website = models.URLField(blank=True, help_text="Institution website")
    address = models.TextField(blank=True, help_text="Physical address")
    city = models.CharField(max_length=100, blank=True)
    state = models.CharField(max_length=100, blank=True)
    country = models.CharField(max_length=100, blank=True, default='India')

    # Subscription & Status
    subscription_tier = models.CharField(max_length=20, choices=TIER_CHOICES, default=TIER_STARTER, db_index=True, help_text="Determines platform fee rates")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ACTIVE, db_index=True, help_text="Suspended institutions cannot use the API")

    # Integrations
    intake_secret = models.CharField(max_length=64, unique=True, default=generate_intake_secret, help_text="Secret path segment for the public lead intake webhook")
    settings = models.JSONField(default=dict, blank=True, help_text="Free-form institution settings (branding, academic year, courses...)")

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Institution"
        verbose_name_plural = "Institutions"
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['slug']),
            models.Index(fields=['status']),
        ]

    def __str__(self):
        return self.name

    def clean(self):
        if self.slug and self.slug in RESERVED_SLUGS:
            raise ValidationError({'slug': _('This slug is reserved.')})

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = self._unique_slug()
        super().save(*args, **kwargs)

    def _unique_slug(self):
        base = slugify(self.name)[:90] or 'institution'
        if base in RESERVED_SLUGS:
            base = f'{base}-institution'
        slug = base
        counter = 2
        while Institution.objects.filter(slug=slug).exclude(pk=self.pk).exists():
            slug = f'{base}-{counter}'
            counter += 1
        return slug

    @property
    def is_active(self):
        return self.status == self.STATUS_ACTIVE

    def rotate_intake_secret(self):
        self.intake_secret = generate_intake_secret()
        self.save(update_fields=['intake_secret', 'updated_at'])
        return self.intake_secret

    def get_active_users_count(self):
        return self.users.filter(is_active=True).count()

    def get_telecallers(self):
        return self.users.filter(is_active=True, role='telecaller')
