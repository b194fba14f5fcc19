# Models:
# 1. User - Custom user model (email login, institution + role)
# 2. UserProfile - Extended user information and notification preferences


from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin, BaseUserManager
from django.db import models
from django.utils import timezone
from django.core.validators import RegexValidator
from django.utils.translation import gettext_lazy as _


# ROLES

ROLE_SUPER_ADMIN = 'super_admin'
ROLE_INSTITUTION_ADMIN = 'institution_admin'
ROLE_TELECALLER = 'telecaller'
ROLE_ADMISSION_TEAM = 'admission_team'
ROLE_ADMISSION_HEAD = 'admission_head'
ROLE_DOCUMENT_VERIFIER = 'document_verifier'
ROLE_FINANCE_TEAM = 'finance_team'
ROLE_STUDENT = 'student'
ROLE_PARENT = 'parent'

ROLE_CHOICES = [
    (ROLE_SUPER_ADMIN, _('Super Admin')),
    (ROLE_INSTITUTION_ADMIN, _('Institution Admin')),
    (ROLE_TELECALLER, _('Telecaller')),
    (ROLE_ADMISSION_TEAM, _('Admission Team')),
    (ROLE_ADMISSION_HEAD, _('Admission Head')),
    (ROLE_DOCUMENT_VERIFIER, _('Document Verifier')),
    (ROLE_FINANCE_TEAM, _('Finance Team')),
    (ROLE_STUDENT, _('Student')),
    (ROLE_PARENT, _('Parent')),
]

# Staff roles work inside an institution's back office
STAFF_ROLES = (
    ROLE_INSTITUTION_ADMIN,
    ROLE_TELECALLER,
    ROLE_ADMISSION_TEAM,
    ROLE_ADMISSION_HEAD,
    ROLE_DOCUMENT_VERIFIER,
    ROLE_FINANCE_TEAM,
)

# Permission names exposed by the roles endpoint (used by the frontend to toggle menus)
ROLE_PERMISSIONS = {
    ROLE_SUPER_ADMIN: ['institutions.manage', 'platform.finance', 'platform.dashboard'],
    ROLE_INSTITUTION_ADMIN: ['users.manage', 'settings.manage', 'leads.manage', 'leads.assign', 'dashboard.view',
                             'finance.view', 'notifications.announce'],
    ROLE_TELECALLER: ['leads.own', 'calls.log', 'follow_ups.manage'],
    ROLE_ADMISSION_TEAM: ['applications.view', 'applications.review', 'appointments.manage', 'communications.send'],
    ROLE_ADMISSION_HEAD: ['applications.view', 'applications.decide', 'offers.manage', 'reports.view',
                          'communications.send'],
    ROLE_DOCUMENT_VERIFIER: ['documents.verify'],
    ROLE_FINANCE_TEAM: ['payments.manage', 'refunds.manage', 'finance.view'],
    ROLE_STUDENT: ['applications.own', 'documents.upload', 'payments.own'],
    ROLE_PARENT: ['applications.own', 'payments.own'],
}


class UserManager(BaseUserManager):
    """Accounts are keyed by a lower-cased email address"""

    def create_user(self, email, password=None, **extra_fields):
        """
        Staff and applicants both go through here, e.g.

            User.objects.create_user('caller@college.edu', 'pw', institution=college, role='telecaller')
        """
        if not email:
            raise ValueError(_('An email address is required'))

        for flag, default in (('is_active', True), ('is_staff', False), ('is_superuser', False)):
            extra_fields.setdefault(flag, default)

        user = self.model(email=self.normalize_email(email).lower(), **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """
        Create a platform super admin

        Super admins have no institution and can enter any tenant
        """
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('role', ROLE_SUPER_ADMIN)

        if extra_fields.get('is_staff') is not True:
            raise ValueError(_('Superuser must have is_staff=True'))
        if extra_fields.get('is_superuser') is not True:
            raise ValueError(_('Superuser must have is_superuser=True'))

        return self.create_user(email, password, **extra_fields)


# USER MODEL
class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model

    Features:
    - Email-based authentication (no username)
    - Multi-tenancy (institution field, empty only for super admins)
    - Role-based access (see ROLE_CHOICES)
    - Telecaller skills for skill-based lead routing
    - Performance tracking (leads assigned, converted)
    - Activity tracking (login count, last login IP)
    """

    email = models.EmailField(_('email address'), unique=True, max_length=255, db_index=True, help_text=_('Required. Used for login.'))
    first_name = models.CharField(_('first name'), max_length=50, blank=True)
    last_name = models.CharField(_('last name'), max_length=50, blank=True)

    # Phone validator (accepts: +919876543210, 9876543210, etc.)
    phone_validator = RegexValidator(regex=r'^\+?\d{9,15}$', message=_('Phone number must be entered in the format: +999999999. Up to 15 digits allowed.'))
    phone = models.CharField(_('phone number'), validators=[phone_validator], max_length=17, blank=True, null=True, help_text=_('Contact phone number (e.g., +919876543210)'))

    # INSTITUTION & ROLE (Multi-tenancy)
    institution = models.ForeignKey('core.Institution', on_delete=models.CASCADE, related_name='users',
                                    null=True, blank=True, verbose_name=_('institution'), help_text=_('The institution this user belongs to'))
    role = models.CharField(_('role'), max_length=30, choices=ROLE_CHOICES, default=ROLE_STUDENT, db_index=True)

    skills = models.JSONField(_('skills'), default=list, blank=True, help_text=_('Course areas a telecaller handles (e.g., ["engineering", "medicine"])'))
    avatar = models.ImageField(_('profile picture'), upload_to='avatars/%Y/%m/', blank=True, null=True)
    job_title = models.CharField(_('job title'), max_length=100, blank=True)

    total_leads_assigned = models.PositiveIntegerField(_('total leads assigned'), default=0)
    total_leads_converted = models.PositiveIntegerField(_('total leads converted'), default=0, help_text=_('Leads that became enrolled students'))
    login_count = models.PositiveIntegerField(_('login count'), default=0)
    last_login_ip = models.GenericIPAddressField(_('last login IP'), blank=True, null=True)
    is_active = models.BooleanField(_('active'), default=True, help_text=_('Unselect this instead of deleting accounts.'))
    is_staff = models.BooleanField(_('staff status'), default=False, help_text=_('Designates whether the user can log into admin site.'))
    date_joined = models.DateTimeField(_('date joined'), default=timezone.now)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    objects = UserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['first_name', 'last_name']

    class Meta:
        verbose_name = _('user')
        verbose_name_plural = _('users')
        ordering = ['-date_joined']
        indexes = [
            models.Index(fields=['institution', 'role']),
            models.Index(fields=['is_active']),
        ]

    def __str__(self):
        if self.first_name:
            return f'{self.get_full_name()} <{self.email}>'
        return self.email

    # Display names fall back to the email when no first name is set
    def get_full_name(self):
        if not self.first_name:
            return self.email
        return f'{self.first_name} {self.last_name}'.strip()

    def get_short_name(self):
        return self.first_name or self.email

    def get_initials(self):
        if not self.first_name:
            return self.email[:1].upper()
        return (self.first_name[:1] + self.last_name[:1]).upper()

    # ROLE CHECKS
    def is_super_admin(self):
        return self.role == ROLE_SUPER_ADMIN or self.is_superuser

    def is_institution_admin(self):
        return self.role == ROLE_INSTITUTION_ADMIN

    def is_telecaller(self):
        return self.role == ROLE_TELECALLER

    def is_staff_member(self):
        return self.role in STAFF_ROLES

    def has_role(self, *roles):
        return self.role in roles

    def belongs_to(self, institution):
        """True if the user may act inside ``institution``"""
        if self.is_super_admin():
            return True
        return institution is not None and self.institution_id == institution.pk

    def get_permissions(self):
        return ROLE_PERMISSIONS.get(self.role, [])

    # PERFORMANCE CALCULATIONS
    def get_conversion_rate(self):
        """
        Calculate lead conversion rate

        Formula: (converted leads / assigned leads) * 100
        """
        if self.total_leads_assigned == 0:
            return 0.0
        return round((self.total_leads_converted / self.total_leads_assigned) * 100, 1)

    # ACTIVITY TRACKING
    def increment_login_count(self, ip_address=None):
        self.login_count += 1
        if ip_address:
            self.last_login_ip = ip_address
        self.save(update_fields=['login_count', 'last_login_ip'])

    def increment_leads_assigned(self, count=1):
        self.total_leads_assigned = models.F('total_leads_assigned') + count
        self.save(update_fields=['total_leads_assigned'])
        self.refresh_from_db(fields=['total_leads_assigned'])

    def increment_leads_converted(self, count=1):
        self.total_leads_converted = models.F('total_leads_converted') + count
        self.save(update_fields=['total_leads_converted'])
        self.refresh_from_db(fields=['total_leads_converted'])


# PROFILE + DELIVERY PREFERENCES

class UserProfile(models.Model):
    """
    Personal details plus the per-channel switches apps.notifications consults

    One row per user, created by the post_save signal in accounts.signals.
    """

    FREQUENCY_IMMEDIATE = 'immediate'
    FREQUENCY_DAILY = 'daily'
    FREQUENCY_WEEKLY = 'weekly'
    FREQUENCY_CHOICES = [
        (FREQUENCY_IMMEDIATE, _('Immediate')),
        (FREQUENCY_DAILY, _('Daily digest')),
        (FREQUENCY_WEEKLY, _('Weekly digest')),
    ]

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='profile', verbose_name=_('user'))
    bio = models.TextField(_('biography'), max_length=500, blank=True)
    date_of_birth = models.DateField(_('date of birth'), blank=True, null=True)
    address = models.CharField(_('address'), max_length=255, blank=True)
    city = models.CharField(_('city'), max_length=100, blank=True)
    country = models.CharField(_('country'), max_length=100, blank=True, default='India')
    language = models.CharField(_('language'), max_length=10, choices=[('en', _('English')), ('hi', _('Hindi'))], default='en')

    # Notification preferences
    email_notifications = models.BooleanField(_('email notifications'), default=True)
    sms_notifications = models.BooleanField(_('SMS notifications'), default=False)
    whatsapp_notifications = models.BooleanField(_('WhatsApp notifications'), default=False)
    push_notifications = models.BooleanField(_('push notifications'), default=True, help_text=_('Real-time in-app push (WebSocket / SSE)'))
    notification_frequency = models.CharField(_('notification frequency'), max_length=20, choices=FREQUENCY_CHOICES, default=FREQUENCY_IMMEDIATE)
    muted_categories = models.JSONField(_('muted categories'), default=list, blank=True, help_text=_('Notification categories never delivered outside the app'))

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('user profile')
        verbose_name_plural = _('user profiles')

    def __str__(self):
        return f"{self.user.email} profile"

    def wants_channel(self, channel, category=None):
        """
        Check if out-of-app delivery over ``channel`` is enabled

        Args:
            channel (str): 'email', 'sms', 'whatsapp' or 'push'
            category (str, optional): Notification category, muted ones are skipped
        """
        if category and category in (self.muted_categories or []):
            return False
        return bool(getattr(self, f'{channel}_notifications', False))

    def notification_preferences(self):
        return {
            'email': self.email_notifications,
            'sms': self.sms_notifications,
            'whatsapp': self.whatsapp_notifications,
            'push': self.push_notifications,
            'frequency': self.notification_frequency,
            'muted_categories': self.muted_categories or [],
        }
