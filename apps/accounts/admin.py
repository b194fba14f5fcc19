from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils.translation import gettext_lazy as _
from .models import User, UserProfile


# USER PROFILE INLINE (Edit profile inside user form)
class UserProfileInline(admin.StackedInline):
    model = UserProfile
    can_delete = False
    fk_name = "user"
    extra = 0
    max_num = 1

    fieldsets = (
        (_('Personal Information'), {
            'fields': ('bio', 'date_of_birth', 'address', 'city', 'country', 'language'),
        }),
        (_('Notification Settings'), {
            'fields': ('email_notifications', 'sms_notifications', 'whatsapp_notifications',
                       'push_notifications', 'notification_frequency', 'muted_categories'),
            'classes': ('collapse',),
        }),
    )


# CUSTOM USER ADMIN
@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ('email', 'get_full_name', 'institution', 'role', 'is_active', 'total_leads_assigned', 'login_count', 'date_joined')
    list_filter = ('role', 'is_active', 'is_staff', 'institution')
    search_fields = ('email', 'first_name', 'last_name', 'phone', 'institution__name')
    ordering = ('-date_joined',)
    list_select_related = ('institution',)
    inlines = [UserProfileInline]

    fieldsets = (
        (None, {'fields': ('email', 'password')}),
        (_('Personal info'), {'fields': ('first_name', 'last_name', 'phone', 'avatar', 'job_title')}),
        (_('Institution & Role'), {'fields': ('institution', 'role', 'skills')}),
        (_('Performance'), {'fields': ('total_leads_assigned', 'total_leads_converted'), 'classes': ('collapse',)}),
        (_('Permissions'), {'fields': ('is_active', 'is_staff', 'is_superuser', 'groups', 'user_permissions'), 'classes': ('collapse',)}),
        (_('Activity'), {'fields': ('last_login', 'last_login_ip', 'login_count', 'date_joined')}),
    )
    readonly_fields = ('last_login', 'last_login_ip', 'login_count', 'date_joined')

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('email', 'first_name', 'last_name', 'institution', 'role', 'password1', 'password2'),
        }),
    )
