from django.contrib import admin
from django.utils import timezone
from django.utils.html import format_html

from .models import Lead, LeadNote, Activity, CallLog, FollowUp, LeadSourceTracking, AssignmentConfig


class LeadNoteInline(admin.TabularInline):

    model = LeadNote
    extra = 1
    readonly_fields = ['created_at']
    fields = ['user', 'content', 'created_at']
    classes = ['collapse']

    def get_queryset(self, request):
        return super().get_queryset(request).select_related('user')


class ActivityInline(admin.TabularInline):

    model = Activity
    extra = 0  # Activities are written by the application, never by hand
    readonly_fields = ['user', 'activity_type', 'description', 'created_at']
    fields = ['created_at', 'user', 'activity_type', 'description']
    classes = ['collapse']
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


STATUS_COLORS = {
    'new': '#17a2b8',
    'contacted': '#007bff',
    'qualified': '#6610f2',
    'interested': '#667eea',
    'application_started': '#fd7e14',
    'documents_submitted': '#ffc107',
    'under_review': '#20c997',
    'admitted': '#28a745',
    'enrolled': '#155724',
    'rejected': '#dc3545',
    'lost': '#6c757d',
}


@admin.register(Lead)
class LeadAdmin(admin.ModelAdmin):

    list_display = [
        'id',
        'name',
        'phone',
        'source',
        'status_badge',
        'score_display',
        'assigned_to_display',
        'institution',
        'created_at_display',
        'next_follow_up_display',
    ]
    list_filter = ['institution', 'status', 'source', 'platform', 'created_at']
    search_fields = ['name', 'phone', 'email', 'course_interest', 'notes']
    raw_id_fields = ['assigned_to']
    ordering = ['-created_at']
    list_per_page = 50
    date_hierarchy = 'created_at'
    readonly_fields = ['score_breakdown', 'created_at', 'updated_at']
    inlines = [LeadNoteInline, ActivityInline]
    actions = ['mark_as_contacted', 'mark_as_lost']

    fieldsets = [
        ('Lead', {
            'fields': ['institution', 'name', 'email', 'phone', 'source', 'platform', 'status', 'tags']
        }),
        ('Academic interest', {
            'fields': ['course_interest', 'qualification', 'city', 'state', 'extra_data']
        }),
        ('Assignment', {
            'fields': ['assigned_to', 'assigned_at', 'last_contacted_at', 'next_follow_up']
        }),
        ('Scoring', {
            'fields': ['score', 'score_breakdown'],
            'classes': ['collapse'],
        }),
        ('Notes & timestamps', {
            'fields': ['notes', 'created_at', 'updated_at'],
            'classes': ['collapse'],
        }),
    ]

    @staticmethod
    def _pill(background, text, radius='3px'):
        return format_html(
            '<span style="background:{};color:#fff;padding:2px 7px;border-radius:{};font-size:11px;">{}</span>',
            background, radius, text,
        )

    @admin.display(description='Status', ordering='status')
    def status_badge(self, obj):
        return self._pill(STATUS_COLORS.get(obj.status, '#6c757d'), obj.get_status_display())

    @admin.display(description='Score', ordering='score')
    def score_display(self, obj):
        color = '#28a745' if obj.score >= 70 else '#ffc107' if obj.score >= 40 else '#dc3545'
        return format_html('<strong style="color: {};">{}</strong>', color, obj.score)

    @admin.display(description='Counselor', ordering='assigned_to__first_name')
    def assigned_to_display(self, obj):
        user = obj.assigned_to
        if user is None:
            return format_html('<em style="color:#999;">{}</em>', 'unassigned')
        return format_html('{} {}', self._pill('#667eea', user.get_initials(), radius='50%'), user.get_full_name())

    @admin.display(description='Received', ordering='created_at')
    def created_at_display(self, obj):
        return format_html('<span title="{}">{}</span>', obj.created_at.isoformat(), obj.time_since_created())

    @admin.display(description='Follow-up due', ordering='next_follow_up')
    def next_follow_up_display(self, obj):
        due = obj.next_follow_up
        if due is None:
            return '-'
        overdue = due < timezone.now()
        return format_html(
            '<span style="color: {};">{}</span>',
            '#dc3545' if overdue else '#28a745',
            timezone.localtime(due).strftime('%d %b %Y %H:%M'),
        )

    @admin.action(description='Mark selected leads as contacted')
    def mark_as_contacted(self, request, queryset):
        updated = sum(lead.change_status(Lead.STATUS_CONTACTED, user=request.user) for lead in queryset)
        self.message_user(request, f'{updated} lead(s) marked as contacted.')

    @admin.action(description='Mark selected leads as lost')
    def mark_as_lost(self, request, queryset):
        updated = sum(lead.change_status(Lead.STATUS_LOST, user=request.user) for lead in queryset)
        self.message_user(request, f'{updated} lead(s) marked as lost.')

    def get_queryset(self, request):
        return super().get_queryset(request).select_related('assigned_to', 'institution')


@admin.register(Activity)
class ActivityAdmin(admin.ModelAdmin):

    list_display = ['lead', 'user', 'activity_type', 'description', 'created_at']
    list_filter = ['activity_type', 'created_at']
    search_fields = ['lead__name', 'description']
    date_hierarchy = 'created_at'

    # Timeline entries are an audit trail
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def get_queryset(self, request):
        return super().get_queryset(request).select_related('lead', 'user')


@admin.register(CallLog)
class CallLogAdmin(admin.ModelAdmin):

    list_display = ['lead', 'telecaller', 'call_type', 'status', 'outcome', 'duration_seconds', 'started_at']
    list_filter = ['call_type', 'status', 'outcome', 'institution']
    search_fields = ['lead__name', 'lead__phone', 'telecaller__email', 'notes']
    raw_id_fields = ['lead', 'telecaller']
    date_hierarchy = 'started_at'


@admin.register(FollowUp)
class FollowUpAdmin(admin.ModelAdmin):

    list_display = ['lead', 'assigned_to', 'follow_up_type', 'priority', 'scheduled_at', 'status', 'reminder_sent']
    list_filter = ['status', 'follow_up_type', 'priority', 'institution']
    search_fields = ['lead__name', 'notes']
    raw_id_fields = ['lead', 'assigned_to', 'created_by']
    date_hierarchy = 'scheduled_at'


@admin.register(LeadSourceTracking)
class LeadSourceTrackingAdmin(admin.ModelAdmin):

    list_display = ['lead', 'platform', 'external_id', 'campaign_id', 'form_id', 'created_at']
    list_filter = ['platform', 'institution']
    search_fields = ['external_id', 'campaign_id', 'lead__name']
    raw_id_fields = ['lead']


@admin.register(AssignmentConfig)
class AssignmentConfigAdmin(admin.ModelAdmin):

    list_display = ['institution', 'algorithm', 'auto_assign', 'max_leads_per_user', 'updated_at']
    list_filter = ['algorithm', 'auto_assign']
    raw_id_fields = ['last_assigned_user']
