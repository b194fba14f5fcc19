from django.contrib import admin
from .models import Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):

    list_display = ['title', 'user', 'institution', 'category', 'notification_type', 'priority', 'is_read', 'created_at']
    list_filter = ['category', 'notification_type', 'priority', 'is_read', 'institution']
    search_fields = ['title', 'message', 'user__email']
    list_select_related = ['user', 'institution']
    raw_id_fields = ['user', 'lead']
    readonly_fields = ['created_at', 'read_at']
    date_hierarchy = 'created_at'
