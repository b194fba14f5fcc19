from django.contrib import admin
from .models import MessageTemplate, Communication


@admin.register(MessageTemplate)
class MessageTemplateAdmin(admin.ModelAdmin):

    list_display = ['name', 'institution', 'channel', 'category', 'is_active', 'updated_at']
    list_filter = ['channel', 'category', 'is_active', 'institution']
    search_fields = ['name', 'subject', 'body']
    readonly_fields = ['variables', 'created_at', 'updated_at']


@admin.register(Communication)
class CommunicationAdmin(admin.ModelAdmin):

    list_display = ['recipient', 'channel', 'status', 'institution', 'sender', 'retry_count', 'sent_at', 'created_at']
    list_filter = ['channel', 'status', 'institution']
    search_fields = ['recipient', 'subject', 'content', 'external_id']
    list_select_related = ['institution', 'sender']
    raw_id_fields = ['application', 'lead', 'sender', 'template']
    readonly_fields = ['external_id', 'sent_at', 'created_at', 'updated_at']
    date_hierarchy = 'created_at'
    actions = ['retry_selected']

    @admin.action(description='Queue selected failed messages again')
    def retry_selected(self, request, queryset):
        from .tasks import send_communication

        failed = queryset.filter(status=Communication.STATUS_FAILED)
        for communication in failed:
            send_communication.delay(communication.pk)
        self.message_user(request, f'{failed.count()} message(s) queued again.')
