from django.contrib import admin
from .models import Appointment


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):

    list_display = ['application', 'counselor', 'scheduled_at', 'duration_minutes', 'status', 'reminder_sent']
    list_filter = ['status', 'reminder_sent', 'institution']
    search_fields = ['application__student_name', 'counselor__email', 'notes']
    raw_id_fields = ['application', 'counselor']
    date_hierarchy = 'scheduled_at'
