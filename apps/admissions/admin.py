from django.contrib import admin
from .models import Application, AdmissionReview, OfferLetterTemplate, OfferLetter


class AdmissionReviewInline(admin.StackedInline):
    model = AdmissionReview
    extra = 0
    fk_name = 'application'
    raw_id_fields = ['reviewer', 'decided_by']


@admin.register(Application)
class ApplicationAdmin(admin.ModelAdmin):

    list_display = ['student_name', 'course', 'academic_year', 'status', 'institution', 'submitted_at', 'created_at']
    list_filter = ['status', 'institution', 'academic_year']
    search_fields = ['student_name', 'student_email', 'student_phone', 'course']
    raw_id_fields = ['lead', 'student']
    filter_horizontal = ['parents']
    readonly_fields = ['submitted_at', 'created_at', 'updated_at']
    inlines = [AdmissionReviewInline]

    fieldsets = (
        ('Applicant', {
            'fields': ('institution', 'lead', 'student', 'parents', 'student_name', 'student_email', 'student_phone')
        }),
        ('Program', {
            'fields': ('course', 'academic_year', 'fee_amount', 'program_start_date')
        }),
        ('Status', {
            'fields': ('status', 'notes', 'submitted_at', 'created_at', 'updated_at')
        }),
    )


@admin.register(AdmissionReview)
class AdmissionReviewAdmin(admin.ModelAdmin):

    list_display = ['application', 'reviewer', 'status', 'recommendation', 'decision', 'decided_by', 'decided_at']
    list_filter = ['status', 'recommendation', 'decision']
    search_fields = ['application__student_name', 'reviewer__email']
    raw_id_fields = ['application', 'reviewer', 'decided_by']


@admin.register(OfferLetterTemplate)
class OfferLetterTemplateAdmin(admin.ModelAdmin):

    list_display = ['name', 'institution', 'is_active', 'is_default', 'created_at']
    list_filter = ['is_active', 'is_default', 'institution']
    search_fields = ['name', 'subject']


@admin.register(OfferLetter)
class OfferLetterAdmin(admin.ModelAdmin):

    list_display = ['application', 'status', 'institution', 'sent_at', 'expires_at', 'accepted_at', 'declined_at']
    list_filter = ['status', 'institution']
    search_fields = ['application__student_name', 'subject']
    raw_id_fields = ['application', 'template', 'generated_by']
    readonly_fields = ['sent_at', 'viewed_at', 'accepted_at', 'declined_at', 'created_at', 'updated_at']
