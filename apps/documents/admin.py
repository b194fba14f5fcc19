from django.contrib import admin
from .models import Document, DocumentType


@admin.register(DocumentType)
class DocumentTypeAdmin(admin.ModelAdmin):

    list_display = ['name', 'institution', 'category', 'is_required', 'is_active']
    list_filter = ['category', 'is_required', 'is_active', 'institution']
    search_fields = ['name', 'description']


@admin.register(Document)
class DocumentAdmin(admin.ModelAdmin):

    list_display = ['original_name', 'application', 'document_type', 'status', 'uploaded_by', 'verifier', 'created_at']
    list_filter = ['status', 'document_type__category', 'institution']
    search_fields = ['original_name', 'application__student_name', 'uploaded_by__email']
    list_select_related = ['application', 'document_type', 'uploaded_by', 'verifier']
    raw_id_fields = ['application', 'uploaded_by', 'verifier']
    readonly_fields = ['mime_type', 'file_size', 'verified_at', 'rejected_at', 'created_at', 'updated_at']
    date_hierarchy = 'created_at'
