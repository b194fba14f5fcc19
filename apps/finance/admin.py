from django.contrib import admin
from .models import Payment, RefundRequest


class RefundRequestInline(admin.TabularInline):

    model = RefundRequest
    extra = 0
    fields = ['amount', 'status', 'requested_by', 'reviewed_by', 'created_at']
    readonly_fields = ['created_at']
    raw_id_fields = ['requested_by', 'reviewed_by']


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):

    list_display = ['id', 'institution', 'application', 'amount', 'currency', 'platform_fee', 'institution_amount', 'status', 'gateway', 'created_at']
    list_filter = ['status', 'payment_type', 'gateway', 'institution']
    search_fields = ['gateway_transaction_id', 'application__student_name', 'payer__email']
    list_select_related = ['institution', 'application']
    raw_id_fields = ['application', 'payer']
    readonly_fields = ['platform_fee', 'processing_fee', 'institution_amount', 'paid_at', 'created_at', 'updated_at']
    date_hierarchy = 'created_at'
    inlines = [RefundRequestInline]


@admin.register(RefundRequest)
class RefundRequestAdmin(admin.ModelAdmin):

    list_display = ['id', 'payment', 'amount', 'status', 'requested_by', 'reviewed_by', 'created_at']
    list_filter = ['status', 'institution']
    search_fields = ['reason', 'requested_by__email', 'application__student_name']
    raw_id_fields = ['payment', 'application', 'requested_by', 'reviewed_by']
    readonly_fields = ['reviewed_at', 'processed_at', 'created_at', 'updated_at']
