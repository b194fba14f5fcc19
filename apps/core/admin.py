from django.contrib import admin
from .models import Institution


@admin.register(Institution)
class InstitutionAdmin(admin.ModelAdmin):

    list_display = ['name', 'slug', 'subscription_tier', 'status', 'users_count', 'created_at']
    list_filter = ['status', 'subscription_tier', 'created_at']
    search_fields = ['name', 'slug', 'email', 'phone']
    prepopulated_fields = {'slug': ('name',)}
    readonly_fields = ['intake_secret', 'created_at', 'updated_at']

    fieldsets = (
        ('Basic Information', {
            'fields': ('name', 'slug', 'logo', 'description')
        }),
        ('Contact Information', {
            'fields': ('phone', 'email', 'website', 'address', 'city', 'state', 'country')
        }),
        ('Subscription', {
            'fields': ('subscription_tier', 'status')
        }),
        ('Integrations', {
            'fields': ('intake_secret', 'settings'),
            'classes': ('collapse',)
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    def users_count(self, obj):
        return obj.get_active_users_count()
    users_count.short_description = 'Active users'
