from django.urls import path
from . import views

app_name = 'core'

# Mounted under api/
# super-admin/ routes must stay ahead of the <slug:tenant>/ routes
urlpatterns = [
    path('health/', views.health_view, name='health'),

    # Platform administration
    path('super-admin/dashboard/', views.super_admin_dashboard_view, name='super_admin_dashboard'),
    path('super-admin/institutions/', views.institution_list_view, name='institution_list'),
    path('super-admin/institutions/bulk-status/', views.institution_bulk_status_view, name='institution_bulk_status'),
    path('super-admin/institutions/<int:pk>/', views.institution_detail_view, name='institution_detail'),
    path('super-admin/institutions/<int:pk>/status/', views.institution_status_view, name='institution_status'),

    # Institution
    path('<slug:tenant>/settings/', views.tenant_settings_view, name='tenant_settings'),
    path('<slug:tenant>/settings/intake-secret/', views.rotate_intake_secret_view, name='rotate_intake_secret'),
    path('<slug:tenant>/dashboard/', views.tenant_dashboard_view, name='tenant_dashboard'),
]
