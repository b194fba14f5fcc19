from django.urls import path
from . import views

app_name = 'leads'

# Mounted under api/
urlpatterns = [
    # Public intake (no session, identified by the institution's intake secret)
    path('webhooks/leads/<str:intake_secret>/<slug:platform>/', views.lead_webhook_view, name='lead_webhook'),

    # Leads
    path('<slug:tenant>/leads/', views.lead_list_view, name='lead_list'),
    path('<slug:tenant>/leads/assign/', views.lead_assign_view, name='lead_assign'),
    path('<slug:tenant>/leads/bulk-import/', views.lead_import_view, name='lead_import'),
    path('<slug:tenant>/leads/export/', views.lead_export_view, name='lead_export'),
    path('<slug:tenant>/leads/assignment-stats/', views.assignment_stats_view, name='assignment_stats'),
    path('<slug:tenant>/leads/assignment-config/', views.assignment_config_view, name='assignment_config'),
    path('<slug:tenant>/leads/mapping-preview/', views.mapping_preview_view, name='mapping_preview'),
    path('<slug:tenant>/leads/<int:pk>/', views.lead_detail_view, name='lead_detail'),
    path('<slug:tenant>/leads/<int:pk>/notes/', views.lead_notes_view, name='lead_notes'),
    path('<slug:tenant>/leads/<int:pk>/activities/', views.lead_activities_view, name='lead_activities'),
    path('<slug:tenant>/leads/<int:pk>/reassign/', views.lead_reassign_view, name='lead_reassign'),
    path('<slug:tenant>/leads/<int:pk>/convert/', views.lead_convert_view, name='lead_convert'),

    # Telecalling
    path('<slug:tenant>/telecaller/dashboard/', views.telecaller_dashboard_view, name='telecaller_dashboard'),
    path('<slug:tenant>/telecaller/leads/', views.telecaller_leads_view, name='telecaller_leads'),
    path('<slug:tenant>/telecaller/leads/<int:pk>/status/', views.telecaller_lead_status_view, name='telecaller_lead_status'),
    path('<slug:tenant>/telecaller/call-logs/', views.call_log_list_view, name='call_log_list'),
    path('<slug:tenant>/telecaller/call-logs/<int:pk>/', views.call_log_detail_view, name='call_log_detail'),
    path('<slug:tenant>/telecaller/follow-ups/', views.follow_up_list_view, name='follow_up_list'),
    path('<slug:tenant>/telecaller/follow-ups/<int:pk>/', views.follow_up_detail_view, name='follow_up_detail'),
    path('<slug:tenant>/telecaller/performance/', views.telecaller_performance_view, name='telecaller_performance'),
]
