from django.urls import path
from . import views

app_name = 'communications'

# Mounted under api/
urlpatterns = [
    path('<slug:tenant>/communications/', views.communication_list_view, name='communication_list'),
    path('<slug:tenant>/communications/templates/', views.template_list_view, name='template_list'),
    path('<slug:tenant>/communications/templates/<int:pk>/', views.template_detail_view, name='template_detail'),
    path('<slug:tenant>/communications/send/template/', views.send_template_view, name='send_template'),
    path('<slug:tenant>/communications/send/direct/', views.send_direct_view, name='send_direct'),
    path('<slug:tenant>/communications/send/bulk/', views.send_bulk_view, name='send_bulk'),
    path('<slug:tenant>/communications/stats/', views.communication_stats_view, name='communication_stats'),
    path('<slug:tenant>/communications/applications/<int:application_id>/', views.application_communications_view, name='application_communications'),
]
