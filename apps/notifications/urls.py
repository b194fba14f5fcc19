from django.urls import path
from . import views

app_name = 'notifications'

# Mounted under api/
urlpatterns = [
    path('<slug:tenant>/notifications/', views.notification_list_view, name='notification_list'),
    path('<slug:tenant>/notifications/stats/', views.notification_stats_view, name='notification_stats'),
    path('<slug:tenant>/notifications/categories/', views.notification_categories_view, name='notification_categories'),
    path('<slug:tenant>/notifications/poll/', views.notification_poll_view, name='notification_poll'),
    path('<slug:tenant>/notifications/stream/', views.notification_stream_view, name='notification_stream'),
    path('<slug:tenant>/notifications/mark-read/', views.notification_mark_read_view, name='notification_mark_read'),
    path('<slug:tenant>/notifications/mark-all-read/', views.notification_mark_all_read_view, name='notification_mark_all_read'),
    path('<slug:tenant>/notifications/delete-all/', views.notification_delete_all_view, name='notification_delete_all'),
    path('<slug:tenant>/notifications/preferences/', views.notification_preferences_view, name='notification_preferences'),
    path('<slug:tenant>/notifications/announcement/', views.announcement_view, name='announcement'),
    path('<slug:tenant>/notifications/<int:pk>/', views.notification_delete_view, name='notification_delete'),
    path('<slug:tenant>/notifications/<int:pk>/read/', views.notification_read_view, name='notification_read'),
]
