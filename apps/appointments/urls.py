from django.urls import path
from . import views

app_name = 'appointments'

# Mounted under api/
urlpatterns = [
    path('<slug:tenant>/admission-team/appointments/', views.appointment_list_view, name='appointment_list'),
    path('<slug:tenant>/admission-team/appointments/<int:pk>/', views.appointment_detail_view, name='appointment_detail'),
]
