from django.urls import path
from . import views

app_name = 'accounts'

# Mounted under api/
urlpatterns = [
    # Session authentication
    path('auth/csrf/', views.csrf_view, name='csrf'),
    path('auth/login/', views.login_view, name='login'),
    path('auth/logout/', views.logout_view, name='logout'),
    path('auth/me/', views.me_view, name='me'),
    path('auth/change-password/', views.password_change_view, name='password_change'),
    path('auth/password-reset/', views.password_reset_request_view, name='password_reset'),
    path('auth/password-reset/confirm/', views.password_reset_confirm_view, name='password_reset_confirm'),

    # Institution user management
    path('<slug:tenant>/users/', views.user_list_view, name='user_list'),
    path('<slug:tenant>/users/<int:pk>/', views.user_detail_view, name='user_detail'),
    path('<slug:tenant>/roles/', views.role_list_view, name='role_list'),
]
