from django.contrib import admin
from django.urls import path, include
from django.conf import settings
from django.conf.urls.static import static

# Main URL Configuration
# Every API route lives under api/. Tenant-scoped routes start with the
# institution slug: api/<tenant>/leads/, api/<tenant>/finance/payments/ ...

urlpatterns = [
    path('admin/', admin.site.urls),

    path('api/', include('apps.accounts.urls')),
    path('api/', include('apps.core.urls')),
    path('api/', include('apps.leads.urls')),
    path('api/', include('apps.admissions.urls')),
    path('api/', include('apps.appointments.urls')),
    path('api/', include('apps.documents.urls')),
    path('api/', include('apps.finance.urls')),
    path('api/', include('apps.notifications.urls')),
    path('api/', include('apps.communications.urls')),
]

if settings.DEBUG:
    # Media files (uploaded documents, avatars, logos)
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
