from django.urls import path
from . import views

app_name = 'documents'

# Mounted under api/
urlpatterns = [
    path('<slug:tenant>/documents/upload/', views.document_upload_view, name='document_upload'),
    path('<slug:tenant>/documents/queue/', views.document_queue_view, name='document_queue'),
    path('<slug:tenant>/documents/batch-verify/', views.document_batch_verify_view, name='document_batch_verify'),
    path('<slug:tenant>/documents/<int:pk>/', views.document_detail_view, name='document_detail'),
    path('<slug:tenant>/documents/<int:pk>/verify/', views.document_verify_view, name='document_verify'),
    path('<slug:tenant>/document-types/', views.document_type_list_view, name='document_type_list'),
    path('<slug:tenant>/document-verifier/dashboard/', views.verifier_dashboard_view, name='verifier_dashboard'),
    path('<slug:tenant>/document-verifier/history/', views.verifier_history_view, name='verifier_history'),
    path('<slug:tenant>/student/documents/<int:application_id>/', views.student_documents_view, name='student_documents'),
]
