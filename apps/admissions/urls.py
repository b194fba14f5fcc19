from django.urls import path
from . import views

app_name = 'admissions'

# Mounted under api/
urlpatterns = [
    # Admission team
    path('<slug:tenant>/admission-team/dashboard/', views.admission_team_dashboard_view, name='team_dashboard'),
    path('<slug:tenant>/admission-team/applications/', views.application_list_view, name='application_list'),
    path('<slug:tenant>/admission-team/applications/<int:pk>/', views.application_detail_view, name='application_detail'),
    path('<slug:tenant>/admission-team/applications/<int:pk>/review/', views.application_review_view, name='application_review'),

    # Admission head
    path('<slug:tenant>/admission-head/dashboard/', views.admission_head_dashboard_view, name='head_dashboard'),
    path('<slug:tenant>/admission-head/reports/', views.admission_reports_view, name='reports'),
    path('<slug:tenant>/admission-head/approvals/', views.approval_list_view, name='approval_list'),
    path('<slug:tenant>/admission-head/approvals/<int:review_id>/decide/', views.approval_decide_view, name='approval_decide'),
    path('<slug:tenant>/admission-head/offer-templates/', views.offer_template_list_view, name='offer_template_list'),
    path('<slug:tenant>/admission-head/offer-templates/<int:pk>/', views.offer_template_detail_view, name='offer_template_detail'),
    path('<slug:tenant>/admission-head/offers/', views.offer_list_view, name='offer_list'),
    path('<slug:tenant>/admission-head/offers/generate/', views.offer_generate_view, name='offer_generate'),
    path('<slug:tenant>/admission-head/offers/bulk-generate/', views.offer_bulk_generate_view, name='offer_bulk_generate'),
    path('<slug:tenant>/admission-head/offers/distribute/', views.offer_distribute_view, name='offer_distribute'),

    # Student / parent portal
    path('<slug:tenant>/student/applications/', views.student_application_list_view, name='student_application_list'),
    path('<slug:tenant>/student/applications/<int:pk>/', views.student_application_detail_view, name='student_application_detail'),
    path('<slug:tenant>/student/offer-letter/<int:application_id>/', views.student_offer_view, name='student_offer'),
    path('<slug:tenant>/student/offer-letter/<int:application_id>/accept/', views.student_offer_accept_view, name='student_offer_accept'),
    path('<slug:tenant>/student/offer-letter/<int:application_id>/decline/', views.student_offer_decline_view, name='student_offer_decline'),
]
