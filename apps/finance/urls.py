from django.urls import path
from . import views

app_name = 'finance'

# Mounted under api/
urlpatterns = [
    path('super-admin/finance/', views.platform_finance_view, name='platform_finance'),

    path('<slug:tenant>/finance/calculate-fee/', views.calculate_fee_view, name='calculate_fee'),
    path('<slug:tenant>/finance/payments/', views.payment_list_view, name='payment_list'),
    path('<slug:tenant>/finance/payments/<int:pk>/status/', views.payment_status_view, name='payment_status'),
    path('<slug:tenant>/finance/metrics/', views.financial_metrics_view, name='financial_metrics'),
    path('<slug:tenant>/finance/dashboard/', views.finance_dashboard_view, name='finance_dashboard'),
    path('<slug:tenant>/finance/refunds/', views.refund_list_view, name='refund_list'),
    path('<slug:tenant>/finance/refunds/<int:pk>/decide/', views.refund_decide_view, name='refund_decide'),
    path('<slug:tenant>/finance/refunds/<int:pk>/process/', views.refund_process_view, name='refund_process'),
    path('<slug:tenant>/student/payments/<int:application_id>/', views.student_payments_view, name='student_payments'),
    path('<slug:tenant>/student/refund-request/', views.student_refund_request_view, name='student_refund_request'),
]
