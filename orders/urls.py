"""
ORDERS App - URL Configuration
"""

from django.urls import path

from . import views

app_name = 'orders'

urlpatterns = [
    path('<uuid:order_id>/', views.OrderDetailView.as_view(), name='detail'),
    path('<uuid:order_id>/history/', views.OrderHistoryView.as_view(), name='history'),
    path('<uuid:order_id>/claim/', views.ClaimOrderView.as_view(), name='claim'),
    path('<uuid:order_id>/advance/', views.AdvanceOrderView.as_view(), name='advance'),
    path('<uuid:order_id>/handoff-code/', views.GenerateHandoffCodeView.as_view(), name='handoff-code'),
    path('<uuid:order_id>/handoff-code/reissue/', views.ReissueHandoffCodeView.as_view(), name='handoff-code-reissue'),
    path('<uuid:order_id>/verify/', views.VerifyHandoffCodeView.as_view(), name='verify'),
    path('<uuid:order_id>/cancel/', views.CancelOrderView.as_view(), name='cancel'),
    path('<uuid:order_id>/rate/', views.RateOrderView.as_view(), name='rate'),
]
