"""
URL routing for order API endpoints.
"""
from django.urls import path

from . import views

app_name = 'orders'

urlpatterns = [
    path('orders/', views.OrderListCreateView.as_view(), name='order-list'),
    path('orders/stores/<int:store_id>/stats/', views.OrderStatsView.as_view(), name='order-stats'),
    path('orders/<int:pk>/', views.OrderDetailView.as_view(), name='order-detail'),
    path('orders/<int:pk>/status/', views.OrderStatusView.as_view(), name='order-status'),
    path('orders/<int:pk>/reorder/', views.ReorderView.as_view(), name='order-reorder'),
    path('orders/<int:pk>/checkin/', views.CheckInView.as_view(), name='order-checkin'),
    path('orders/<int:pk>/verify-pickup/', views.VerifyPickupView.as_view(), name='order-verify-pickup'),
    path('orders/<int:pk>/estimated-time/', views.EstimatedTimeView.as_view(), name='order-estimated-time'),
    path('orders/<int:pk>/apply-coupon/', views.ApplyCouponView.as_view(), name='order-apply-coupon'),
]
