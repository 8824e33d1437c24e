"""
URL routing for promotion API endpoints.
"""
from django.urls import path

from . import views

app_name = 'promotions'

urlpatterns = [
    path(
        'stores/<int:store_id>/promotions/',
        views.StorePromotionListCreateView.as_view(),
        name='store-promotions'
    ),
    path(
        'promotions/<int:pk>/',
        views.PromotionDetailView.as_view(),
        name='promotion-detail'
    ),
]
