from django.urls import path

from .views import (
    AssignDeliveryPersonView,
    OrderDetailView,
    OrderRatingView,
    OrderStatusUpdateView,
    PurgeDeliveredOrdersView,
    ReassignDeliveryPersonView,
)

urlpatterns = [
    path("delivered/", PurgeDeliveredOrdersView.as_view(), name="order-purge-delivered"),
    path("<uuid:pk>/", OrderDetailView.as_view(), name="order-detail"),
    path("<uuid:pk>/assign/", AssignDeliveryPersonView.as_view(), name="order-assign"),
    path("<uuid:pk>/reassign/", ReassignDeliveryPersonView.as_view(), name="order-reassign"),
    path("<uuid:pk>/status/", OrderStatusUpdateView.as_view(), name="order-status-update"),
    path("<uuid:pk>/rating/", OrderRatingView.as_view(), name="order-rating"),
]
