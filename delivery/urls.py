from django.urls import path

from .views import (
    DeliveryPersonActivateView,
    DeliveryPersonDeactivateView,
    DeliveryPersonListView,
    DeliveryPersonRatingsView,
    DeliveryPersonsRatingsView,
    DeliveryPersonStatsView,
    DeliveryStatsOverviewView,
    MyDeliveryOrdersView,
)


urlpatterns = [
    path("", DeliveryPersonListView.as_view(), name="delivery-person-list"),
    path("stats/", DeliveryStatsOverviewView.as_view(), name="delivery-stats-overview"),
    path("ratings/", DeliveryPersonsRatingsView.as_view(), name="delivery-persons-ratings"),
    path("me/orders/", MyDeliveryOrdersView.as_view(), name="delivery-my-orders"),
    path("<uuid:pk>/stats/", DeliveryPersonStatsView.as_view(), name="delivery-person-stats"),
    path("<uuid:pk>/ratings/", DeliveryPersonRatingsView.as_view(), name="delivery-person-ratings"),
    path("<uuid:pk>/activate/", DeliveryPersonActivateView.as_view(), name="delivery-person-activate"),
    path("<uuid:pk>/deactivate/", DeliveryPersonDeactivateView.as_view(), name="delivery-person-deactivate"),
]
