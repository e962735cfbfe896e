from django.contrib import admin
from django.urls import path, include



urlpatterns = [
    path("admin/", admin.site.urls),
    path('auth/', include('account.urls')),
    path('orders/', include('order.urls')),
    path('delivery-persons/', include('delivery.urls')),
    path('api/notifications/', include('notifications.urls')),
]
