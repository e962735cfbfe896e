from django.urls import path

from .views import DeviceTokenView, NotificationListView, NotificationMarkAllReadView, NotificationReadView

urlpatterns = [
    path("", NotificationListView.as_view(), name="notifications-list"),
    path("device-token/", DeviceTokenView.as_view(), name="notifications-device-token"),
    path("read-all/", NotificationMarkAllReadView.as_view(), name="notifications-read-all"),
    path("<uuid:pk>/read/", NotificationReadView.as_view(), name="notifications-read-one"),
]
