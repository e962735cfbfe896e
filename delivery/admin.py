from django.contrib import admin

from .models import DeliveryRating


@admin.register(DeliveryRating)
class DeliveryRatingAdmin(admin.ModelAdmin):
    list_display = ("order_number", "delivery_person", "customer", "stars", "rated_at")
    list_filter = ("stars",)
    search_fields = ("order_number", "delivery_person__email", "customer__email")
