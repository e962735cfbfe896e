from django.contrib import admin

from .models import Order, OrderAssignment, OrderStatusHistory


class _ReadOnlyInline(admin.TabularInline):
    extra = 0
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


class OrderAssignmentInline(_ReadOnlyInline):
    model = OrderAssignment
    fields = readonly_fields = (
        "delivery_person",
        "assigned_by",
        "assigned_at",
        "released_at",
        "delivered_at",
        "completed_at",
    )


class OrderStatusHistoryInline(_ReadOnlyInline):
    model = OrderStatusHistory
    fields = readonly_fields = ("from_status", "to_status", "changed_by", "notes", "changed_at")


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """Browse orders; lifecycle fields change only through the assignment and status endpoints."""

    list_display = ("order_number", "customer", "status", "delivery_person", "total_amount", "created_at")
    list_filter = ("status",)
    search_fields = ("order_number", "customer__email", "delivery_person__email")
    readonly_fields = (
        "order_number",
        "status",
        "delivery_person",
        "assigned_at",
        "estimated_delivery_time",
        "delivery_notes",
        "delivered_at",
        "version",
        "created_at",
        "updated_at",
    )
    inlines = [OrderAssignmentInline, OrderStatusHistoryInline]

    def has_delete_permission(self, request, obj=None):
        # Delivered orders are removed through the purge endpoint.
        return False
