import django.db.models.deletion
from django.db import migrations, models


def copy_order_refs(apps, schema_editor):
    OrderAssignment = apps.get_model("order", "OrderAssignment")
    for row in OrderAssignment.objects.filter(order_ref__isnull=True).select_related("order"):
        row.order_ref = row.order_id
        if row.released_at is None and row.order.delivered_at is not None:
            row.delivered_at = row.order.delivered_at
            if row.order.assigned_at is not None:
                row.delivery_seconds = (row.order.delivered_at - row.order.assigned_at).total_seconds()
            if row.order.status == "completed":
                row.completed_at = row.order.updated_at
        row.save(update_fields=["order_ref", "delivered_at", "delivery_seconds", "completed_at"])


class Migration(migrations.Migration):

    dependencies = [
        ("order", "0001_initial"),
    ]

    operations = [
        migrations.AlterField(
            model_name="orderassignment",
            name="order",
            field=models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="assignments", to="order.order"),
        ),
        migrations.AddField(
            model_name="orderassignment",
            name="order_ref",
            field=models.UUIDField(blank=True, editable=False, null=True),
        ),
        migrations.AddField(
            model_name="orderassignment",
            name="delivered_at",
            field=models.DateTimeField(blank=True, null=True),
        ),
        migrations.AddField(
            model_name="orderassignment",
            name="delivery_seconds",
            field=models.FloatField(blank=True, null=True),
        ),
        migrations.AddField(
            model_name="orderassignment",
            name="completed_at",
            field=models.DateTimeField(blank=True, null=True),
        ),
        migrations.RunPython(copy_order_refs, migrations.RunPython.noop),
    ]
