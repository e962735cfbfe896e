import django.db.models.deletion
from django.db import migrations, models


def copy_order_numbers(apps, schema_editor):
    DeliveryRating = apps.get_model("delivery", "DeliveryRating")
    for rating in DeliveryRating.objects.filter(order_number="").select_related("order"):
        rating.order_number = rating.order.order_number
        rating.save(update_fields=["order_number"])


class Migration(migrations.Migration):

    dependencies = [
        ("delivery", "0001_initial"),
        ("order", "0002_assignment_outcome"),
    ]

    operations = [
        migrations.AlterField(
            model_name="deliveryrating",
            name="order",
            field=models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="delivery_rating", to="order.order"),
        ),
        migrations.AddField(
            model_name="deliveryrating",
            name="order_number",
            field=models.CharField(blank=True, max_length=20),
        ),
        migrations.RunPython(copy_order_numbers, migrations.RunPython.noop),
    ]
