from django.conf import settings
import django.core.validators
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("order", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="DeliveryRating",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("stars", models.PositiveSmallIntegerField(validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(5)])),
                ("feedback", models.TextField(blank=True)),
                ("rated_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("customer", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="given_delivery_ratings", to=settings.AUTH_USER_MODEL)),
                ("delivery_person", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="delivery_ratings", to=settings.AUTH_USER_MODEL)),
                ("order", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="delivery_rating", to="order.order")),
            ],
            options={"ordering": ["-rated_at"]},
        ),
        migrations.AddIndex(
            model_name="deliveryrating",
            index=models.Index(fields=["delivery_person", "rated_at"], name="delivery_rating_person_idx"),
        ),
        migrations.AddIndex(
            model_name="deliveryrating",
            index=models.Index(fields=["stars"], name="delivery_rating_stars_idx"),
        ),
        migrations.AddConstraint(
            model_name="deliveryrating",
            constraint=models.CheckConstraint(condition=models.Q(stars__gte=1, stars__lte=5), name="delivery_rating_stars_range"),
        ),
    ]
