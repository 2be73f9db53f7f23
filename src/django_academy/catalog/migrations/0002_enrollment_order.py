import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("academy_billing", "0001_initial"),
        ("academy_catalog", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="enrollment",
            name="order",
            field=models.ForeignKey(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="enrollments",
                to="academy_billing.order",
            ),
        ),
    ]
