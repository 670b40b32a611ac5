from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("user_id", models.IntegerField(blank=True, null=True)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=15)),
                ("currency", models.CharField(default="KES", max_length=10)),
                ("method", models.CharField(blank=True, max_length=255, null=True)),
                ("payment_method", models.CharField(blank=True, max_length=255, null=True)),
                ("payment_provider", models.CharField(blank=True, max_length=255, null=True)),
                ("transaction_id", models.CharField(blank=True, max_length=255, null=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("COMPLETED", "Completed"),
                            ("FAILED", "Failed"),
                            ("REFUNDED", "Refunded"),
                        ],
                        default="PENDING",
                        max_length=50,
                    ),
                ),
                ("reference", models.CharField(blank=True, max_length=255)),
                ("customer_email", models.CharField(blank=True, max_length=255, null=True)),
                ("customer_phone", models.CharField(blank=True, max_length=255, null=True)),
                ("customer_name", models.CharField(blank=True, max_length=255, null=True)),
                ("description", models.TextField(blank=True, null=True)),
                ("consultation_id", models.IntegerField(blank=True, null=True)),
                ("diaspora_request_id", models.IntegerField(blank=True, null=True)),
                ("merchant_request_id", models.CharField(blank=True, db_index=True, max_length=100, null=True)),
                ("checkout_request_id", models.CharField(blank=True, db_index=True, max_length=100, null=True)),
                ("metadata", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["-created_at", "-id"],
            },
        ),
    ]
