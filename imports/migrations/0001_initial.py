import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="BulkUploadLog",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "upload_type",
                    models.CharField(
                        choices=[
                            ("PARTS", "Parts"),
                            ("PRODUCTS", "Products"),
                            ("ORDERS", "Purchase orders"),
                            ("TRANSACTIONS", "Transactions"),
                        ],
                        max_length=16,
                    ),
                ),
                ("file_name", models.CharField(blank=True, default="", max_length=255)),
                ("total_rows", models.PositiveIntegerField()),
                ("success_count", models.PositiveIntegerField()),
                ("failed_count", models.PositiveIntegerField()),
                (
                    "status",
                    models.CharField(
                        choices=[("COMPLETED", "Completed"), ("PARTIAL", "Partially failed"), ("FAILED", "Failed")],
                        max_length=16,
                    ),
                ),
                ("errors", models.JSONField(blank=True, default=list)),
                ("created_codes", models.JSONField(blank=True, default=list)),
                ("performed_by", models.CharField(blank=True, default="", max_length=150)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["upload_type", "created_at"], name="imp_log_type_created_idx"),
                    models.Index(fields=["status", "created_at"], name="imp_log_status_created_idx"),
                ],
            },
        ),
    ]
