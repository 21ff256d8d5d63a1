import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("inventory", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="AuditRecord",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=32, unique=True)),
                ("audit_date", models.DateField()),
                (
                    "audit_type",
                    models.CharField(
                        choices=[
                            ("MONTHLY", "Monthly"),
                            ("QUARTERLY", "Quarterly"),
                            ("YEARLY", "Yearly"),
                            ("SPOT", "Spot check"),
                        ],
                        max_length=16,
                    ),
                ),
                (
                    "scope",
                    models.CharField(
                        choices=[("ALL", "All active parts"), ("PARTIAL", "Selected parts")],
                        default="ALL",
                        max_length=16,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("IN_PROGRESS", "In progress"), ("COMPLETED", "Completed"), ("APPROVED", "Approved")],
                        default="IN_PROGRESS",
                        max_length=16,
                    ),
                ),
                ("total_items", models.PositiveIntegerField(default=0)),
                ("matched_items", models.PositiveIntegerField(default=0)),
                ("discrepancy_items", models.PositiveIntegerField(default=0)),
                ("performed_by", models.CharField(blank=True, default="", max_length=150)),
                ("approved_by", models.CharField(blank=True, default="", max_length=150)),
                ("notes", models.TextField(blank=True, default="")),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["-audit_date", "-created_at"],
                "indexes": [models.Index(fields=["status", "audit_date"], name="aud_record_status_date_idx")],
            },
        ),
        migrations.CreateModel(
            name="AuditItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("system_qty", models.IntegerField()),
                ("counted_qty", models.PositiveIntegerField(blank=True, null=True)),
                ("discrepancy", models.IntegerField(blank=True, null=True)),
                ("notes", models.TextField(blank=True, default="")),
                ("counted_at", models.DateTimeField(blank=True, null=True)),
                (
                    "adjustment_transaction",
                    models.OneToOneField(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="audit_item",
                        to="inventory.transaction",
                    ),
                ),
                (
                    "audit",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="audits.auditrecord",
                    ),
                ),
                (
                    "part",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="audit_items",
                        to="inventory.part",
                    ),
                ),
            ],
            options={
                "ordering": ["part__code"],
                "constraints": [
                    models.UniqueConstraint(fields=("audit", "part"), name="aud_item_audit_part_uniq"),
                ],
            },
        ),
    ]
