import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("inventory", "0001_initial"),
        ("orders", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="PickingTask",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=32, unique=True)),
                (
                    "priority",
                    models.CharField(
                        choices=[("HIGH", "High"), ("NORMAL", "Normal")],
                        default="NORMAL",
                        max_length=16,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("PENDING", "Pending"), ("IN_PROGRESS", "In progress"), ("COMPLETED", "Completed")],
                        default="PENDING",
                        max_length=16,
                    ),
                ),
                ("total_items", models.PositiveIntegerField(default=0)),
                ("picked_items", models.PositiveIntegerField(default=0)),
                ("assigned_to", models.CharField(blank=True, default="", max_length=150)),
                ("notes", models.TextField(blank=True, default="")),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "sales_order",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="picking_task",
                        to="orders.salesorder",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [models.Index(fields=["status", "priority"], name="pick_task_status_prio_idx")],
            },
        ),
        migrations.CreateModel(
            name="PickingItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("storage_location", models.CharField(blank=True, default="", max_length=64)),
                ("sequence", models.PositiveIntegerField(default=0)),
                ("required_qty", models.PositiveIntegerField()),
                ("picked_qty", models.PositiveIntegerField(default=0)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("IN_PROGRESS", "In progress"),
                            ("PICKED", "Picked"),
                            ("SKIPPED", "Skipped"),
                        ],
                        default="PENDING",
                        max_length=16,
                    ),
                ),
                (
                    "flag_type",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("DAMAGED", "Damaged"),
                            ("MISSING", "Missing"),
                            ("WRONG_LOCATION", "Wrong location"),
                            ("WRONG_PART", "Wrong part"),
                            ("OTHER", "Other"),
                        ],
                        default="",
                        max_length=16,
                    ),
                ),
                ("notes", models.TextField(blank=True, default="")),
                ("scanned_at", models.DateTimeField(blank=True, null=True)),
                ("verified_at", models.DateTimeField(blank=True, null=True)),
                (
                    "outbound_transaction",
                    models.OneToOneField(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="picking_item",
                        to="inventory.transaction",
                    ),
                ),
                (
                    "part",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="picking_items",
                        to="inventory.part",
                    ),
                ),
                (
                    "task",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="picking.pickingtask",
                    ),
                ),
            ],
            options={
                "ordering": ["sequence"],
                "constraints": [
                    models.UniqueConstraint(fields=("task", "part"), name="pick_item_task_part_uniq"),
                ],
            },
        ),
    ]
