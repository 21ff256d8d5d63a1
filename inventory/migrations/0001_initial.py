import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Category",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255, unique=True)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "parent",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="children",
                        to="inventory.category",
                    ),
                ),
            ],
            options={"ordering": ["name"], "verbose_name_plural": "categories"},
        ),
        migrations.CreateModel(
            name="CodeSequence",
            fields=[
                ("scope", models.CharField(max_length=32, primary_key=True, serialize=False)),
                ("last_value", models.PositiveIntegerField(default=0)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=64, unique=True)),
                ("name", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("category", models.CharField(blank=True, default="", max_length=128)),
                ("unit", models.CharField(default="EA", max_length=16)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"ordering": ["code"]},
        ),
        migrations.CreateModel(
            name="Supplier",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=64, unique=True)),
                ("name", models.CharField(max_length=255)),
                ("contact_name", models.CharField(blank=True, default="", max_length=255)),
                ("phone", models.CharField(blank=True, default="", max_length=64)),
                ("email", models.EmailField(blank=True, default="", max_length=254)),
                ("lead_time_days", models.PositiveIntegerField(default=7)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["name"],
                "indexes": [models.Index(fields=["is_active", "name"], name="inv_supplier_active_idx")],
            },
        ),
        migrations.CreateModel(
            name="Part",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=64, unique=True)),
                ("name", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("unit", models.CharField(default="EA", max_length=16)),
                ("unit_price", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("safety_stock", models.PositiveIntegerField(default=0)),
                ("reorder_point", models.PositiveIntegerField(default=0)),
                ("min_order_qty", models.PositiveIntegerField(default=1)),
                ("lead_time_days", models.PositiveIntegerField(default=7)),
                ("storage_location", models.CharField(blank=True, default="", max_length=64)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "category",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="parts",
                        to="inventory.category",
                    ),
                ),
                (
                    "supplier",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="parts",
                        to="inventory.supplier",
                    ),
                ),
            ],
            options={
                "ordering": ["code"],
                "indexes": [
                    models.Index(fields=["is_active", "code"], name="inv_part_active_code_idx"),
                    models.Index(fields=["name"], name="inv_part_name_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Inventory",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("current_qty", models.IntegerField(default=0)),
                ("reserved_qty", models.IntegerField(default=0)),
                ("incoming_qty", models.IntegerField(default=0)),
                ("last_inbound_at", models.DateTimeField(blank=True, null=True)),
                ("last_outbound_at", models.DateTimeField(blank=True, null=True)),
                ("version", models.PositiveIntegerField(default=0)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "part",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="inventory",
                        to="inventory.part",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "inventory",
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("current_qty__gte", 0)), name="inv_inventory_current_qty_gte_0"),
                    models.CheckConstraint(condition=models.Q(("reserved_qty__gte", 0)), name="inv_inventory_reserved_qty_gte_0"),
                    models.CheckConstraint(condition=models.Q(("incoming_qty__gte", 0)), name="inv_inventory_incoming_qty_gte_0"),
                ],
            },
        ),
        migrations.CreateModel(
            name="BomItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("quantity_per_unit", models.DecimalField(decimal_places=4, max_digits=12)),
                ("loss_rate", models.DecimalField(decimal_places=4, default=1, max_digits=6)),
                ("is_active", models.BooleanField(default=True)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bom_items",
                        to="inventory.product",
                    ),
                ),
                (
                    "part",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bom_items",
                        to="inventory.part",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("product", "part"), name="inv_bom_product_part_uniq"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Transaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=32, unique=True)),
                (
                    "transaction_type",
                    models.CharField(
                        choices=[
                            ("INBOUND", "Inbound"),
                            ("OUTBOUND", "Outbound"),
                            ("ADJUSTMENT", "Adjustment"),
                            ("TRANSFER", "Transfer"),
                        ],
                        max_length=16,
                    ),
                ),
                ("quantity", models.PositiveIntegerField()),
                ("before_qty", models.IntegerField()),
                ("after_qty", models.IntegerField()),
                (
                    "reference_type",
                    models.CharField(
                        choices=[
                            ("MANUAL", "Manual"),
                            ("ORDER", "Purchase order"),
                            ("SALES_ORDER", "Sales order"),
                            ("PICKING", "Picking task"),
                            ("AUDIT", "Audit"),
                            ("IMPORT", "Bulk import"),
                        ],
                        default="MANUAL",
                        max_length=16,
                    ),
                ),
                ("reference_id", models.CharField(blank=True, default="", max_length=64)),
                ("reason", models.CharField(blank=True, default="", max_length=255)),
                ("notes", models.TextField(blank=True, default="")),
                ("performed_by", models.CharField(blank=True, default="", max_length=150)),
                ("transaction_date", models.DateTimeField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "part",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="inventory.part",
                    ),
                ),
            ],
            options={
                "ordering": ["-transaction_date", "-created_at"],
                "indexes": [
                    models.Index(fields=["part", "transaction_date"], name="inv_txn_part_date_idx"),
                    models.Index(fields=["transaction_type", "transaction_date"], name="inv_txn_type_date_idx"),
                    models.Index(fields=["reference_type", "reference_id"], name="inv_txn_reference_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("after_qty__gte", 0)), name="inv_txn_after_qty_gte_0"),
                ],
            },
        ),
    ]
