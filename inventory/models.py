import uuid

from django.db import models


class Category(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255, unique=True)
    parent = models.ForeignKey("self", on_delete=models.PROTECT, null=True, blank=True, related_name="children")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "categories"

    def __str__(self):
        return self.name


class Supplier(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    contact_name = models.CharField(max_length=255, blank=True, default="")
    phone = models.CharField(max_length=64, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    lead_time_days = models.PositiveIntegerField(default=7)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [models.Index(fields=["is_active", "name"], name="inv_supplier_active_idx")]

    def __str__(self):
        return self.name


class Part(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    unit = models.CharField(max_length=16, default="EA")
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    safety_stock = models.PositiveIntegerField(default=0)
    reorder_point = models.PositiveIntegerField(default=0)
    min_order_qty = models.PositiveIntegerField(default=1)
    lead_time_days = models.PositiveIntegerField(default=7)
    storage_location = models.CharField(max_length=64, blank=True, default="")
    category = models.ForeignKey(Category, on_delete=models.PROTECT, null=True, blank=True, related_name="parts")
    supplier = models.ForeignKey(Supplier, on_delete=models.PROTECT, null=True, blank=True, related_name="parts")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["code"]
        indexes = [
            models.Index(fields=["is_active", "code"], name="inv_part_active_code_idx"),
            models.Index(fields=["name"], name="inv_part_name_idx"),
        ]

    def __str__(self):
        return f"{self.code} {self.name}"


class Inventory(models.Model):
    """Materialized on-hand view of one part, written only by `inventory.ledger`."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    part = models.OneToOneField(Part, on_delete=models.PROTECT, related_name="inventory")
    current_qty = models.IntegerField(default=0)
    reserved_qty = models.IntegerField(default=0)
    incoming_qty = models.IntegerField(default=0)
    last_inbound_at = models.DateTimeField(null=True, blank=True)
    last_outbound_at = models.DateTimeField(null=True, blank=True)
    version = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "inventory"
        constraints = [
            models.CheckConstraint(condition=models.Q(current_qty__gte=0), name="inv_inventory_current_qty_gte_0"),
            models.CheckConstraint(condition=models.Q(reserved_qty__gte=0), name="inv_inventory_reserved_qty_gte_0"),
            models.CheckConstraint(condition=models.Q(incoming_qty__gte=0), name="inv_inventory_incoming_qty_gte_0"),
        ]

    @property
    def available_qty(self):
        # negative when outbound movements have eaten into reserved stock
        return self.current_qty - self.reserved_qty


class Transaction(models.Model):
    """Append-only ledger entry.

    ADJUSTMENT carries the new absolute on-hand value in `quantity`, not a
    delta; every other type carries a positive magnitude.
    """

    class Type(models.TextChoices):
        INBOUND = "INBOUND", "Inbound"
        OUTBOUND = "OUTBOUND", "Outbound"
        ADJUSTMENT = "ADJUSTMENT", "Adjustment"
        TRANSFER = "TRANSFER", "Transfer"

    class ReferenceType(models.TextChoices):
        MANUAL = "MANUAL", "Manual"
        ORDER = "ORDER", "Purchase order"
        SALES_ORDER = "SALES_ORDER", "Sales order"
        PICKING = "PICKING", "Picking task"
        AUDIT = "AUDIT", "Audit"
        IMPORT = "IMPORT", "Bulk import"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=32, unique=True)
    transaction_type = models.CharField(max_length=16, choices=Type.choices)
    part = models.ForeignKey(Part, on_delete=models.PROTECT, related_name="transactions")
    quantity = models.PositiveIntegerField()
    before_qty = models.IntegerField()
    after_qty = models.IntegerField()
    reference_type = models.CharField(max_length=16, choices=ReferenceType.choices, default=ReferenceType.MANUAL)
    reference_id = models.CharField(max_length=64, blank=True, default="")
    reason = models.CharField(max_length=255, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    performed_by = models.CharField(max_length=150, blank=True, default="")
    transaction_date = models.DateTimeField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-transaction_date", "-created_at"]
        indexes = [
            models.Index(fields=["part", "transaction_date"], name="inv_txn_part_date_idx"),
            models.Index(fields=["transaction_type", "transaction_date"], name="inv_txn_type_date_idx"),
            models.Index(fields=["reference_type", "reference_id"], name="inv_txn_reference_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(after_qty__gte=0), name="inv_txn_after_qty_gte_0"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Ledger transactions are immutable once recorded.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Ledger transactions cannot be deleted.")

    @property
    def reference(self):
        from inventory.ledger import Reference

        return Reference(kind=self.reference_type, identifier=self.reference_id)


class CodeSequence(models.Model):
    """Last suffix handed out for one code prefix; locked while allocating."""

    scope = models.CharField(max_length=32, primary_key=True)
    last_value = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)


class Product(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    category = models.CharField(max_length=128, blank=True, default="")
    unit = models.CharField(max_length=16, default="EA")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["code"]

    def __str__(self):
        return f"{self.code} {self.name}"


class BomItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="bom_items")
    part = models.ForeignKey(Part, on_delete=models.PROTECT, related_name="bom_items")
    quantity_per_unit = models.DecimalField(max_digits=12, decimal_places=4)
    loss_rate = models.DecimalField(max_digits=6, decimal_places=4, default=1)
    is_active = models.BooleanField(default=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["product", "part"], name="inv_bom_product_part_uniq"),
        ]
