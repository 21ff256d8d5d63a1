import uuid

from django.db import models

from inventory.models import Part, Transaction
from orders.models import SalesOrder


class PickingTask(models.Model):
    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        IN_PROGRESS = "IN_PROGRESS", "In progress"
        COMPLETED = "COMPLETED", "Completed"

    class Priority(models.TextChoices):
        HIGH = "HIGH", "High"
        NORMAL = "NORMAL", "Normal"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=32, unique=True)
    sales_order = models.OneToOneField(SalesOrder, on_delete=models.PROTECT, related_name="picking_task")
    priority = models.CharField(max_length=16, choices=Priority.choices, default=Priority.NORMAL)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    total_items = models.PositiveIntegerField(default=0)
    picked_items = models.PositiveIntegerField(default=0)
    assigned_to = models.CharField(max_length=150, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [models.Index(fields=["status", "priority"], name="pick_task_status_prio_idx")]

    def __str__(self):
        return self.code


class PickingItem(models.Model):
    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        IN_PROGRESS = "IN_PROGRESS", "In progress"
        PICKED = "PICKED", "Picked"
        SKIPPED = "SKIPPED", "Skipped"

    class FlagType(models.TextChoices):
        DAMAGED = "DAMAGED", "Damaged"
        MISSING = "MISSING", "Missing"
        WRONG_LOCATION = "WRONG_LOCATION", "Wrong location"
        WRONG_PART = "WRONG_PART", "Wrong part"
        OTHER = "OTHER", "Other"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    task = models.ForeignKey(PickingTask, on_delete=models.CASCADE, related_name="items")
    part = models.ForeignKey(Part, on_delete=models.PROTECT, related_name="picking_items")
    storage_location = models.CharField(max_length=64, blank=True, default="")
    sequence = models.PositiveIntegerField(default=0)
    required_qty = models.PositiveIntegerField()
    picked_qty = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    flag_type = models.CharField(max_length=16, choices=FlagType.choices, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    scanned_at = models.DateTimeField(null=True, blank=True)
    verified_at = models.DateTimeField(null=True, blank=True)
    outbound_transaction = models.OneToOneField(
        Transaction,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="picking_item",
    )

    class Meta:
        ordering = ["sequence"]
        constraints = [
            models.UniqueConstraint(fields=["task", "part"], name="pick_item_task_part_uniq"),
        ]
