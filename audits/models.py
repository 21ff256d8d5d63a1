import uuid

from django.db import models

from inventory.models import Part, Transaction


class AuditRecord(models.Model):
    class Type(models.TextChoices):
        MONTHLY = "MONTHLY", "Monthly"
        QUARTERLY = "QUARTERLY", "Quarterly"
        YEARLY = "YEARLY", "Yearly"
        SPOT = "SPOT", "Spot check"

    class Status(models.TextChoices):
        IN_PROGRESS = "IN_PROGRESS", "In progress"
        COMPLETED = "COMPLETED", "Completed"
        APPROVED = "APPROVED", "Approved"

    class Scope(models.TextChoices):
        ALL = "ALL", "All active parts"
        PARTIAL = "PARTIAL", "Selected parts"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=32, unique=True)
    audit_date = models.DateField()
    audit_type = models.CharField(max_length=16, choices=Type.choices)
    scope = models.CharField(max_length=16, choices=Scope.choices, default=Scope.ALL)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.IN_PROGRESS)
    total_items = models.PositiveIntegerField(default=0)
    matched_items = models.PositiveIntegerField(default=0)
    discrepancy_items = models.PositiveIntegerField(default=0)
    performed_by = models.CharField(max_length=150, blank=True, default="")
    approved_by = models.CharField(max_length=150, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    completed_at = models.DateTimeField(null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-audit_date", "-created_at"]
        indexes = [models.Index(fields=["status", "audit_date"], name="aud_record_status_date_idx")]

    def __str__(self):
        return self.code


class AuditItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    audit = models.ForeignKey(AuditRecord, on_delete=models.CASCADE, related_name="items")
    part = models.ForeignKey(Part, on_delete=models.PROTECT, related_name="audit_items")
    system_qty = models.IntegerField()
    counted_qty = models.PositiveIntegerField(null=True, blank=True)
    discrepancy = models.IntegerField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    counted_at = models.DateTimeField(null=True, blank=True)
    adjustment_transaction = models.OneToOneField(
        Transaction,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="audit_item",
    )

    class Meta:
        ordering = ["part__code"]
        constraints = [
            models.UniqueConstraint(fields=["audit", "part"], name="aud_item_audit_part_uniq"),
        ]
