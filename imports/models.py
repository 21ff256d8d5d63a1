import uuid

from django.db import models


class BulkUploadLog(models.Model):
    """Outcome of one bulk import batch, written once when the batch finishes."""

    class UploadType(models.TextChoices):
        PARTS = "PARTS", "Parts"
        PRODUCTS = "PRODUCTS", "Products"
        ORDERS = "ORDERS", "Purchase orders"
        TRANSACTIONS = "TRANSACTIONS", "Transactions"

    class Status(models.TextChoices):
        COMPLETED = "COMPLETED", "Completed"
        PARTIAL = "PARTIAL", "Partially failed"
        FAILED = "FAILED", "Failed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    upload_type = models.CharField(max_length=16, choices=UploadType.choices)
    file_name = models.CharField(max_length=255, blank=True, default="")
    total_rows = models.PositiveIntegerField()
    success_count = models.PositiveIntegerField()
    failed_count = models.PositiveIntegerField()
    status = models.CharField(max_length=16, choices=Status.choices)
    errors = models.JSONField(default=list, blank=True)
    created_codes = models.JSONField(default=list, blank=True)
    performed_by = models.CharField(max_length=150, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["upload_type", "created_at"], name="imp_log_type_created_idx"),
            models.Index(fields=["status", "created_at"], name="imp_log_status_created_idx"),
        ]
